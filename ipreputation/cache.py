"""
Object cache with get-or-populate semantics.

ObjectCache wraps a key/value store (in-process or Redis) and adds what a
lookup against a slow backend needs: fresh TTLs, retention of expired
values as a fallback, a lease lock so only one caller per key recomputes a
value, and a sentinel that lets the populate callback say "do not cache".
"""

import json
import logging
import math
import threading
import time
import uuid
from abc import ABC, abstractmethod
from typing import Any, Callable, Dict, Optional, Tuple

import redis

logger = logging.getLogger(__name__)

TTL_MINUTE = 60
TTL_HOUR = 3600
TTL_DAY = 86400

# Lease on a key while its value is being recomputed
LOCK_TTL = 30
LOCK_POLL_INTERVAL = 0.05

# Seconds between full sweeps of expired items in MemoryStore
MEMORY_SWEEP_INTERVAL = TTL_MINUTE

# Deletes KEYS[1] only if it still holds ARGV[1]
_RELEASE_SCRIPT = """
if redis.call('get', KEYS[1]) == ARGV[1] then
    return redis.call('del', KEYS[1])
end
return 0
"""


class CacheStore(ABC):
    """Minimal key/value store used by ObjectCache."""

    @abstractmethod
    def get(self, key: str) -> Optional[Any]:
        """Return the stored value, or None if absent or expired."""
        pass

    @abstractmethod
    def set(self, key: str, value: Any, ttl: float) -> bool:
        """Store a value for ttl seconds."""
        pass

    @abstractmethod
    def add(self, key: str, value: Any, ttl: float) -> bool:
        """Store a value only if the key is absent. Returns True if stored."""
        pass

    @abstractmethod
    def delete(self, key: str) -> bool:
        pass

    @abstractmethod
    def delete_if_equals(self, key: str, value: Any) -> bool:
        """Delete key only while it still holds value. Returns True if deleted."""
        pass


class MemoryStore(CacheStore):
    """
    Thread-safe in-process store. Coordinates only within one process.

    Expired items are dropped when read, and every sweep_interval seconds
    a write sweeps out all expired items, so keys that are never read
    again do not accumulate.
    """

    def __init__(self, clock: Callable[[], float] = time.time,
                 sweep_interval: float = MEMORY_SWEEP_INTERVAL):
        self._data: Dict[str, tuple] = {}
        self._lock = threading.Lock()
        self._clock = clock
        self.sweep_interval = sweep_interval
        self._next_sweep = clock() + sweep_interval

    def __len__(self) -> int:
        with self._lock:
            return len(self._data)

    def _live_item(self, key: str) -> Optional[tuple]:
        item = self._data.get(key)
        if item is not None and item[0] <= self._clock():
            del self._data[key]
            return None
        return item

    def _purge_expired(self) -> int:
        now = self._clock()
        expired = [key for key, item in self._data.items() if item[0] <= now]
        for key in expired:
            del self._data[key]
        self._next_sweep = now + self.sweep_interval
        return len(expired)

    def _store(self, key: str, value: Any, ttl: float) -> None:
        now = self._clock()
        if now >= self._next_sweep:
            self._purge_expired()
        self._data[key] = (now + ttl, value)

    def purge_expired(self) -> int:
        """Remove every expired item. Returns the number removed."""
        with self._lock:
            return self._purge_expired()

    def get(self, key: str) -> Optional[Any]:
        with self._lock:
            item = self._live_item(key)
            return item[1] if item is not None else None

    def set(self, key: str, value: Any, ttl: float) -> bool:
        with self._lock:
            self._store(key, value, ttl)
        return True

    def add(self, key: str, value: Any, ttl: float) -> bool:
        with self._lock:
            if self._live_item(key) is not None:
                return False
            self._store(key, value, ttl)
        return True

    def delete(self, key: str) -> bool:
        with self._lock:
            return self._data.pop(key, None) is not None

    def delete_if_equals(self, key: str, value: Any) -> bool:
        with self._lock:
            item = self._live_item(key)
            if item is None or item[1] != value:
                return False
            del self._data[key]
        return True

    def clear(self) -> None:
        with self._lock:
            self._data.clear()


class RedisStore(CacheStore):
    """
    Store backed by Redis, shared by every process using the same server.

    Values are JSON encoded. Redis errors are logged and treated as a miss
    or a failed write so a cache outage never fails a lookup.
    """

    def __init__(self, client: 'redis.Redis'):
        self.client = client

    @classmethod
    def from_url(cls, url: str, timeout: float = 1.0) -> 'RedisStore':
        """
        Create a store from a Redis URL.

        Args:
            url: Redis connection URL
            timeout: Socket connect and read timeout in seconds
        """
        client = redis.Redis.from_url(url, socket_timeout=timeout, socket_connect_timeout=timeout)
        return cls(client)

    @staticmethod
    def _expiry(ttl: float) -> int:
        return max(1, int(math.ceil(ttl)))

    def get(self, key: str) -> Optional[Any]:
        try:
            raw = self.client.get(key)
        except redis.exceptions.RedisError as e:
            logger.warning(f"Cache read failed for {key}: {e}")
            return None
        if raw is None:
            return None
        try:
            return json.loads(raw)
        except ValueError:
            logger.warning(f"Discarding undecodable cache value for {key}")
            return None

    def set(self, key: str, value: Any, ttl: float) -> bool:
        try:
            return bool(self.client.set(key, json.dumps(value), ex=self._expiry(ttl)))
        except redis.exceptions.RedisError as e:
            logger.warning(f"Cache write failed for {key}: {e}")
            return False

    def add(self, key: str, value: Any, ttl: float) -> bool:
        try:
            return bool(self.client.set(key, json.dumps(value), ex=self._expiry(ttl), nx=True))
        except redis.exceptions.RedisError as e:
            # Without Redis there is nothing to coordinate on; let the caller proceed
            logger.warning(f"Cache lock failed for {key}: {e}")
            return True

    def delete(self, key: str) -> bool:
        try:
            return bool(self.client.delete(key))
        except redis.exceptions.RedisError as e:
            logger.warning(f"Cache delete failed for {key}: {e}")
            return False

    def delete_if_equals(self, key: str, value: Any) -> bool:
        try:
            return bool(self.client.eval(_RELEASE_SCRIPT, 1, key, json.dumps(value)))
        except redis.exceptions.RedisError as e:
            logger.warning(f"Cache delete failed for {key}: {e}")
            return False


class _Uncacheable:
    def __repr__(self):
        return 'UNCACHEABLE'

    def __bool__(self):
        return False


class ObjectCache:
    """Get-or-populate cache over a CacheStore."""

    # Returned by a populate callback when its result must not be cached
    UNCACHEABLE = _Uncacheable()

    def __init__(self, store: CacheStore, clock: Callable[[], float] = time.time,
                 lock_poll_interval: float = LOCK_POLL_INTERVAL):
        """
        Initialize the cache.

        Args:
            store: Backing key/value store
            clock: Wall clock used for entry timestamps
            lock_poll_interval: Seconds between checks while waiting on a lease
        """
        self.store = store
        self._clock = clock
        self.lock_poll_interval = lock_poll_interval

    def make_global_key(self, namespace: str, *components: str) -> str:
        """Build a key shared by every caller, independent of tenant or process."""
        return ':'.join(['global', namespace] + [str(c) for c in components])

    def _get_entry(self, key: str) -> Optional[Dict[str, Any]]:
        entry = self.store.get(key)
        if not isinstance(entry, dict) or not {'value', 'created', 'ttl'} <= entry.keys():
            return None
        return entry

    def _is_fresh(self, entry: Dict[str, Any]) -> bool:
        return self._clock() < entry['created'] + entry['ttl']

    def _set_entry(self, key: str, value: Any, ttl: float, retain_until: float) -> None:
        now = self._clock()
        entry = {'value': value, 'created': now, 'ttl': ttl, 'retain_until': retain_until}
        self.store.set(key, entry, max(1.0, retain_until - now))

    def get_entry(self, key: str) -> Optional[Dict[str, Any]]:
        """
        Return the raw entry for a key, fresh or stale.

        Returns:
            Dictionary with 'value', 'created', 'ttl' and 'retain_until', or None
        """
        return self._get_entry(key)

    def delete(self, key: str) -> None:
        self.store.delete(key)

    def _fresh_value(self, key: str) -> Any:
        entry = self._get_entry(key)
        if entry is not None and self._is_fresh(entry):
            return entry['value']
        return self.UNCACHEABLE

    def _wait_for_value(self, key: str, lock_key: str, lock_tts: float) -> Tuple[Any, bool]:
        """
        Poll for a value computed by the lease holder.

        Returns:
            (value, released): the fresh value or UNCACHEABLE, and whether
            the lease was released without a fresh value being stored
        """
        deadline = time.monotonic() + lock_tts
        while True:
            value = self._fresh_value(key)
            if value is not self.UNCACHEABLE:
                return value, False
            if self.store.get(lock_key) is None:
                # Holder finished; it may have stored a value since the read above
                value = self._fresh_value(key)
                return value, value is self.UNCACHEABLE
            if time.monotonic() >= deadline:
                return self.UNCACHEABLE, False
            time.sleep(self.lock_poll_interval)

    def get_with_set_callback(self, key: str, ttl: float, callback: Callable[[], Any],
                              stale_ttl: float = 0, fallback_ttl: Optional[float] = None,
                              lock_tts: float = 0.0, force_refresh: bool = False) -> Any:
        """
        Return the cached value for key, computing it with callback on a miss.

        Args:
            key: Cache key
            ttl: Seconds a computed value stays fresh
            callback: Computes the value; returns UNCACHEABLE to skip caching.
                None is a cacheable value (a tombstone).
            stale_ttl: Extra seconds an expired value is retained as a fallback
            fallback_ttl: When callback returns UNCACHEABLE and a previous
                non-None value exists, that value is returned and re-stored
                fresh for this many seconds. None disables the fallback.
            lock_tts: Seconds to wait for another caller that is already
                computing the value. If it is still computing afterwards,
                UNCACHEABLE is returned and callback is not called.
            force_refresh: Ignore a fresh value and always call callback

        Returns:
            The cached or computed value, None, or UNCACHEABLE
        """
        entry = self._get_entry(key)
        if entry is not None and not force_refresh and self._is_fresh(entry):
            return entry['value']

        lock_key = f"{key}:lock"
        token = uuid.uuid4().hex
        have_lock = self.store.add(lock_key, token, LOCK_TTL)

        if not have_lock and not force_refresh:
            if entry is not None and entry['value'] is not None:
                # Someone is already recomputing; serve the stale value meanwhile
                return entry['value']
            value, released = self._wait_for_value(key, lock_key, lock_tts)
            if value is not self.UNCACHEABLE:
                return value
            if not released:
                logger.debug(f"Value for {key} is still being computed elsewhere, not waiting longer")
                return self.UNCACHEABLE
            # The holder gave up without storing anything; take over the lease
            have_lock = self.store.add(lock_key, token, LOCK_TTL)
            if not have_lock:
                return self.UNCACHEABLE

        try:
            if have_lock and not force_refresh:
                # Another caller may have stored a value between our read and the lease
                latest = self._get_entry(key)
                if latest is not None and self._is_fresh(latest):
                    return latest['value']

            value = callback()

            if value is self.UNCACHEABLE:
                if fallback_ttl and entry is not None and entry['value'] is not None:
                    self._set_entry(key, entry['value'], fallback_ttl,
                                    entry.get('retain_until', self._clock() + fallback_ttl))
                    return entry['value']
                return self.UNCACHEABLE

            self._set_entry(key, value, ttl, self._clock() + ttl + stale_ttl)
            return value
        finally:
            if have_lock:
                # The lease may have expired and been taken by another caller
                self.store.delete_if_equals(lock_key, token)
