"""
Cached IP reputation lookups.

IPReputationLookup is the entry point used by every call site that wants
reputation data for an IP: authentication, abuse filtering, captcha
triggering and security logging. It sits between those callers and a slow
backend and guarantees that a lookup never raises, that concurrent lookups
for one IP share a single backend request, and that a backend outage serves
the last known data instead of nothing.
"""

import logging
import time
from typing import Any, Optional

from .cache import ObjectCache, TTL_HOUR
from .fetchers.base import DataFetcher, FetchStatus
from .response import IPReputationResponse
from .stats import StatsRecorder
from .validator import validator

logger = logging.getLogger(__name__)

CACHE_NAMESPACE = 'ipreputation-ipoid'
STATS_COMPONENT = 'IPReputation'
TIMING_METRIC = 'ipoid_data_lookup_time'
RESULT_METRIC = 'ipoid_data_lookup_total'

# The feed is rebuilt every 24 hours and roughly 10% of its IPs drop out each
# cycle. One hour evicts IPs that are no longer listed reasonably quickly.
DEFAULT_TTL = TTL_HOUR
# Retention of expired data as an outage fallback: about three days in total
DEFAULT_STALE_TTL = 71 * TTL_HOUR
DEFAULT_FALLBACK_TTL = 5 * 60
DEFAULT_LOCK_TTS = 1.0


class IPReputationLookup:
    """Looks up reputation data for IP addresses through a shared cache."""

    def __init__(self, fetcher: DataFetcher, cache: ObjectCache, stats: Optional[StatsRecorder] = None,
                 ttl: float = DEFAULT_TTL, stale_ttl: float = DEFAULT_STALE_TTL,
                 fallback_ttl: float = DEFAULT_FALLBACK_TTL, lock_tts: float = DEFAULT_LOCK_TTS):
        """
        Initialize the lookup service.

        Args:
            fetcher: Backend queried on cache misses
            cache: Cache shared by every call site
            stats: Metrics sink; a private recorder is used if omitted
            ttl: Seconds fetched data stays fresh
            stale_ttl: Extra seconds expired data is kept as an outage fallback
            fallback_ttl: Freshness given to stale data served during an outage
            lock_tts: Seconds to wait for a concurrent fetch of the same IP;
                a lookup still waiting afterwards returns None rather than
                fetching a second time
        """
        self.fetcher = fetcher
        self.cache = cache
        self.stats = (stats or StatsRecorder()).with_component(STATS_COMPONENT)
        self.ttl = ttl
        self.stale_ttl = stale_ttl
        self.fallback_ttl = fallback_ttl
        self.lock_tts = lock_tts

    def make_key(self, ip_address: str) -> str:
        """Cache key for an already normalized IP address."""
        return self.cache.make_global_key(CACHE_NAMESPACE, ip_address)

    def lookup(self, ip_address: str, caller: str, use_cache: bool = True) -> Optional[IPReputationResponse]:
        """
        Fetch reputation data about an IP address.

        Args:
            ip_address: The IP address to look up
            caller: The code performing this lookup, for metrics and errors
            use_cache: False skips any fresh cached value and queries the
                backend; the result is still written to the cache

        Returns:
            IPReputationResponse, or None if the backend has no data for the
            IP or could not be reached
        """
        try:
            ip_address = validator.normalize_ip(ip_address)
        except ValueError:
            logger.warning(f"IP reputation lookup for {caller} with invalid IP address {ip_address!r}")
            return None

        try:
            data = self.cache.get_with_set_callback(
                self.make_key(ip_address),
                self.ttl,
                lambda: self._populate(ip_address, caller),
                stale_ttl=self.stale_ttl,
                fallback_ttl=self.fallback_ttl,
                lock_tts=self.lock_tts,
                force_refresh=not use_cache,
            )
        except Exception:
            logger.exception(f"IP reputation cache failed while checking IP {ip_address} for {caller}")
            return None

        # Unknown and unreachable both mean "no reputation data" to callers
        if data is ObjectCache.UNCACHEABLE or data is None:
            return None

        return IPReputationResponse.from_raw(data)

    def _populate(self, ip_address: str, caller: str) -> Any:
        """
        Cache callback: query the backend once.

        Returns:
            The record to cache, None to cache "not found", or
            ObjectCache.UNCACHEABLE if the backend could not answer
        """
        start = time.perf_counter()
        try:
            result = self.fetcher.fetch(ip_address, caller)
        except Exception:
            logger.exception(
                f"The {self.fetcher.backend_name} reputation backend raised while "
                f"checking IP {ip_address} for {caller}"
            )
            self.stats.increment(RESULT_METRIC, backend=self.fetcher.backend_name,
                                 result=str(FetchStatus.UNAVAILABLE))
            return ObjectCache.UNCACHEABLE
        delay = time.perf_counter() - start

        self.stats.increment(RESULT_METRIC, backend=self.fetcher.backend_name, result=str(result.status))

        # Timing is only recorded for cacheable outcomes
        if not result.is_cacheable:
            return ObjectCache.UNCACHEABLE

        self.stats.observe_timing(TIMING_METRIC, delay, caller=caller, backend=self.fetcher.backend_name)

        if result.status is FetchStatus.NOT_FOUND:
            return None
        return result.record
