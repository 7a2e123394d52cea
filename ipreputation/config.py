"""
Configuration management for ipreputation.

This module reads backend, cache and diagnostics settings from the
environment. Values are validated and bounded before use so a bad
deployment setting degrades to a safe default instead of failing a lookup.
"""

import os
import logging
from typing import Optional, Dict, Any

logger = logging.getLogger(__name__)

ENV_PREFIX = "IPREPUTATION_"

SUPPORTED_PROVIDERS = ('feed', 'search')


class ReputationConfig:
    """Environment-backed configuration for the reputation lookup service."""

    def __init__(self):
        """Initialize configuration manager."""
        self._config_cache: Dict[str, Any] = {}
        self._uncached_keys = {'ipoid_url', 'redis_url'}

    def get_config_value(self, key: str, default: Any = None) -> Any:
        """
        Get configuration value with caching.

        Args:
            key: Configuration key
            default: Default value if key not found

        Returns:
            Configuration value or default
        """
        if key in self._config_cache:
            return self._config_cache[key]

        env_key = f"{ENV_PREFIX}{key.upper()}"
        value = os.getenv(env_key, default)

        # URLs may carry credentials, keep them out of the cache
        if key not in self._uncached_keys:
            self._config_cache[key] = value

        return value

    def clear_cache(self) -> None:
        """Forget cached values so the environment is read again."""
        self._config_cache.clear()

    def _get_bool(self, key: str) -> bool:
        value = os.getenv(f"{ENV_PREFIX}{key.upper()}", 'false').lower()
        return value in ('1', 'true', 'yes', 'on')

    def _get_bounded_float(self, key: str, default: float,
                           minimum: float, maximum: float) -> float:
        try:
            value = float(self.get_config_value(key, default))
        except (ValueError, TypeError):
            logger.warning(f"Invalid value for {ENV_PREFIX}{key.upper()}, using {default}")
            return default
        return max(minimum, min(maximum, value))

    def _get_positive_int(self, key: str, default: int) -> int:
        try:
            value = int(self.get_config_value(key, default))
        except (ValueError, TypeError):
            logger.warning(f"Invalid value for {ENV_PREFIX}{key.upper()}, using {default}")
            return default
        return value if value > 0 else default

    def get_ipoid_url(self) -> Optional[str]:
        """
        Get the base URL of the reputation backend.

        Returns:
            Base URL without a trailing slash, or None if not configured
        """
        url = os.getenv(f"{ENV_PREFIX}IPOID_URL", '').strip()
        if not url:
            return None

        if not url.startswith(('http://', 'https://')):
            logger.warning(f"Ignoring reputation backend URL with unsupported scheme: {url}")
            return None

        return url.rstrip('/')

    def get_data_provider(self) -> str:
        """
        Get the configured backend protocol.

        Returns:
            'feed' or 'search', or the raw value if unsupported
        """
        return str(self.get_config_value('data_provider', 'feed')).strip().lower()

    def get_search_index(self) -> str:
        """Get the index name queried by the search backend."""
        return str(self.get_config_value('search_index', 'ipoid')).strip() or 'ipoid'

    def get_request_timeout(self, default: float = 5.0) -> float:
        """
        Get the read timeout with bounds.

        This bounds each wait on the socket, not the whole request: a backend
        that keeps sending data slowly can take longer in total.

        Args:
            default: Default timeout value

        Returns:
            Bounded timeout value in seconds
        """
        return self._get_bounded_float('request_timeout', default, 1.0, 30.0)

    def get_connect_timeout(self) -> float:
        """Connection timeout in seconds."""
        return 1.0

    def is_developer_mode(self) -> bool:
        """
        Check if running in developer mode.

        Developer mode disables TLS certificate verification for the
        search backend, which is commonly run with self-signed certificates
        locally.

        Returns:
            True if developer mode is enabled
        """
        return self._get_bool('developer_mode')

    def get_cache_ttl(self) -> int:
        """Fresh TTL for cached reputation data, in seconds."""
        return self._get_positive_int('cache_ttl', 3600)

    def get_cache_stale_ttl(self) -> int:
        """Extra retention for expired values kept as fallback, in seconds."""
        return self._get_positive_int('cache_stale_ttl', 71 * 3600)

    def get_cache_fallback_ttl(self) -> int:
        """TTL used when re-storing a stale value after a backend failure."""
        return self._get_positive_int('cache_fallback_ttl', 300)

    def get_lock_tts(self) -> float:
        """Seconds a contended lookup waits for another process's fetch."""
        return self._get_bounded_float('lock_tts', 1.0, 0.0, 10.0)

    def get_redis_url(self) -> Optional[str]:
        """Redis URL for the shared cache store, or None for in-process caching."""
        url = os.getenv(f"{ENV_PREFIX}REDIS_URL", '').strip()
        return url or None

    def is_debug_mode(self) -> bool:
        """
        Check if debug mode is enabled.

        Returns:
            True if debug mode is enabled
        """
        return self._get_bool('debug')

    def get_debug_level(self) -> str:
        """
        Get debug level for controlling verbosity.

        Returns:
            Debug level: 'off', 'basic', 'detailed', or 'verbose'
        """
        if not self.is_debug_mode():
            return 'off'

        level = os.getenv(f"{ENV_PREFIX}DEBUG_LEVEL", 'basic').lower()
        if level in ('basic', 'detailed', 'verbose'):
            return level
        return 'basic'


# Global configuration instance
config = ReputationConfig()
