"""
Service construction from configuration.

Builds the fetcher, cache and lookup service once at startup. Callers get
the lookup passed to them explicitly; nothing here is a hidden singleton.
"""

import logging
from typing import Optional

from .cache import MemoryStore, ObjectCache, RedisStore
from .config import ReputationConfig, SUPPORTED_PROVIDERS, config as default_config
from .fetchers import DataFetcher, FeedDataFetcher, NullDataFetcher, SearchDataFetcher
from .lookup import IPReputationLookup
from .stats import StatsRecorder

logger = logging.getLogger(__name__)


def create_fetcher(cfg: Optional[ReputationConfig] = None) -> DataFetcher:
    """
    Select the backend named by configuration.

    Args:
        cfg: Configuration to read, defaults to the environment

    Returns:
        Feed or search fetcher, or the null fetcher when no usable backend
        is configured
    """
    cfg = cfg or default_config
    base_url = cfg.get_ipoid_url()
    provider = cfg.get_data_provider()

    if not base_url:
        logger.warning("No IP reputation backend URL is configured, lookups will return no data")
        return NullDataFetcher()

    if provider not in SUPPORTED_PROVIDERS:
        logger.warning(f"Unknown IP reputation data provider {provider!r}, lookups will return no data")
        return NullDataFetcher()

    timeout = cfg.get_request_timeout()
    connect_timeout = cfg.get_connect_timeout()

    if provider == 'search':
        return SearchDataFetcher(
            base_url,
            index=cfg.get_search_index(),
            timeout=timeout,
            connect_timeout=connect_timeout,
            verify_tls=not cfg.is_developer_mode(),
        )

    return FeedDataFetcher(base_url, timeout=timeout, connect_timeout=connect_timeout)


def create_cache(cfg: Optional[ReputationConfig] = None) -> ObjectCache:
    """Shared Redis-backed cache when configured, in-process otherwise."""
    cfg = cfg or default_config
    redis_url = cfg.get_redis_url()
    if redis_url:
        return ObjectCache(RedisStore.from_url(redis_url, timeout=cfg.get_connect_timeout()))
    return ObjectCache(MemoryStore())


def create_lookup(cfg: Optional[ReputationConfig] = None, stats: Optional[StatsRecorder] = None,
                  cache: Optional[ObjectCache] = None) -> IPReputationLookup:
    """
    Build the lookup service.

    Args:
        cfg: Configuration to read, defaults to the environment
        stats: Metrics sink shared with the rest of the application
        cache: Cache to use instead of the configured one

    Returns:
        Ready to use IPReputationLookup
    """
    cfg = cfg or default_config
    return IPReputationLookup(
        create_fetcher(cfg),
        cache or create_cache(cfg),
        stats or StatsRecorder(),
        ttl=cfg.get_cache_ttl(),
        stale_ttl=cfg.get_cache_stale_ttl(),
        fallback_ttl=cfg.get_cache_fallback_ttl(),
        lock_tts=cfg.get_lock_tts(),
    )
