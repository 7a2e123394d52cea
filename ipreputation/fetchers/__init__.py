"""
Reputation backends.

Each fetcher performs one uncached round trip to a backend and reports the
outcome as a FetchResult.
"""

from .base import DataFetcher, FetchResult, FetchStatus, NOT_FOUND, UNAVAILABLE
from .feed import FeedDataFetcher
from .search import SearchDataFetcher
from .null import NullDataFetcher

__all__ = [
    'DataFetcher',
    'FetchResult',
    'FetchStatus',
    'NOT_FOUND',
    'UNAVAILABLE',
    'FeedDataFetcher',
    'SearchDataFetcher',
    'NullDataFetcher',
]
