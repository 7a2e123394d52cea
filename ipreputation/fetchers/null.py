"""
Null reputation backend, used when no backend is configured.
"""

import logging

from .base import DataFetcher, FetchResult, UNAVAILABLE

logger = logging.getLogger(__name__)


class NullDataFetcher(DataFetcher):
    """Backend that never has data and never touches the network."""

    backend_name = 'null'

    def __init__(self):
        super().__init__(timeout=0.0, connect_timeout=0.0)

    def fetch(self, ip_address: str, caller: str) -> FetchResult:
        logger.debug(f"IP reputation lookup for {caller} used the null backend, no backend is configured")
        return UNAVAILABLE

    def is_available(self) -> bool:
        return False
