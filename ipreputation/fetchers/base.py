"""
Base fetcher interface for reputation backends.

This module defines the interface every backend must implement, and the
three-way FetchResult that keeps "the backend has no record for this IP"
apart from "the backend could not answer".
"""

import logging
from abc import ABC, abstractmethod
from enum import Enum
from typing import Any, Dict, Optional

import requests

from ..config import config
from ..security import security

logger = logging.getLogger(__name__)


class FetchStatus(Enum):
    """Outcome of a single backend round trip."""
    FOUND = "found"              # Backend returned a record for the IP
    NOT_FOUND = "not_found"      # Backend answered and has no record (cacheable)
    UNAVAILABLE = "unavailable"  # Backend could not answer (not cacheable)

    def __str__(self):
        return self.value


class FetchResult:
    """Result of DataFetcher.fetch, tagged with a FetchStatus."""

    __slots__ = ('status', 'record')

    def __init__(self, status: FetchStatus, record: Optional[Dict[str, Any]] = None):
        if (status is FetchStatus.FOUND) != (record is not None):
            raise ValueError("A record is required for FOUND and forbidden otherwise")
        self.status = status
        self.record = record

    @classmethod
    def found(cls, record: Dict[str, Any]) -> 'FetchResult':
        return cls(FetchStatus.FOUND, record)

    @classmethod
    def not_found(cls) -> 'FetchResult':
        return NOT_FOUND

    @classmethod
    def unavailable(cls) -> 'FetchResult':
        return UNAVAILABLE

    @property
    def is_found(self) -> bool:
        return self.status is FetchStatus.FOUND

    @property
    def is_cacheable(self) -> bool:
        return self.status is not FetchStatus.UNAVAILABLE

    def __eq__(self, other):
        if not isinstance(other, FetchResult):
            return NotImplemented
        return self.status is other.status and self.record == other.record

    def __hash__(self):
        return hash(self.status)

    def __repr__(self):
        if self.record is None:
            return f"FetchResult({self.status})"
        return f"FetchResult({self.status}, {self.record!r})"


NOT_FOUND = FetchResult(FetchStatus.NOT_FOUND)
UNAVAILABLE = FetchResult(FetchStatus.UNAVAILABLE)


class DataFetcher(ABC):
    """Base class for all reputation backends."""

    backend_name = 'base'

    def __init__(self, timeout: Optional[float] = None, connect_timeout: Optional[float] = None):
        """
        Initialize the fetcher.

        Args:
            timeout: Read timeout in seconds, applied to each socket read
            connect_timeout: Connection timeout in seconds
        """
        self.timeout = timeout if timeout is not None else config.get_request_timeout()
        self.connect_timeout = connect_timeout if connect_timeout is not None else config.get_connect_timeout()

    @abstractmethod
    def fetch(self, ip_address: str, caller: str) -> FetchResult:
        """
        Query the backend once for an IP address, without caching.

        Args:
            ip_address: Normalized IP address
            caller: Name of the code performing the lookup, for diagnostics

        Returns:
            FetchResult; FOUND carries a raw record in the shape expected by
            IPReputationResponse.from_raw
        """
        pass

    def _request_timeout(self) -> tuple:
        """
        Timeout tuple for requests: (connect, read).

        The read part bounds each socket read, not the whole response.
        """
        return (self.connect_timeout, self.timeout)

    def _handle_request_error(self, error: Exception, ip_address: str, caller: str) -> FetchResult:
        """
        Log a transport-level failure and report the backend as unavailable.

        Args:
            error: The exception raised by requests
            ip_address: The IP address being looked up
            caller: The calling site
        """
        logger.error(
            f"Request to the {self.backend_name} reputation backend failed while checking IP "
            f"{ip_address} for {caller}: {security.sanitize_error_message(error)}",
            extra={'ip': ip_address, 'caller': caller, 'backend': self.backend_name},
        )
        return UNAVAILABLE

    def _log_bad_response(self, message: str, ip_address: str, caller: str,
                          response: requests.Response) -> FetchResult:
        """
        Log an unusable backend response and report the backend as unavailable.

        Args:
            message: Description of what was wrong with the response
            ip_address: The IP address being looked up
            caller: The calling site
            response: The response received
        """
        body = security.sanitize_response_body(response.text)
        logger.error(
            f"{message} while checking IP {ip_address} for {caller}",
            extra={
                'ip': ip_address,
                'caller': caller,
                'backend': self.backend_name,
                'status_code': response.status_code,
                'response': body,
            },
        )
        return UNAVAILABLE

    def is_available(self) -> bool:
        """
        Check if the fetcher can reach a backend at all.

        Returns:
            True if a backend is configured, False otherwise
        """
        return True
