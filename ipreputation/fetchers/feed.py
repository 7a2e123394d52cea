"""
REST feed reputation backend.

Queries the IPoid feed API, which answers GET /feed/v1/ip/<ip> with a JSON
object keyed by the (lower-cased) IP address.
"""

from typing import Any, Dict, Optional

import requests

from .base import DataFetcher, FetchResult, NOT_FOUND
from ..debug import debug_fetcher_method


USER_AGENT = 'ipreputation/0.1'


class FeedDataFetcher(DataFetcher):
    """Reputation backend using the REST feed endpoint."""

    backend_name = 'feed'

    def __init__(self, base_url: str, timeout: Optional[float] = None,
                 connect_timeout: Optional[float] = None):
        """
        Initialize the feed fetcher.

        Args:
            base_url: Base URL of the feed service
            timeout: Read timeout in seconds, applied to each socket read
            connect_timeout: Connection timeout in seconds
        """
        super().__init__(timeout=timeout, connect_timeout=connect_timeout)
        if not base_url:
            raise ValueError("A base URL is required for the feed backend")
        self.base_url = base_url.rstrip('/')

    def build_url(self, ip_address: str) -> str:
        return f"{self.base_url}/feed/v1/ip/{ip_address}"

    @debug_fetcher_method
    def fetch(self, ip_address: str, caller: str) -> FetchResult:
        """
        Get reputation data from the feed.

        Args:
            ip_address: Normalized IP address
            caller: The calling site

        Returns:
            FOUND with the normalized record, NOT_FOUND on HTTP 404,
            UNAVAILABLE on any other failure
        """
        headers = {
            'Accept': 'application/json',
            'User-Agent': USER_AGENT,
        }

        try:
            response = requests.get(
                self.build_url(ip_address),
                headers=headers,
                timeout=self._request_timeout(),
            )
        except requests.exceptions.RequestException as e:
            return self._handle_request_error(e, ip_address, caller)

        if response.status_code == 404:
            # The feed does not know about this IP
            return NOT_FOUND

        if not 200 <= response.status_code < 300:
            return self._log_bad_response(
                f"Got HTTP {response.status_code} from the reputation feed",
                ip_address, caller, response,
            )

        try:
            data = response.json()
        except ValueError:
            data = None

        if not isinstance(data, dict) or not data:
            return self._log_bad_response(
                "Got invalid JSON data from the reputation feed", ip_address, caller, response
            )

        raw = data.get(ip_address)
        if not isinstance(raw, dict):
            return self._log_bad_response(
                "Got JSON data from the reputation feed missing the requested IP",
                ip_address, caller, response,
            )

        return FetchResult.found(self._normalize(raw))

    def _normalize(self, raw: Dict[str, Any]) -> Dict[str, Any]:
        """
        Rename feed fields to the common record shape.

        Args:
            raw: Record for one IP as returned by the feed

        Returns:
            Record understood by IPReputationResponse.from_raw
        """
        record = dict(raw)
        record['organization'] = raw.get('org')
        record['city'] = raw.get('conc_city')
        record['country'] = raw.get('conc_country') or raw.get('location_country')
        record['connectionTypes'] = raw.get('types')
        return record
