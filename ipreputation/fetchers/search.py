"""
Search-index reputation backend.

Queries an OpenSearch index holding one document per IP address and
flattens the nested document into the common record shape.
"""

import json
from typing import Any, Dict, List, Optional

import requests

from .base import DataFetcher, FetchResult, NOT_FOUND
from ..debug import debug_fetcher_method
from ..response import UNKNOWN_RISK

USER_AGENT = 'ipreputation/0.1'


def _nested(data: Any, *path: str) -> Any:
    for key in path:
        if not isinstance(data, dict):
            return None
        data = data.get(key)
    return data


class SearchDataFetcher(DataFetcher):
    """Reputation backend using a search index."""

    backend_name = 'search'

    def __init__(self, base_url: str, index: str = 'ipoid', timeout: Optional[float] = None,
                 connect_timeout: Optional[float] = None, verify_tls: bool = True):
        """
        Initialize the search fetcher.

        Args:
            base_url: Base URL of the search cluster
            index: Index holding the reputation documents
            timeout: Read timeout in seconds, applied to each socket read
            connect_timeout: Connection timeout in seconds
            verify_tls: Whether to verify the cluster's TLS certificate
        """
        super().__init__(timeout=timeout, connect_timeout=connect_timeout)
        if not base_url:
            raise ValueError("A base URL is required for the search backend")
        self.base_url = base_url.rstrip('/')
        self.index = index
        self.verify_tls = verify_tls

    def build_url(self) -> str:
        return f"{self.base_url}/{self.index}/_search"

    def build_query(self, ip_address: str) -> Dict[str, Any]:
        return {'query': {'bool': {'filter': [{'term': {'ip': ip_address}}]}}}

    @debug_fetcher_method
    def fetch(self, ip_address: str, caller: str) -> FetchResult:
        """
        Get reputation data from the search index.

        Args:
            ip_address: Normalized IP address
            caller: The calling site

        Returns:
            FOUND with the flattened record, NOT_FOUND when there are no hits,
            UNAVAILABLE on any failure
        """
        headers = {
            'Accept': 'application/json',
            'Content-Type': 'application/json',
            'User-Agent': USER_AGENT,
        }

        try:
            response = requests.post(
                self.build_url(),
                data=json.dumps(self.build_query(ip_address)),
                headers=headers,
                timeout=self._request_timeout(),
                verify=self.verify_tls,
            )
        except requests.exceptions.RequestException as e:
            return self._handle_request_error(e, ip_address, caller)

        # A missing index or bad query is an outage here, not an unknown IP
        if not 200 <= response.status_code < 300:
            return self._log_bad_response(
                f"Got HTTP {response.status_code} from the reputation search index",
                ip_address, caller, response,
            )

        try:
            data = response.json()
        except ValueError:
            data = None

        if not isinstance(data, dict) or not isinstance(data.get('hits'), dict):
            return self._log_bad_response(
                "Got unexpected data from the reputation search index", ip_address, caller, response
            )

        total = _nested(data, 'hits', 'total', 'value')
        if total == 0:
            return NOT_FOUND

        hits = data['hits'].get('hits')
        source = _nested(hits[0], '_source') if isinstance(hits, list) and hits else None
        if not isinstance(source, dict):
            return self._log_bad_response(
                "Got search hits without a document from the reputation search index",
                ip_address, caller, response,
            )

        return FetchResult.found(self._flatten(source))

    def _tunnel_operators(self, tunnels: Any) -> List[str]:
        """Reduce a list of tunnel objects to the operator names."""
        if not isinstance(tunnels, list):
            return []
        return [
            tunnel['operator'] for tunnel in tunnels
            if isinstance(tunnel, dict) and isinstance(tunnel.get('operator'), str)
        ]

    def _flatten(self, source: Dict[str, Any]) -> Dict[str, Any]:
        """
        Flatten a search document into the common record shape.

        Args:
            source: The _source of the matching document

        Returns:
            Record understood by IPReputationResponse.from_raw
        """
        organization = source.get('organization')
        if organization is None:
            organization = _nested(source, 'as', 'organization')

        return {
            'behaviors': _nested(source, 'client', 'behaviors'),
            'risks': source.get('risks') or [UNKNOWN_RISK],
            'tunnels': self._tunnel_operators(source.get('tunnels')),
            'proxies': _nested(source, 'client', 'proxies'),
            'client_count': _nested(source, 'client', 'count'),
            'countries': _nested(source, 'client', 'countries'),
            'connectionTypes': _nested(source, 'client', 'types'),
            'organization': organization,
            'city': _nested(source, 'location', 'city'),
            'country': _nested(source, 'location', 'country'),
        }
