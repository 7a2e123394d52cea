"""
Value object returned by IPReputationLookup.lookup.

Backends report reputation data in different shapes. Fetchers flatten their
payloads into a common raw mapping, and IPReputationResponse.from_raw turns
that mapping into an immutable object with typed accessors.
"""

import json
from dataclasses import dataclass
from typing import Any, Dict, List, Mapping, Optional, Tuple

UNKNOWN_RISK = 'UNKNOWN'

# Canonical serialized field names, in output order
SERIALIZED_FIELDS = (
    'behaviors',
    'risks',
    'connectionTypes',
    'tunnelOperators',
    'proxies',
    'numUsersOnThisIP',
    'countries',
    'organization',
    'city',
    'country',
)


def _string_list(value: Any) -> Optional[List[str]]:
    if isinstance(value, (set, frozenset)):
        value = sorted(v for v in value if isinstance(v, str))
    if not isinstance(value, (list, tuple)):
        return None
    return [v for v in value if isinstance(v, str)]


def _integer(value: Any) -> Optional[int]:
    # bool is an int subclass and is never a valid count
    if isinstance(value, int) and not isinstance(value, bool):
        return value
    return None


def _string(value: Any) -> Optional[str]:
    return value if isinstance(value, str) else None


def _first_present(data: Mapping[str, Any], *keys: str) -> Any:
    for key in keys:
        if data.get(key) is not None:
            return data[key]
    return None


@dataclass(frozen=True)
class IPReputationResponse:
    """Reputation data known about a single IP address."""

    risks: Tuple[str, ...]
    behaviors: Optional[Tuple[str, ...]] = None
    connection_types: Optional[Tuple[str, ...]] = None
    tunnel_operators: Optional[Tuple[str, ...]] = None
    proxies: Optional[Tuple[str, ...]] = None
    num_users_on_this_ip: Optional[int] = None
    countries: Optional[int] = None
    organization: Optional[str] = None
    city: Optional[str] = None
    country: Optional[str] = None

    @classmethod
    def from_raw(cls, data: Mapping[str, Any]) -> 'IPReputationResponse':
        """
        Convert a raw record into an IPReputationResponse.

        Never raises: fields that are missing or have the wrong type become
        None, and an absent or empty risk list becomes ['UNKNOWN'].

        Args:
            data: Raw record produced by a fetcher, or the output of to_dict()

        Returns:
            IPReputationResponse instance
        """
        if not isinstance(data, Mapping):
            data = {}

        risks = _string_list(data.get('risks'))

        def as_tuple(value: Any) -> Optional[Tuple[str, ...]]:
            items = _string_list(value)
            return tuple(items) if items is not None else None

        return cls(
            risks=tuple(risks) if risks else (UNKNOWN_RISK,),
            behaviors=as_tuple(data.get('behaviors')),
            connection_types=as_tuple(data.get('connectionTypes')),
            tunnel_operators=as_tuple(_first_present(data, 'tunnels', 'tunnelOperators')),
            proxies=as_tuple(data.get('proxies')),
            num_users_on_this_ip=_integer(_first_present(data, 'client_count', 'numUsersOnThisIP')),
            countries=_integer(data.get('countries')),
            organization=_string(data.get('organization')),
            city=_string(data.get('city')),
            country=_string(data.get('country')),
        )

    def get_risks(self) -> List[str]:
        """Risk tags, never empty."""
        return list(self.risks)

    def get_behaviors(self) -> Optional[List[str]]:
        return list(self.behaviors) if self.behaviors is not None else None

    def get_connection_types(self) -> Optional[List[str]]:
        return list(self.connection_types) if self.connection_types is not None else None

    def get_tunnel_operators(self) -> Optional[List[str]]:
        return list(self.tunnel_operators) if self.tunnel_operators is not None else None

    def get_proxies(self) -> Optional[List[str]]:
        return list(self.proxies) if self.proxies is not None else None

    def to_dict(self) -> Dict[str, Any]:
        """
        Serialize to the canonical mapping.

        Returns:
            Dictionary with the fixed SERIALIZED_FIELDS keys in order
        """
        values = (
            self.get_behaviors(),
            self.get_risks(),
            self.get_connection_types(),
            self.get_tunnel_operators(),
            self.get_proxies(),
            self.num_users_on_this_ip,
            self.countries,
            self.organization,
            self.city,
            self.country,
        )
        return dict(zip(SERIALIZED_FIELDS, values))

    def to_json(self) -> str:
        return json.dumps(self.to_dict())
