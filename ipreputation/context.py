"""
Helpers that expose lookup results to calling code.

security_log_context adds reputation fields to security log records.
ReputationVariables offers reputation data as named variables for rule
engines such as abuse filters, and only performs the lookup when a rule
actually reads one of them.
"""

from typing import Any, Dict, Optional

from .lookup import IPReputationLookup
from .response import IPReputationResponse

SUPPORTED_VARIABLES = (
    'ip_reputation_tunnel_operators',
    'ip_reputation_risk_types',
    'ip_reputation_client_proxies',
    'ip_reputation_client_behaviors',
    'ip_reputation_client_count',
    'ip_reputation_ipoid_known',
)


def security_log_context(lookup: IPReputationLookup, ip_address: str,
                         caller: str = 'security_log_context') -> Dict[str, Any]:
    """
    Build log context fields describing an IP's reputation.

    Args:
        lookup: Lookup service
        ip_address: IP address of the request being logged
        caller: Calling site, for metrics

    Returns:
        Dictionary with the non-empty reputation fields, empty if no data
    """
    response = lookup.lookup(ip_address, caller)
    if response is None:
        return {}

    fields = {
        'ip_reputation_tunnels': response.get_tunnel_operators(),
        'ip_reputation_risks': response.get_risks(),
        'ip_reputation_proxies': response.get_proxies(),
        'ip_reputation_behaviors': response.get_behaviors(),
    }
    return {key: value for key, value in fields.items() if value}


class ReputationVariables:
    """Lazily evaluated reputation variables for one IP address."""

    _MISSING = object()

    def __init__(self, lookup: IPReputationLookup, ip_address: Optional[str],
                 caller: str = 'ReputationVariables'):
        """
        Initialize the variable holder. No lookup is performed yet.

        Args:
            lookup: Lookup service
            ip_address: IP address the variables describe; None yields no data
            caller: Calling site, for metrics
        """
        self.lookup = lookup
        self.ip_address = ip_address
        self.caller = caller
        self._response = self._MISSING

    def _get_response(self) -> Optional[IPReputationResponse]:
        if self._response is self._MISSING:
            self._response = (
                self.lookup.lookup(self.ip_address, self.caller) if self.ip_address else None
            )
        return self._response

    @property
    def evaluated(self) -> bool:
        """Whether the lookup has already been performed."""
        return self._response is not self._MISSING

    def get(self, name: str) -> Any:
        """
        Compute a variable's value.

        Args:
            name: One of SUPPORTED_VARIABLES

        Returns:
            The value; None when there is no data, except
            ip_reputation_ipoid_known which is then False

        Raises:
            KeyError: If name is not a supported variable
        """
        if name not in SUPPORTED_VARIABLES:
            raise KeyError(name)

        data = self._get_response()
        if name == 'ip_reputation_ipoid_known':
            return data is not None
        if data is None:
            return None

        if name == 'ip_reputation_tunnel_operators':
            return data.get_tunnel_operators()
        if name == 'ip_reputation_risk_types':
            return data.get_risks()
        if name == 'ip_reputation_client_proxies':
            return data.get_proxies()
        if name == 'ip_reputation_client_behaviors':
            return data.get_behaviors()
        return data.num_users_on_this_ip

    def __getitem__(self, name: str) -> Any:
        return self.get(name)

    def __contains__(self, name: object) -> bool:
        return name in SUPPORTED_VARIABLES
