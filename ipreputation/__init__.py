"""
ipreputation - cached IP reputation lookups.

This package answers "what is known about this IP address" for many call
sites at once, querying a remote reputation feed (tunnels, proxies, VPNs and
risk tags) through a shared cache with request coalescing and stale-data
fallback when the feed is unavailable.
"""

__version__ = "0.1.0"
__author__ = "ipreputation"
__license__ = "Apache License 2.0"

from .lookup import IPReputationLookup
from .response import IPReputationResponse

__all__ = ['IPReputationLookup', 'IPReputationResponse']
