"""
IP address validation.

Addresses are converted to the canonical text form that serves both as the
cache key and as the value sent to the backends, so "2001:DB8::AB" and
"2001:0db8:0:0:0:0:0:ab" share one cache entry.
"""

import ipaddress


class InputValidator:
    """Validator for IP addresses."""

    def normalize_ip(self, ip_string: str) -> str:
        """
        Convert an IP address to canonical form.

        IPv6 addresses are compressed and lower-cased, which is the form the
        reputation feed keys its responses by.

        Args:
            ip_string: IPv4 or IPv6 address, surrounding whitespace allowed

        Returns:
            Canonical address string

        Raises:
            ValueError: If ip_string is not an IP address
        """
        try:
            return str(ipaddress.ip_address(ip_string.strip())).lower()
        except (ValueError, AttributeError) as e:
            raise ValueError(f"Invalid IP address: {ip_string!r}") from e

    def is_valid_ip(self, ip_string: str) -> bool:
        """True if ip_string is an IPv4 or IPv6 address."""
        try:
            self.normalize_ip(ip_string)
        except ValueError:
            return False
        return True


validator = InputValidator()
