"""
Security utilities for ipreputation.

Upstream response bodies and exception messages are attached to error logs
so backend faults can be diagnosed. This module makes that text safe to log:
bounded in size, free of control characters, and without credentials that
may appear in URLs or error strings.
"""

import re
from typing import Any


MAX_BODY_LOG_LENGTH = 2000

_CREDENTIAL_PATTERNS = [
    re.compile(r'[Aa]pi[_\s-]*[Kk]ey[:\s=]+[\w\-]{8,}'),
    re.compile(r'[Tt]oken[:\s=]+[\w\-]{8,}'),
    re.compile(r'[Aa]uthorization[:\s=]+[\w\-]{8,}'),
    re.compile(r'Bearer\s+[\w\-\.]{8,}'),
    # user:password@ in URLs
    re.compile(r'(?<=://)[^/\s:@]+:[^/\s@]+@'),
]


class LogSanitizer:
    """Sanitizes untrusted text before it is written to logs."""

    def sanitize_output_text(self, text: Any, max_length: int = 1000) -> str:
        """
        Sanitize text for safe logging.

        Args:
            text: Text to sanitize
            max_length: Maximum allowed length

        Returns:
            Sanitized text, with a truncation marker when shortened
        """
        if text is None:
            return ""

        if isinstance(text, bytes):
            text = text.decode('utf-8', errors='replace')

        text = str(text)
        truncated = len(text) > max_length
        text = text[:max_length]

        sanitized = []
        for char in text:
            if char.isprintable() or char in {' ', '\t'}:
                sanitized.append(char)
            else:
                sanitized.append(f"\\x{ord(char):02x}" if ord(char) < 0x100 else f"\\u{ord(char):04x}")

        result = ''.join(sanitized)
        if truncated:
            result += '...[truncated]'
        return result

    def redact_credentials(self, text: str) -> str:
        """Replace credential-looking substrings with a marker."""
        for pattern in _CREDENTIAL_PATTERNS:
            text = pattern.sub('[REDACTED]', text)
        return text

    def sanitize_response_body(self, body: Any) -> str:
        """
        Prepare an upstream response body for an error log.

        Args:
            body: Raw response body (str or bytes)

        Returns:
            Sanitized, redacted and truncated body
        """
        return self.redact_credentials(self.sanitize_output_text(body, MAX_BODY_LOG_LENGTH))

    def sanitize_error_message(self, error: Any) -> str:
        """
        Sanitize an exception message for logging.

        Args:
            error: Exception or message

        Returns:
            Sanitized message safe for logging
        """
        return self.sanitize_output_text(self.redact_credentials(str(error)), 500)


# Global sanitizer instance
security = LogSanitizer()
