"""
Debug utilities for ipreputation.

This module provides low-level diagnostics for backend fetches when debug
mode is enabled. Output goes to stderr so it never mixes with command output.
"""

import sys
import time
import json
from typing import Any, Dict, Optional, Callable
from functools import wraps
from .config import config


class DebugLogger:
    """Debug logger for low-level diagnostics."""

    def __init__(self):
        """Initialize debug logger."""
        self.start_time = time.time()
        self.fetch_call_count = 0

    def log(self, level: str, message: str, data: Optional[Dict[str, Any]] = None):
        """
        Log debug message with optional data.

        Args:
            level: Debug level ('basic', 'detailed', 'verbose')
            message: Debug message
            data: Optional data to include
        """
        if not config.is_debug_mode():
            return

        current_level = config.get_debug_level()

        level_hierarchy = {'basic': 0, 'detailed': 1, 'verbose': 2}
        if level_hierarchy.get(level, 0) > level_hierarchy.get(current_level, 0):
            return

        timestamp = time.time() - self.start_time
        prefix = f"[DEBUG +{timestamp:.3f}s]"

        print(f"{prefix} {message}", file=sys.stderr)

        if data and current_level in ('detailed', 'verbose'):
            self._print_data(data, current_level)

    def _print_data(self, data: Dict[str, Any], level: str):
        """Print debug data with appropriate formatting."""
        try:
            if level == 'verbose':
                formatted = json.dumps(data, indent=2, default=str)
                for line in formatted.split('\n'):
                    print(f"[DEBUG]   {line}", file=sys.stderr)
            else:
                for key, value in data.items():
                    if isinstance(value, dict):
                        print(f"[DEBUG]   {key}: {len(value)} items", file=sys.stderr)
                    elif isinstance(value, list):
                        print(f"[DEBUG]   {key}: [{len(value)} items]", file=sys.stderr)
                    elif isinstance(value, str) and len(value) > 100:
                        print(f"[DEBUG]   {key}: '{value[:97]}...'", file=sys.stderr)
                    else:
                        print(f"[DEBUG]   {key}: {value}", file=sys.stderr)
        except (TypeError, ValueError):
            print("[DEBUG]   <data formatting error>", file=sys.stderr)

    def log_fetch_call(self, backend: str, ip_address: str, caller: str):
        """Log a backend fetch."""
        self.fetch_call_count += 1
        self.log('basic', f"Fetch #{self.fetch_call_count}: {backend}.fetch({ip_address}, caller={caller})")

    def log_fetch_result(self, backend: str, result: Any, execution_time: float):
        """Log a backend fetch outcome."""
        self.log('basic', f"Fetch result: {backend} -> {self._summarize_result(result)} ({execution_time:.3f}s)")

        record = getattr(result, 'record', None)
        if record is not None:
            self.log('detailed', f"Record returned by {backend}:", {'record': record})

    def log_fetch_error(self, backend: str, error: Exception, execution_time: float):
        """Log a backend fetch that raised."""
        error_type = type(error).__name__
        error_msg = str(error)[:100]

        self.log('basic', f"Fetch error: {backend} -> {error_type}: {error_msg} ({execution_time:.3f}s)")

    def _summarize_result(self, result: Any) -> str:
        """Create a summary of the result for logging."""
        if result is None:
            return "None"
        status = getattr(result, 'status', None)
        if status is not None:
            return str(status)
        return f"{type(result).__name__}({result})"

    def log_config_info(self):
        """Log current configuration in debug mode."""
        if not config.is_debug_mode():
            return

        debug_info = {
            'debug_level': config.get_debug_level(),
            'data_provider': config.get_data_provider(),
            'backend_configured': config.get_ipoid_url() is not None,
            'request_timeout': config.get_request_timeout(),
            'developer_mode': config.is_developer_mode(),
            'shared_cache': config.get_redis_url() is not None,
        }

        self.log('detailed', "Current configuration:", debug_info)


def debug_fetcher_method(func: Callable) -> Callable:
    """
    Decorator to add debug logging to fetcher methods.

    Logs the fetch call, its outcome and timing when debug mode is enabled.
    """
    @wraps(func)
    def wrapper(self, ip_address, caller, *args, **kwargs):
        if not config.is_debug_mode():
            return func(self, ip_address, caller, *args, **kwargs)

        backend = getattr(self, 'backend_name', self.__class__.__name__)
        debug_logger.log_fetch_call(backend, ip_address, caller)

        start_time = time.time()
        try:
            result = func(self, ip_address, caller, *args, **kwargs)
        except Exception as e:
            debug_logger.log_fetch_error(backend, e, time.time() - start_time)
            raise
        debug_logger.log_fetch_result(backend, result, time.time() - start_time)
        return result

    return wrapper


# Global debug logger instance
debug_logger = DebugLogger()
