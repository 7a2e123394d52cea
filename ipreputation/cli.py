"""
Command-line lookup of reputation data for a single IP address.

Intended for local development and QA checks against a live backend. The
cache is bypassed so the output reflects what the backend returns now.
"""

import argparse
import logging
import os
import sys

from .debug import debug_logger
from .validator import validator
from .wiring import create_lookup


def main(argv=None):
    """Command-line entry point."""
    parser = argparse.ArgumentParser(
        description='Retrieve IP reputation data for an IP address',
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Environment Variables:
  IPREPUTATION_IPOID_URL           - Base URL of the reputation backend
  IPREPUTATION_DATA_PROVIDER       - Backend protocol: feed (default) or search
  IPREPUTATION_REQUEST_TIMEOUT     - Read timeout in seconds (1-30)
  IPREPUTATION_REDIS_URL           - Shared cache (default: in-process)
  IPREPUTATION_DEBUG=true          - Enable debug mode with diagnostic output

Examples:
  ipreputation 1.2.3.4
  ipreputation --debug --debug-level verbose 2001:db8::1
"""
    )

    parser.add_argument('ip', help='The IP address to use in the lookup')
    parser.add_argument('--debug', action='store_true',
                        help='Enable debug mode with low-level diagnostic output')
    parser.add_argument('--debug-level', choices=['basic', 'detailed', 'verbose'], default='basic',
                        help='Debug verbosity level (default: basic)')

    args = parser.parse_args(argv)

    if args.debug:
        os.environ['IPREPUTATION_DEBUG'] = 'true'
        os.environ['IPREPUTATION_DEBUG_LEVEL'] = args.debug_level

    logging.basicConfig(
        level=logging.DEBUG if args.debug else logging.WARNING,
        format='%(levelname)s %(name)s: %(message)s',
    )

    if not validator.is_valid_ip(args.ip):
        print(f"Error: \"{args.ip}\" is not a valid IP address.", file=sys.stderr)
        sys.exit(1)

    debug_logger.log_config_info()

    lookup = create_lookup()
    result = lookup.lookup(args.ip, 'cli', use_cache=False)
    if result is None:
        print("No result found")
        return

    print(result.to_json())


if __name__ == "__main__":
    main()
