#!/usr/bin/env python3
"""
UPS Request Sender

This script:
1. Reads a request XML file (and optionally an access XML file)
2. Authenticates with UPS using UPS_CLIENT_ID / UPS_CLIENT_SECRET
3. Posts the request to the given UPS endpoint
4. Prints the response XML, or the failure message

Usage: python send_ups_request.py --endpoint URL --request-file request.xml
"""

import argparse
import logging
import sys

from ups_request import UPS_CIE_OAUTH_URL, UPSError, create_ups_request

logger = logging.getLogger(__name__)


def read_file(file_path):
    """Read an XML file as UTF-8 text."""
    with open(file_path, 'r', encoding='utf-8') as f:
        return f.read()


def parse_args(argv=None):
    parser = argparse.ArgumentParser(description='Send an XML request to the UPS API')
    parser.add_argument('--endpoint', required=True,
                        help='UPS API endpoint URL')
    parser.add_argument('--request-file', required=True,
                        help='File holding the request XML')
    parser.add_argument('--access-file',
                        help='File holding the access request XML (optional)')
    parser.add_argument('--cie', action='store_true',
                        help='Authenticate against the UPS CIE test environment')
    parser.add_argument('--verbose', action='store_true',
                        help='Log full request and response bodies')
    return parser.parse_args(argv)


def main(argv=None):
    """Send one request and print the outcome. Returns the process exit code."""
    args = parse_args(argv)

    # Set up logging
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    )

    try:
        request = read_file(args.request_file)
        access = read_file(args.access_file) if args.access_file else ''
    except OSError as e:
        logger.error(f"Could not read request files: {e}")
        return 1

    try:
        client = create_ups_request(token_url=UPS_CIE_OAUTH_URL if args.cie else None)
    except ValueError as e:
        logger.error(str(e))
        return 1

    try:
        response = client.request(access, request, args.endpoint)
    except UPSError as e:
        logger.error(f"UPS request failed: {e}")
        print(str(e), file=sys.stderr)
        return 1

    print(response.text)
    return 0


if __name__ == "__main__":
    sys.exit(main())
