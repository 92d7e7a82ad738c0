#!/usr/bin/env python3
"""
Banking API Entry Point

Starts the auth service (port 8181), the main API (port 8000), or both.
"""

import argparse
import sys

from banking_api.server import TARGETS, serve


def main(argv=None) -> int:
    parser = argparse.ArgumentParser(description="Run the banking API and its auth service")
    parser.add_argument(
        "target", nargs="?", default="all", choices=TARGETS,
        help="which service to run (default: all)"
    )
    args = parser.parse_args(argv)

    try:
        serve(args.target)
    except Exception as e:
        print(f"Error starting server: {e}", file=sys.stderr)
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
