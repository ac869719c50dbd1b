#!/usr/bin/env python3
"""
Container health check for the Google Meet MCP monitoring server.

Queries /health on the running server and maps the verdict onto an exit
code: 0 for healthy or degraded, 1 for unhealthy or unreachable.
"""

import argparse
import json
import sys
from typing import List, Optional

import requests

from gmeet_mcp.config.settings import settings

TIMEOUT_SECONDS = 8
MAX_RETRIES = 2


def fetch_health(base_url: str, auth=None, timeout: float = TIMEOUT_SECONDS) -> dict:
    """Fetch /health, retrying connection failures."""
    last_error = None
    for _ in range(MAX_RETRIES + 1):
        try:
            response = requests.get(f"{base_url}/health", auth=auth, timeout=timeout)
            # 503 still carries the health document
            if response.status_code in (200, 503):
                return response.json()
            return {
                "status": "unhealthy",
                "error": f"HTTP {response.status_code}",
            }
        except requests.ConnectionError as e:
            last_error = e
        except requests.Timeout as e:
            last_error = e
        except ValueError as e:
            return {"status": "unhealthy", "error": f"Invalid JSON response: {e}"}
    return {"status": "unhealthy", "error": f"Server unreachable: {last_error}"}


def main(argv: Optional[List[str]] = None) -> int:
    parser = argparse.ArgumentParser(description="Monitoring server health check")
    parser.add_argument(
        "--url",
        default=f"http://127.0.0.1:{settings.MONITORING_PORT}",
        help="Base URL of the monitoring server",
    )
    parser.add_argument("--timeout", type=float, default=TIMEOUT_SECONDS)
    parser.add_argument("--verbose", action="store_true", help="Print the health JSON")
    args = parser.parse_args(argv)

    auth = None
    if settings.has_basic_auth():
        auth = (settings.MONITORING_USERNAME, settings.MONITORING_PASSWORD)

    health = fetch_health(args.url.rstrip("/"), auth=auth, timeout=args.timeout)
    if args.verbose:
        print(json.dumps(health, indent=2))

    status = health.get("status")
    if status in ("healthy", "degraded"):
        return 0
    print(f"Health check failed: {health.get('error', status)}", file=sys.stderr)
    return 1


if __name__ == "__main__":
    sys.exit(main())
