"""
Command-line entry point for the Google Meet MCP monitoring server.
Wires credentials, metrics, API monitoring and health checks together and
serves the monitoring endpoints until interrupted.
"""

import argparse
import asyncio
import signal
import sys
from typing import List, Optional

import aiohttp

from gmeet_mcp import __version__
from gmeet_mcp.api.health import create_health_server
from gmeet_mcp.auth.token_file import TokenFileCredentials
from gmeet_mcp.config.settings import settings
from gmeet_mcp.logging.logger import logger
from gmeet_mcp.monitoring import ApiMonitor, HealthChecker, MetricsCollector


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="gmeet-mcp-monitor",
        description="Google Meet MCP Server - health and metrics endpoints",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  gmeet-mcp-monitor                          # Serve on MONITORING_PORT (3001)
  gmeet-mcp-monitor --port 9090              # Serve on a custom port
  gmeet-mcp-monitor --debug                  # Run with debug logging
  gmeet-mcp-monitor --config custom.env      # Use custom config file
  gmeet-mcp-monitor --token-path token.json  # Read OAuth token from a file
        """,
    )

    parser.add_argument(
        "--config", type=str, help="Path to custom .env configuration file"
    )
    parser.add_argument(
        "--debug", action="store_true", help="Enable debug mode with verbose logging"
    )
    parser.add_argument("--host", type=str, help="Interface to bind the server to")
    parser.add_argument("--port", type=int, help="Port for the monitoring endpoints")
    parser.add_argument(
        "--token-path", type=str, help="Path to the Google OAuth token.json file"
    )
    parser.add_argument(
        "--version", action="version", version=f"Google Meet MCP Server v{__version__}"
    )
    return parser


async def serve(host: Optional[str], port: Optional[int], token_path: str):
    """Run the monitoring server until SIGINT/SIGTERM."""
    metrics_collector = MetricsCollector(event_capacity=settings.RECENT_EVENTS_CAPACITY)
    api_monitor = ApiMonitor(metrics_collector, settings.api_monitor_config())
    credentials = TokenFileCredentials(token_path)

    async with aiohttp.ClientSession() as session:
        health_checker = HealthChecker(
            credentials, settings.health_check_config(), session=session
        )
        server = create_health_server(
            health_checker, metrics_collector, api_monitor, port=port
        )
        if host:
            server.host = host

        stop_event = asyncio.Event()
        loop = asyncio.get_running_loop()
        for sig in (signal.SIGINT, signal.SIGTERM):
            try:
                loop.add_signal_handler(sig, stop_event.set)
            except (NotImplementedError, RuntimeError):
                # Windows event loops: rely on KeyboardInterrupt instead
                pass

        await server.start()
        try:
            await stop_event.wait()
        finally:
            await server.stop()


def main(argv: Optional[List[str]] = None):
    """Main entry point for the monitoring server."""
    args = build_parser().parse_args(argv)

    if args.config:
        settings.reload(args.config)

    if args.debug:
        settings.DEBUG_MODE = True
        settings.VERBOSE_LOGGING = True
        logger.set_level("DEBUG")
    else:
        logger.set_level(settings.LOG_LEVEL)

    if not settings.ENABLE_HEALTH_CHECK:
        logger.warning("Health check endpoints disabled (ENABLE_HEALTH_CHECK=false)")
        return

    token_path = args.token_path or str(settings.GOOGLE_MEET_TOKEN_PATH)

    logger.banner(settings.SERVICE_NAME)
    logger.info(f"Version: {settings.SERVICE_VERSION}")
    logger.info(f"Token file: {token_path}")
    logger.info(f"Basic auth: {'Enabled' if settings.has_basic_auth() else 'Disabled'}")
    logger.info(f"Debug mode: {'Enabled' if settings.DEBUG_MODE else 'Disabled'}")

    try:
        asyncio.run(serve(args.host, args.port, token_path))
    except KeyboardInterrupt:
        logger.info("Monitoring server interrupted. Goodbye!")
    except OSError as e:
        logger.critical(f"Could not start monitoring server: {e}")
        sys.exit(1)
    except Exception as e:
        logger.critical(f"Critical error: {e}")
        logger.exception(f"Critical error details: {e}")
        sys.exit(1)


if __name__ == "__main__":
    main()
