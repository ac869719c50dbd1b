"""
Google Meet MCP Server - observability core.

This package provides the monitoring subsystem of the MCP proxy:
- Health aggregation over credentials, Google APIs and process resources
- Metrics collection with JSON and Prometheus exports
- Outbound API call tracking with rate-limit detection
- HTTP reporting endpoints for orchestrators and scrapers
"""

__version__ = "3.0.0"
__author__ = "Google Meet MCP Server"
__description__ = "Observability core for the Google Meet MCP proxy"
