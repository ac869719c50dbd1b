"""
API package for the Google Meet MCP Server.
Provides the HTTP monitoring endpoints.
"""

from .health import (
    HealthHandler,
    HealthServer,
    create_health_server,
    start_health_server,
    status_code_for,
)

__all__ = [
    "HealthHandler",
    "HealthServer",
    "create_health_server",
    "start_health_server",
    "status_code_for",
]
