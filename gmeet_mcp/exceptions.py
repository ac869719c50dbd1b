"""
Exception types for the Google Meet MCP monitoring core.
"""

from typing import Optional


class MonitoringError(Exception):
    """Base class for errors raised by the monitoring core."""


class CredentialError(MonitoringError):
    """The credential collaborator could not produce a usable access token."""


class ServerAlreadyRunningError(MonitoringError):
    """Raised when the reporting server is started twice."""


class GoogleApiError(MonitoringError):
    """A downstream Google API answered with an error status."""

    def __init__(self, status: int, message: str = "", reason: Optional[str] = None):
        self.status = status
        self.reason = reason
        super().__init__(message or f"Google API returned HTTP {status}")
