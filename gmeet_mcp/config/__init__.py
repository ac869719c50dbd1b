"""
Configuration package for the Google Meet MCP monitoring core.
"""

from .settings import ApiMonitorConfig, HealthCheckConfig, Settings, settings

__all__ = ["ApiMonitorConfig", "HealthCheckConfig", "Settings", "settings"]
