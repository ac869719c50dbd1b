"""
Logging package for the Google Meet MCP monitoring core.
"""

from .logger import Logger, logger

__all__ = ["Logger", "logger"]
