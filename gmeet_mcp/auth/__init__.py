"""
Credential sources consumed by the health checker.
"""

from .token_file import TokenFileCredentials

__all__ = ["TokenFileCredentials"]
