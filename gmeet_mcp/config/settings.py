"""
Configuration management for the Google Meet MCP monitoring core.
Handles loading settings from environment variables and .env files.
"""

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, Optional
from dotenv import load_dotenv

from gmeet_mcp import __version__


CALENDAR_PROBE_URL = (
    "https://www.googleapis.com/calendar/v3/users/me/calendarList?maxResults=1"
)
MEET_PROBE_URL = "https://meet.googleapis.com/v2/conferenceRecords?pageSize=1"

DEFAULT_SCOPES = [
    "https://www.googleapis.com/auth/calendar",
    "https://www.googleapis.com/auth/meetings.space.created",
    "https://www.googleapis.com/auth/meetings.space.readonly",
]


def _env_bool(name: str, default: str) -> bool:
    return os.getenv(name, default).strip().lower() in ("1", "true", "yes", "on")


@dataclass
class HealthCheckConfig:
    """Thresholds and probe targets used by the health checker."""

    timeout_seconds: float = 5.0
    unhealthy_threshold: int = 3
    memory_threshold_percent: float = 90.0
    memory_threshold_bytes: Optional[int] = None
    token_expiry_warning_seconds: int = 300
    version: str = __version__
    probes: Dict[str, str] = field(
        default_factory=lambda: {
            "calendar": CALENDAR_PROBE_URL,
            "meet": MEET_PROBE_URL,
        }
    )


@dataclass
class ApiMonitorConfig:
    """Rate-limit header names and quota defaults used by the API monitor."""

    remaining_header: str = "X-RateLimit-Remaining"
    limit_header: str = "X-RateLimit-Limit"
    retry_after_header: str = "Retry-After"
    quota_user_header: str = "X-Goog-Quota-User"
    quota_used_header: str = "X-Goog-Quota-Used"
    quota_limit_header: str = "X-Goog-Quota-Limit"
    quota_reset_header: str = "X-Goog-Quota-Reset"
    low_quota_threshold: int = 10
    low_quota_delay_ms: int = 1000
    # Requests per minute assumed when the API sends no quota headers
    default_rate_limits: Dict[str, int] = field(
        default_factory=lambda: {"calendar": 1000, "meet": 100}
    )
    fallback_rate_limit: int = 1000


class Settings:
    """Centralized configuration management."""

    def __init__(self, env_file: Optional[str] = None):
        """Initialize settings with optional custom env file."""
        if env_file:
            load_dotenv(env_file, override=True)
        else:
            # Try to load .env from project root
            project_root = Path(__file__).parent.parent.parent
            env_path = project_root / ".env"
            if env_path.exists():
                load_dotenv(env_path)
            else:
                load_dotenv()  # Load from system environment

        self._load_settings()

    def reload(self, env_file: str):
        """Re-read configuration from a custom env file in place."""
        load_dotenv(env_file, override=True)
        self._load_settings()

    def _load_settings(self):
        """Load all configuration settings."""
        # Service identity
        self.SERVICE_NAME = os.getenv("SERVICE_NAME", "Google Meet MCP Server")
        self.SERVICE_VERSION = os.getenv("SERVICE_VERSION", __version__)

        # Monitoring endpoints
        self.ENABLE_HEALTH_CHECK = _env_bool("ENABLE_HEALTH_CHECK", "true")
        self.MONITORING_HOST = os.getenv("MONITORING_HOST", "0.0.0.0")
        self.MONITORING_PORT = int(os.getenv("MONITORING_PORT", "3001"))
        self.MONITORING_USERNAME = os.getenv("MONITORING_USERNAME", "")
        self.MONITORING_PASSWORD = os.getenv("MONITORING_PASSWORD", "")
        self.ENABLE_CORS = _env_bool("ENABLE_CORS", "true")

        # Health check thresholds
        self.HEALTH_CHECK_TIMEOUT = float(os.getenv("HEALTH_CHECK_TIMEOUT", "5"))
        self.HEALTH_UNHEALTHY_THRESHOLD = int(
            os.getenv("HEALTH_UNHEALTHY_THRESHOLD", "3")
        )
        self.MEMORY_THRESHOLD_PERCENT = float(
            os.getenv("MEMORY_THRESHOLD_PERCENT", "90")
        )
        self.MEMORY_THRESHOLD_MB = int(os.getenv("MEMORY_THRESHOLD_MB", "0"))
        self.TOKEN_EXPIRY_WARNING_SECONDS = int(
            os.getenv("TOKEN_EXPIRY_WARNING_SECONDS", "300")
        )
        self.CALENDAR_PROBE_URL = os.getenv("CALENDAR_PROBE_URL", CALENDAR_PROBE_URL)
        self.MEET_PROBE_URL = os.getenv("MEET_PROBE_URL", MEET_PROBE_URL)

        # Metrics
        self.RECENT_EVENTS_CAPACITY = int(os.getenv("RECENT_EVENTS_CAPACITY", "100"))

        # API monitor: quota estimates and rate-limit headers
        self.LOW_QUOTA_THRESHOLD = int(os.getenv("LOW_QUOTA_THRESHOLD", "10"))
        self.LOW_QUOTA_DELAY_MS = int(os.getenv("LOW_QUOTA_DELAY_MS", "1000"))
        self.CALENDAR_RATE_LIMIT = int(os.getenv("CALENDAR_RATE_LIMIT", "1000"))
        self.MEET_RATE_LIMIT = int(os.getenv("MEET_RATE_LIMIT", "100"))
        self.FALLBACK_RATE_LIMIT = int(os.getenv("FALLBACK_RATE_LIMIT", "1000"))
        self.RATELIMIT_REMAINING_HEADER = os.getenv(
            "RATELIMIT_REMAINING_HEADER", "X-RateLimit-Remaining"
        )
        self.RATELIMIT_LIMIT_HEADER = os.getenv(
            "RATELIMIT_LIMIT_HEADER", "X-RateLimit-Limit"
        )
        self.RETRY_AFTER_HEADER = os.getenv("RETRY_AFTER_HEADER", "Retry-After")
        self.QUOTA_USER_HEADER = os.getenv("QUOTA_USER_HEADER", "X-Goog-Quota-User")
        self.QUOTA_USED_HEADER = os.getenv("QUOTA_USED_HEADER", "X-Goog-Quota-Used")
        self.QUOTA_LIMIT_HEADER = os.getenv("QUOTA_LIMIT_HEADER", "X-Goog-Quota-Limit")
        self.QUOTA_RESET_HEADER = os.getenv("QUOTA_RESET_HEADER", "X-Goog-Quota-Reset")

        # Credentials
        self.GOOGLE_MEET_TOKEN_PATH = Path(
            os.getenv("GOOGLE_MEET_TOKEN_PATH", "token.json")
        )

        # Logging
        self.LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()
        self.LOG_DIR = Path(os.getenv("LOG_DIR", "logs")).resolve()
        self.LOG_TO_FILE = _env_bool("LOG_TO_FILE", "false")

        # Development Configuration
        self.DEBUG_MODE = _env_bool("DEBUG_MODE", "false")
        self.VERBOSE_LOGGING = _env_bool("VERBOSE_LOGGING", "false")

    def has_basic_auth(self) -> bool:
        """Whether the monitoring endpoints should require basic auth."""
        return bool(self.MONITORING_USERNAME and self.MONITORING_PASSWORD)

    def health_check_config(self) -> HealthCheckConfig:
        """Build the typed health checker configuration."""
        return HealthCheckConfig(
            timeout_seconds=self.HEALTH_CHECK_TIMEOUT,
            unhealthy_threshold=self.HEALTH_UNHEALTHY_THRESHOLD,
            memory_threshold_percent=self.MEMORY_THRESHOLD_PERCENT,
            memory_threshold_bytes=(
                self.MEMORY_THRESHOLD_MB * 1024 * 1024
                if self.MEMORY_THRESHOLD_MB > 0
                else None
            ),
            token_expiry_warning_seconds=self.TOKEN_EXPIRY_WARNING_SECONDS,
            version=self.SERVICE_VERSION,
            probes={
                "calendar": self.CALENDAR_PROBE_URL,
                "meet": self.MEET_PROBE_URL,
            },
        )

    def api_monitor_config(self) -> ApiMonitorConfig:
        """Build the typed API monitor configuration."""
        return ApiMonitorConfig(
            remaining_header=self.RATELIMIT_REMAINING_HEADER,
            limit_header=self.RATELIMIT_LIMIT_HEADER,
            retry_after_header=self.RETRY_AFTER_HEADER,
            quota_user_header=self.QUOTA_USER_HEADER,
            quota_used_header=self.QUOTA_USED_HEADER,
            quota_limit_header=self.QUOTA_LIMIT_HEADER,
            quota_reset_header=self.QUOTA_RESET_HEADER,
            low_quota_threshold=self.LOW_QUOTA_THRESHOLD,
            low_quota_delay_ms=self.LOW_QUOTA_DELAY_MS,
            default_rate_limits={
                "calendar": self.CALENDAR_RATE_LIMIT,
                "meet": self.MEET_RATE_LIMIT,
            },
            fallback_rate_limit=self.FALLBACK_RATE_LIMIT,
        )

    def __repr__(self):
        """String representation of settings (without sensitive data)."""
        return (
            f"Settings(MONITORING_PORT={self.MONITORING_PORT}, "
            f"LOG_LEVEL={self.LOG_LEVEL}, DEBUG_MODE={self.DEBUG_MODE})"
        )


# Global settings instance
settings = Settings()
