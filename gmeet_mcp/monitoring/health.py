"""
Health checking for the Google Meet MCP Server.

Runs independent auth, Google API and system checks concurrently and folds
them into a single verdict. A failing check never prevents the others from
running, and nothing here raises to the caller.

API probe classification:
- 2xx response: healthy, resets the failure streak
- HTTP error or timeout: degraded until the streak reaches
  ``unhealthy_threshold`` consecutive failures, then unhealthy
- connection-level error (DNS, refused, reset) or unexpected exception:
  unhealthy immediately
"""

import asyncio
import os
import platform
import sys
import time
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Iterable, List, Optional, Protocol

import aiohttp
import psutil

from gmeet_mcp.config.settings import DEFAULT_SCOPES, HealthCheckConfig
from gmeet_mcp.logging.logger import logger


class HealthState(str, Enum):
    """Health classification, ordered by severity."""

    HEALTHY = "healthy"
    DEGRADED = "degraded"
    UNHEALTHY = "unhealthy"


_SEVERITY = {HealthState.HEALTHY: 0, HealthState.DEGRADED: 1, HealthState.UNHEALTHY: 2}


def worst_status(statuses: Iterable[HealthState]) -> HealthState:
    """Most severe status of ``statuses`` (healthy when empty)."""
    return max(statuses, key=_SEVERITY.__getitem__, default=HealthState.HEALTHY)


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


class CredentialProvider(Protocol):
    """The slice of the OAuth credential object the health checker reads."""

    expiry_date: Optional[int]  # epoch milliseconds
    scope: Optional[str]  # space separated

    async def get_access_token(self) -> str:
        ...


@dataclass
class AuthHealth:
    status: HealthState
    token_valid: bool
    expires_in_seconds: Optional[int] = None
    scopes_granted: List[str] = field(default_factory=list)
    error: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["status"] = self.status.value
        return data


@dataclass
class ApiEndpointHealth:
    status: HealthState
    response_time_ms: Optional[float] = None
    last_success: Optional[str] = None
    last_error: Optional[str] = None
    error_count: int = 0
    consecutive_failures: int = 0

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["status"] = self.status.value
        return data


@dataclass
class ApiGroupHealth:
    endpoints: Dict[str, ApiEndpointHealth]
    overall_status: HealthState

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {
            name: endpoint.to_dict() for name, endpoint in self.endpoints.items()
        }
        data["overall_status"] = self.overall_status.value
        return data


@dataclass
class DependencyHealth:
    name: str
    status: HealthState
    type: str  # "service", "api" or "file"
    details: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "status": self.status.value,
            "type": self.type,
            "details": dict(self.details),
        }


@dataclass
class MemoryUsage:
    rss_bytes: int = 0
    vms_bytes: int = 0
    total_bytes: int = 0
    percent: float = 0.0

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class HealthStatus:
    """Aggregate health snapshot, produced fresh for every request."""

    status: HealthState
    timestamp: str
    uptime_seconds: float
    version: str
    memory: MemoryUsage
    auth: AuthHealth
    apis: ApiGroupHealth
    dependencies: List[DependencyHealth] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "status": self.status.value,
            "timestamp": self.timestamp,
            "uptime_seconds": self.uptime_seconds,
            "version": self.version,
            "memory": self.memory.to_dict(),
            "auth": self.auth.to_dict(),
            "apis": self.apis.to_dict(),
            "dependencies": [d.to_dict() for d in self.dependencies],
        }


class HealthChecker:
    """Aggregates auth, API and system health into one verdict."""

    def __init__(
        self,
        credentials: Optional[CredentialProvider],
        config: Optional[HealthCheckConfig] = None,
        session: Optional[aiohttp.ClientSession] = None,
        clock=time.monotonic,
    ):
        """
        Initialize the health checker.

        Args:
            credentials: OAuth credential object; None reports auth unhealthy
            config: Thresholds and probe URLs
            session: Shared HTTP session; a short-lived one is used otherwise
            clock: Monotonic clock used to time probes
        """
        self.credentials = credentials
        self.config = config or HealthCheckConfig()
        self.session = session
        self._clock = clock
        self._process = psutil.Process(os.getpid())
        self._error_counts: Dict[str, int] = {name: 0 for name in self.config.probes}
        self._consecutive_failures: Dict[str, int] = {
            name: 0 for name in self.config.probes
        }
        self._last_success: Dict[str, str] = {}
        self._last_health_status: Optional[HealthStatus] = None

    async def get_health_status(self) -> HealthStatus:
        """Run every check concurrently and fold the results."""
        try:
            token = asyncio.ensure_future(self._fetch_token())
            auth_result, api_result, deps_result = await asyncio.gather(
                self._check_auth(token),
                self._check_apis(token),
                self._check_dependencies(),
                return_exceptions=True,
            )

            if isinstance(auth_result, BaseException):
                logger.error(f"Auth health check crashed: {auth_result}")
                auth_result = AuthHealth(
                    status=HealthState.UNHEALTHY,
                    token_valid=False,
                    error=f"Failed to check auth status: {auth_result}",
                )
            if isinstance(api_result, BaseException):
                logger.error(f"API health check crashed: {api_result}")
                api_result = self._unhealthy_api_group(str(api_result))
            if isinstance(deps_result, BaseException):
                logger.error(f"Dependency health check crashed: {deps_result}")
                deps_result = [
                    DependencyHealth(
                        name="system",
                        status=HealthState.DEGRADED,
                        type="service",
                        details={"error": str(deps_result)},
                    )
                ]

            system_status = worst_status(
                d.status for d in deps_result if d.name in ("memory", "system")
            )
            status = self._aggregate(
                auth_result.status, api_result.overall_status, system_status
            )

            health = HealthStatus(
                status=status,
                timestamp=_now_iso(),
                uptime_seconds=self._uptime_seconds(),
                version=self.config.version,
                memory=self._memory_usage(),
                auth=auth_result,
                apis=api_result,
                dependencies=deps_result,
            )
        except Exception as e:
            logger.exception(f"Health check failed: {e}")
            health = self._emergency_status(e)

        self._last_health_status = health
        if health.status != HealthState.HEALTHY:
            logger.warning(f"Health status: {health.status.value}")
        return health

    async def is_healthy(self) -> bool:
        """Whether the service is operational (healthy or degraded)."""
        try:
            health = await self.get_health_status()
        except Exception as e:
            logger.error(f"is_healthy failed: {e}")
            return False
        return health.status != HealthState.UNHEALTHY

    def get_last_health_status(self) -> Optional[HealthStatus]:
        """The most recent result, for diagnostics only."""
        return self._last_health_status

    @staticmethod
    def _aggregate(
        auth_status: HealthState, api_status: HealthState, system_status: HealthState
    ) -> HealthState:
        # Without a valid token nothing downstream can succeed
        if auth_status == HealthState.UNHEALTHY:
            return HealthState.UNHEALTHY
        return worst_status([auth_status, api_status, system_status])

    # Auth

    async def _fetch_token(self) -> str:
        if self.credentials is None:
            raise RuntimeError("OAuth2 client not initialized")
        token = await asyncio.wait_for(
            self.credentials.get_access_token(), timeout=self.config.timeout_seconds
        )
        if not token:
            raise RuntimeError("No access token available")
        return token

    async def _check_auth(self, token: "asyncio.Future[str]") -> AuthHealth:
        try:
            await token
        except asyncio.TimeoutError:
            return AuthHealth(
                status=HealthState.UNHEALTHY,
                token_valid=False,
                error=f"Token check timed out after {self.config.timeout_seconds}s",
            )
        except Exception as e:
            return AuthHealth(
                status=HealthState.UNHEALTHY,
                token_valid=False,
                error=str(e) or type(e).__name__,
            )

        expiry_date = getattr(self.credentials, "expiry_date", None)
        expires_in = None
        if expiry_date:
            expires_in = max(0, int((expiry_date - time.time() * 1000) // 1000))

        status = HealthState.HEALTHY
        if expires_in is not None and expires_in < self.config.token_expiry_warning_seconds:
            status = HealthState.DEGRADED

        scope = getattr(self.credentials, "scope", None)
        scopes = scope.split() if scope else list(DEFAULT_SCOPES)

        return AuthHealth(
            status=status,
            token_valid=True,
            expires_in_seconds=expires_in,
            scopes_granted=scopes,
        )

    # Google APIs

    async def _check_apis(self, token: "asyncio.Future[str]") -> ApiGroupHealth:
        if self.session is not None:
            results = await self._probe_all(self.session, token)
        else:
            async with aiohttp.ClientSession() as session:
                results = await self._probe_all(session, token)

        endpoints = dict(zip(self.config.probes, results))
        return ApiGroupHealth(
            endpoints=endpoints,
            overall_status=worst_status(e.status for e in endpoints.values()),
        )

    async def _probe_all(
        self, session: aiohttp.ClientSession, token: "asyncio.Future[str]"
    ) -> List[ApiEndpointHealth]:
        return list(
            await asyncio.gather(
                *(
                    self._probe_api(session, name, url, token)
                    for name, url in self.config.probes.items()
                )
            )
        )

    async def _probe_api(
        self,
        session: aiohttp.ClientSession,
        name: str,
        url: str,
        token: "asyncio.Future[str]",
    ) -> ApiEndpointHealth:
        try:
            access_token = await token
        except Exception:
            # Not the API's fault; leave its counters alone
            return ApiEndpointHealth(
                status=HealthState.UNHEALTHY,
                last_success=self._last_success.get(name),
                last_error="Skipped: access token unavailable",
                error_count=self._error_counts.get(name, 0),
                consecutive_failures=self._consecutive_failures.get(name, 0),
            )

        start = self._clock()
        timeout = aiohttp.ClientTimeout(total=self.config.timeout_seconds)
        try:
            async with session.get(
                url,
                headers={"Authorization": f"Bearer {access_token}"},
                timeout=timeout,
            ) as response:
                elapsed = self._elapsed_ms(start)
                if 200 <= response.status < 300:
                    return self._record_success(name, elapsed)
                return self._record_failure(
                    name, elapsed, f"HTTP {response.status}: {response.reason}"
                )
        except asyncio.TimeoutError:
            return self._record_failure(
                name,
                self._elapsed_ms(start),
                f"{name} API timeout after {self.config.timeout_seconds}s",
            )
        except aiohttp.ClientConnectionError as e:
            return self._record_failure(
                name, self._elapsed_ms(start), f"Connection error: {e}", fatal=True
            )
        except aiohttp.ClientError as e:
            return self._record_failure(name, self._elapsed_ms(start), str(e))
        except Exception as e:
            logger.error(f"Unexpected error probing {name} API: {e}")
            return self._record_failure(
                name, self._elapsed_ms(start), f"Unexpected error: {e}", fatal=True
            )

    def _elapsed_ms(self, start: float) -> float:
        return round((self._clock() - start) * 1000, 2)

    def _record_success(self, name: str, elapsed_ms: float) -> ApiEndpointHealth:
        self._consecutive_failures[name] = 0
        self._last_success[name] = _now_iso()
        return ApiEndpointHealth(
            status=HealthState.HEALTHY,
            response_time_ms=elapsed_ms,
            last_success=self._last_success[name],
            error_count=self._error_counts.get(name, 0),
            consecutive_failures=0,
        )

    def _record_failure(
        self, name: str, elapsed_ms: float, message: str, fatal: bool = False
    ) -> ApiEndpointHealth:
        self._error_counts[name] = self._error_counts.get(name, 0) + 1
        streak = self._consecutive_failures.get(name, 0) + 1
        self._consecutive_failures[name] = streak

        if fatal or streak >= self.config.unhealthy_threshold:
            status = HealthState.UNHEALTHY
        else:
            status = HealthState.DEGRADED

        logger.warning(f"{name} API probe failed ({streak} in a row): {message}")
        return ApiEndpointHealth(
            status=status,
            response_time_ms=elapsed_ms,
            last_success=self._last_success.get(name),
            last_error=message,
            error_count=self._error_counts[name],
            consecutive_failures=streak,
        )

    def _unhealthy_api_group(self, message: str) -> ApiGroupHealth:
        endpoints = {
            name: ApiEndpointHealth(
                status=HealthState.UNHEALTHY,
                last_success=self._last_success.get(name),
                last_error=f"Failed to check API status: {message}",
                error_count=self._error_counts.get(name, 0),
                consecutive_failures=self._consecutive_failures.get(name, 0),
            )
            for name in self.config.probes
        }
        return ApiGroupHealth(endpoints=endpoints, overall_status=HealthState.UNHEALTHY)

    # System

    async def _check_dependencies(self) -> List[DependencyHealth]:
        dependencies = [
            DependencyHealth(
                name="python",
                status=HealthState.HEALTHY,
                type="service",
                details={
                    "version": platform.python_version(),
                    "implementation": platform.python_implementation(),
                    "platform": sys.platform,
                },
            ),
            self._check_memory(),
        ]

        if os.access(".", os.R_OK):
            dependencies.append(
                DependencyHealth(name="filesystem", status=HealthState.HEALTHY, type="file")
            )
        else:
            dependencies.append(
                DependencyHealth(
                    name="filesystem",
                    status=HealthState.UNHEALTHY,
                    type="file",
                    details={"error": "Working directory is not readable"},
                )
            )

        return dependencies

    def _check_memory(self) -> DependencyHealth:
        memory = self._memory_usage()
        over_percent = memory.percent > self.config.memory_threshold_percent
        over_bytes = (
            self.config.memory_threshold_bytes is not None
            and memory.rss_bytes > self.config.memory_threshold_bytes
        )
        # Resource pressure alone never takes the service down
        status = HealthState.DEGRADED if over_percent or over_bytes else HealthState.HEALTHY

        return DependencyHealth(
            name="memory",
            status=status,
            type="service",
            details={
                "rss_mb": round(memory.rss_bytes / 1024 / 1024, 1),
                "total_mb": round(memory.total_bytes / 1024 / 1024, 1),
                "usage_percent": memory.percent,
                "threshold_percent": self.config.memory_threshold_percent,
            },
        )

    def _memory_usage(self) -> MemoryUsage:
        try:
            info = self._process.memory_info()
            return MemoryUsage(
                rss_bytes=info.rss,
                vms_bytes=info.vms,
                total_bytes=psutil.virtual_memory().total,
                percent=round(self._process.memory_percent(), 2),
            )
        except psutil.Error as e:
            logger.debug(f"Could not read process memory: {e}")
            return MemoryUsage()

    def _uptime_seconds(self) -> float:
        try:
            return round(time.time() - self._process.create_time(), 2)
        except psutil.Error:
            return 0.0

    def _emergency_status(self, error: Exception) -> HealthStatus:
        return HealthStatus(
            status=HealthState.UNHEALTHY,
            timestamp=_now_iso(),
            uptime_seconds=self._uptime_seconds(),
            version=self.config.version,
            memory=self._memory_usage(),
            auth=AuthHealth(
                status=HealthState.UNHEALTHY,
                token_valid=False,
                error="System error during health check",
            ),
            apis=self._unhealthy_api_group(str(error)),
            dependencies=[
                DependencyHealth(
                    name="system",
                    status=HealthState.UNHEALTHY,
                    type="service",
                    details={"error": str(error)},
                )
            ],
        )
