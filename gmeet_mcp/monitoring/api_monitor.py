"""
API Monitor for the Google Meet MCP Server.

Tracks outbound Google Calendar v3 and Meet v2 calls while they are in
flight, detects rate limiting from response metadata, keeps quota estimates
and forwards completed-call statistics to the metrics collector.

Rate-limit signals read from responses:
- HTTP 429
- X-RateLimit-Remaining / X-RateLimit-Limit
- Retry-After (seconds or HTTP date)
- X-Goog-Quota-User / X-Goog-Quota-Used / X-Goog-Quota-Limit / X-Goog-Quota-Reset
"""

import asyncio
import functools
import inspect
import math
import time
import uuid
from contextlib import asynccontextmanager
from dataclasses import asdict, dataclass, replace
from datetime import datetime, timezone
from email.utils import parsedate_to_datetime
from typing import Any, Awaitable, Callable, Dict, List, Mapping, Optional

import aiohttp

from gmeet_mcp.config.settings import ApiMonitorConfig
from gmeet_mcp.exceptions import GoogleApiError
from gmeet_mcp.logging.logger import logger
from gmeet_mcp.monitoring.metrics import MetricsCollector


QUOTA_WINDOW_SECONDS = 60.0


def _iso(ts: Optional[float]) -> Optional[str]:
    if ts is None:
        return None
    return datetime.fromtimestamp(ts, tz=timezone.utc).isoformat()


@dataclass
class ActiveCall:
    """An outbound call that has started but not yet completed."""

    call_id: str
    api: str
    method: str
    url: str
    start_time: float  # monotonic, for durations
    started_at: float  # epoch, for display

    def to_dict(self) -> Dict[str, Any]:
        return {
            "call_id": self.call_id,
            "api": self.api,
            "method": self.method,
            "url": self.url,
            "started_at": _iso(self.started_at),
        }


@dataclass
class RateLimitInfo:
    """Most recent rate-limit state observed for one API."""

    api: str
    is_limited: bool = False
    retry_after_seconds: Optional[float] = None
    remaining: Optional[int] = None
    limit: Optional[int] = None
    limit_type: Optional[str] = None  # "user" when Google reports a quota user
    observed_at: Optional[float] = None

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["observed_at"] = _iso(self.observed_at)
        return data


@dataclass
class QuotaInfo:
    """Quota usage for one API, reported by Google or estimated locally."""

    api: str
    used: int
    limit: int
    remaining: int
    reset_at: Optional[float] = None
    estimated: bool = False

    @property
    def usage_percent(self) -> float:
        if self.limit <= 0:
            return 0.0
        return round(self.used / self.limit * 100, 2)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "used": self.used,
            "limit": self.limit,
            "remaining": self.remaining,
            "usage_percent": self.usage_percent,
            "reset_at": _iso(self.reset_at),
            "estimated": self.estimated,
        }


def extract_status_code(error: BaseException) -> int:
    """Best-effort HTTP status for an exception raised by a downstream call.

    Returns 0 for connection-level failures (no response at all) and 408
    for timeouts.
    """
    for attr in ("status", "status_code"):
        value = getattr(error, attr, None)
        if isinstance(value, int) and not isinstance(value, bool):
            return value
    # asyncio.TimeoutError is an OSError subclass on 3.11+, check it first
    if isinstance(error, (asyncio.TimeoutError, aiohttp.ServerTimeoutError)):
        return 408
    if isinstance(error, asyncio.CancelledError):
        return 0
    if isinstance(error, (aiohttp.ClientConnectionError, ConnectionError, OSError)):
        return 0
    if "timeout" in str(error).lower():
        return 408
    return 500


def parse_retry_after(value: Optional[str], now: Optional[float] = None) -> Optional[float]:
    """Parse a Retry-After header given either as seconds or as an HTTP date."""
    if value is None:
        return None
    value = value.strip()
    if not value:
        return None
    try:
        seconds = float(value)
        return seconds if seconds >= 0 and math.isfinite(seconds) else None
    except ValueError:
        pass
    try:
        when = parsedate_to_datetime(value)
    except (TypeError, ValueError):
        return None
    if when is None:
        return None
    if when.tzinfo is None:
        when = when.replace(tzinfo=timezone.utc)
    now = time.time() if now is None else now
    return float(max(0, math.ceil(when.timestamp() - now)))


def _parse_int(value: Optional[str]) -> Optional[int]:
    if value is None:
        return None
    try:
        return int(value.strip())
    except ValueError:
        return None


def _normalize_headers(headers: Optional[Mapping[str, str]]) -> Optional[Dict[str, str]]:
    if headers is None:
        return None
    return {str(k).lower(): str(v) for k, v in headers.items()}


class MonitoredCall:
    """Handle for one call inside ApiMonitor.api_call()."""

    def __init__(self, monitor: "ApiMonitor", call_id: str):
        self.monitor = monitor
        self.call_id = call_id
        self.ended = False
        self.duration_ms: Optional[float] = None

    def finish(
        self,
        status_code: int,
        success: bool,
        error: Optional[BaseException] = None,
        response_headers: Optional[Mapping[str, str]] = None,
    ):
        """End the call explicitly with its real outcome; later calls are ignored."""
        if self.ended:
            return
        self.ended = True
        self.duration_ms = self.monitor.end_api_call(
            self.call_id, status_code, success, error, response_headers
        )


class ApiMonitor:
    """Tracks in-flight Google API calls and their rate-limit state."""

    def __init__(
        self,
        metrics_collector: MetricsCollector,
        config: Optional[ApiMonitorConfig] = None,
        clock: Callable[[], float] = time.monotonic,
        wall_clock: Callable[[], float] = time.time,
    ):
        self.metrics_collector = metrics_collector
        self.config = config or ApiMonitorConfig()
        self._clock = clock
        self._wall_clock = wall_clock
        self.active_calls: Dict[str, ActiveCall] = {}
        self.rate_limits: Dict[str, RateLimitInfo] = {}
        self.quota_info: Dict[str, QuotaInfo] = {}

    @staticmethod
    def generate_call_id() -> str:
        return f"call_{uuid.uuid4().hex[:16]}"

    def start_api_call(self, call_id: str, api: str, method: str, url: str):
        """Start monitoring a call; an in-flight id is silently overwritten."""
        self.active_calls[call_id] = ActiveCall(
            call_id=call_id,
            api=api,
            method=method,
            url=url,
            start_time=self._clock(),
            started_at=self._wall_clock(),
        )
        logger.debug(f"API call started [{call_id}] {api}: {method} {url}")

    def end_api_call(
        self,
        call_id: str,
        status_code: int,
        success: bool,
        error: Optional[BaseException] = None,
        response_headers: Optional[Mapping[str, str]] = None,
    ) -> Optional[float]:
        """End monitoring a call.

        Returns the call duration in milliseconds, or None when the id is
        not in flight (which is not an error).
        """
        call = self.active_calls.pop(call_id, None)
        if call is None:
            logger.debug(f"end_api_call for unknown call id {call_id}")
            return None

        duration_ms = (self._clock() - call.start_time) * 1000
        headers = _normalize_headers(response_headers)

        rate_limited = self._update_rate_limit_info(
            call.api, status_code, success, headers
        )
        self._update_quota_info(call.api, headers or {})

        self.metrics_collector.record_api_call(
            call.api, duration_ms, success, status_code, rate_limited
        )

        if rate_limited:
            logger.warning(
                f"Rate limit hit for {call.api} API: {call.method} {call.url}"
            )
        if not success and status_code >= 500:
            logger.error(
                f"Server error for {call.api} API: {status_code} {call.method} {call.url}"
            )
        elif error is not None:
            logger.debug(
                f"API call failed [{call_id}] {call.api}: {type(error).__name__}: {error}"
            )

        return duration_ms

    def _update_rate_limit_info(
        self,
        api: str,
        status_code: int,
        success: bool,
        headers: Optional[Dict[str, str]],
    ) -> bool:
        """Overwrite the API's rate-limit state when the call carried signals.

        A successful call without signals clears an earlier limit. Returns
        whether this call was rate limited.
        """
        cfg = self.config
        headers = headers or {}
        remaining = _parse_int(headers.get(cfg.remaining_header.lower()))
        limit = _parse_int(headers.get(cfg.limit_header.lower()))
        retry_after = parse_retry_after(
            headers.get(cfg.retry_after_header.lower()), now=self._wall_clock()
        )
        quota_user = headers.get(cfg.quota_user_header.lower())

        has_signal = (
            status_code == 429
            or remaining is not None
            or limit is not None
            or retry_after is not None
        )
        if not has_signal:
            current = self.rate_limits.get(api)
            if current is not None and current.is_limited and success:
                self.rate_limits[api] = RateLimitInfo(
                    api=api, observed_at=self._wall_clock()
                )
            return False

        is_limited = status_code == 429 or remaining == 0 or retry_after is not None
        self.rate_limits[api] = RateLimitInfo(
            api=api,
            is_limited=is_limited,
            retry_after_seconds=retry_after,
            remaining=remaining,
            limit=limit,
            limit_type="user" if quota_user else None,
            observed_at=self._wall_clock(),
        )
        return is_limited

    def _update_quota_info(self, api: str, headers: Dict[str, str]):
        cfg = self.config
        used = _parse_int(headers.get(cfg.quota_used_header.lower()))
        limit = _parse_int(headers.get(cfg.quota_limit_header.lower()))

        if used is not None and limit is not None:
            reset_at = None
            reset_header = headers.get(cfg.quota_reset_header.lower())
            if reset_header:
                try:
                    reset_at = datetime.fromisoformat(
                        reset_header.replace("Z", "+00:00")
                    ).timestamp()
                except ValueError:
                    reset_at = None
            self.quota_info[api] = QuotaInfo(
                api=api,
                used=used,
                limit=limit,
                remaining=max(0, limit - used),
                reset_at=reset_at,
            )
            return

        # No quota headers: count calls against a per-minute default ceiling
        now = self._wall_clock()
        current = self.quota_info.get(api)
        if current is not None and not current.estimated:
            return
        if current is None or (current.reset_at is not None and now >= current.reset_at):
            default_limit = cfg.default_rate_limits.get(api, cfg.fallback_rate_limit)
            self.quota_info[api] = QuotaInfo(
                api=api,
                used=1,
                limit=default_limit,
                remaining=max(0, default_limit - 1),
                reset_at=now + QUOTA_WINDOW_SECONDS,
                estimated=True,
            )
        else:
            current.used += 1
            current.remaining = max(0, current.limit - current.used)

    @asynccontextmanager
    async def api_call(self, api: str, method: str, url: str):
        """Scope one downstream call; the call is always ended on exit.

        Yields a MonitoredCall. Code inside the block may call
        ``finish()`` with the real status and headers; otherwise a normal
        exit is recorded as a 200 success and an exception as a failure with
        the status extracted from it. Exceptions propagate unchanged.
        """
        call = MonitoredCall(self, self.generate_call_id())
        self.start_api_call(call.call_id, api, method, url)
        try:
            yield call
        except BaseException as e:
            call.finish(extract_status_code(e), False, e)
            raise
        else:
            call.finish(200, True)

    async def wrap_api_call(
        self,
        api: str,
        method: str,
        url: str,
        fn: Callable[[], Awaitable[Any]],
    ) -> Any:
        """Run a downstream operation under monitoring and return its result."""
        async with self.api_call(api, method, url):
            result = fn()
            if inspect.isawaitable(result):
                result = await result
            return result

    async def wrap_fetch(
        self,
        api: str,
        url: str,
        session: aiohttp.ClientSession,
        method: str = "GET",
        raise_for_status: bool = False,
        **kwargs,
    ) -> aiohttp.ClientResponse:
        """Issue an HTTP request through ``session`` under monitoring.

        The response status and headers feed rate-limit detection. HTTP
        error statuses are returned unless ``raise_for_status`` is set, in
        which case the response is released and GoogleApiError raised.
        Connection errors are recorded and re-raised.
        """
        async with self.api_call(api, method, url) as call:
            response = await session.request(method, url, **kwargs)
            call.finish(
                response.status,
                response.status < 400,
                response_headers=response.headers,
            )
            if raise_for_status and response.status >= 400:
                response.release()
                raise GoogleApiError(
                    response.status,
                    f"{api} API returned HTTP {response.status}: {response.reason}",
                    reason=response.reason,
                )
            return response

    def get_active_calls(self) -> List[ActiveCall]:
        """Get copies of all in-flight calls."""
        return [replace(call) for call in self.active_calls.values()]

    def _limit_active(self, info: Optional[RateLimitInfo]) -> bool:
        if info is None or not info.is_limited:
            return False
        if info.retry_after_seconds is None or info.observed_at is None:
            return True
        return self._wall_clock() < info.observed_at + info.retry_after_seconds

    def get_rate_limit_info(self, api: str) -> RateLimitInfo:
        """Get the latest rate-limit state, or a not-limited default.

        A limit whose Retry-After window has passed is reported as lifted.
        """
        info = self.rate_limits.get(api)
        if info is None:
            return RateLimitInfo(api=api)
        return replace(info, is_limited=self._limit_active(info))

    def get_quota_info(self, api: str) -> Optional[QuotaInfo]:
        info = self.quota_info.get(api)
        return replace(info) if info else None

    def is_rate_limited(self, api: str) -> bool:
        return self._limit_active(self.rate_limits.get(api))

    def get_recommended_delay(self, api: str) -> int:
        """Advisory delay in milliseconds before the next call to ``api``."""
        info = self.rate_limits.get(api)
        if self._limit_active(info) and info.retry_after_seconds is not None:
            return int(info.retry_after_seconds * 1000)

        quota = self.quota_info.get(api)
        if quota is not None:
            expired = quota.reset_at is not None and self._wall_clock() >= quota.reset_at
            if not expired and quota.remaining < self.config.low_quota_threshold:
                return self.config.low_quota_delay_ms

        return 0

    def get_api_performance_summary(self) -> Dict[str, Dict[str, Any]]:
        """Per-API rate-limit, quota and performance overview."""
        apis = (
            set(self.rate_limits)
            | set(self.quota_info)
            | set(self.metrics_collector.get_api_names())
        )
        summary: Dict[str, Dict[str, Any]] = {}

        for api in sorted(apis):
            rate_limit = self.get_rate_limit_info(api)
            quota = self.quota_info.get(api)
            stat = self.metrics_collector.get_api_metrics(api)

            performance = None
            if stat is not None and stat.total_calls > 0:
                performance = {
                    "total_calls": stat.total_calls,
                    "success_rate": round(
                        stat.successful_calls / stat.total_calls * 100, 2
                    ),
                    "avg_response_time": round(stat.avg_response_time, 2),
                    "rate_limit_hits": stat.rate_limit_hits,
                }

            summary[api] = {
                "rate_limit": {
                    "is_limited": rate_limit.is_limited,
                    "requests_remaining": rate_limit.remaining,
                    "retry_after": rate_limit.retry_after_seconds,
                },
                "quota": quota.to_dict() if quota else None,
                "performance": performance,
                "recommended_delay_ms": self.get_recommended_delay(api),
            }

        return summary

    def monitored_client(self, client: Any, api: str) -> "MonitoredClient":
        """Wrap a client so each of its coroutine methods is monitored."""
        return MonitoredClient(self, client, api)


class MonitoredClient:
    """Proxy routing a client's coroutine methods through wrap_api_call."""

    def __init__(self, monitor: ApiMonitor, client: Any, api: str):
        self._monitor = monitor
        self._client = client
        self._api = api

    def __getattr__(self, name: str):
        attr = getattr(self._client, name)
        if not inspect.iscoroutinefunction(attr):
            return attr

        @functools.wraps(attr)
        async def monitored(*args, **kwargs):
            return await self._monitor.wrap_api_call(
                self._api,
                name,
                f"{self._api}.{name}",
                lambda: attr(*args, **kwargs),
            )

        return monitored
