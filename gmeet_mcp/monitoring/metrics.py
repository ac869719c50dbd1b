"""
Metrics collection for the Google Meet MCP Server.
Accumulates tool and Google API call statistics and exports them as JSON
snapshots or Prometheus text exposition.
"""

import asyncio
import functools
import math
import os
import threading
import time
from collections import deque
from dataclasses import asdict, dataclass, field, replace
from datetime import datetime, timezone
from typing import Any, Callable, Deque, Dict, List, Optional

import psutil

from gmeet_mcp.logging.logger import logger


DEFAULT_EVENT_CAPACITY = 100
RATE_WINDOW_SECONDS = 60.0
METRIC_PREFIX = "gmcp"


def _iso(ts: Optional[float]) -> Optional[str]:
    if ts is None:
        return None
    return datetime.fromtimestamp(ts, tz=timezone.utc).isoformat()


@dataclass
class ToolUsageStat:
    """Per-tool call statistics."""

    name: str
    total_calls: int = 0
    successful_calls: int = 0
    failed_calls: int = 0
    avg_duration_ms: float = 0.0
    min_duration_ms: float = 0.0
    max_duration_ms: float = 0.0
    last_called: Optional[str] = None
    error_rate: float = 0.0

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class ApiPerformanceStat:
    """Per-API call statistics."""

    api_name: str
    total_calls: int = 0
    successful_calls: int = 0
    failed_calls: int = 0
    avg_response_time: float = 0.0
    rate_limit_hits: int = 0
    last_call: Optional[str] = None
    last_status_code: Optional[int] = None

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class MetricEvent:
    """A single entry of the recent-events ring buffer."""

    type: str  # "tool_call", "api_call" or "error"
    timestamp: float
    success: bool
    name: Optional[str] = None
    duration_ms: Optional[float] = None
    error_type: Optional[str] = None
    details: Optional[Dict[str, Any]] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "type": self.type,
            "timestamp": _iso(self.timestamp),
            "success": self.success,
            "name": self.name,
            "duration_ms": self.duration_ms,
            "error_type": self.error_type,
            "details": dict(self.details) if self.details else None,
        }


@dataclass
class SystemMetrics:
    """Process resource usage at snapshot time."""

    uptime_seconds: float = 0.0
    memory_rss_bytes: int = 0
    memory_total_bytes: int = 0
    memory_usage_percent: float = 0.0
    cpu_usage_percent: float = 0.0
    thread_count: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class MetricsData:
    """Point-in-time metrics snapshot."""

    requests_total: int
    errors_total: int
    error_rate: float
    requests_per_minute: int
    avg_response_time: float
    google_api_calls: int
    tool_usage: Dict[str, ToolUsageStat] = field(default_factory=dict)
    api_performance: Dict[str, ApiPerformanceStat] = field(default_factory=dict)
    system_metrics: SystemMetrics = field(default_factory=SystemMetrics)
    recent_events: List[MetricEvent] = field(default_factory=list)
    timestamp: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "timestamp": self.timestamp,
            "requests_total": self.requests_total,
            "errors_total": self.errors_total,
            "error_rate": self.error_rate,
            "requests_per_minute": self.requests_per_minute,
            "avg_response_time": self.avg_response_time,
            "google_api_calls": self.google_api_calls,
            "tool_usage": {k: v.to_dict() for k, v in self.tool_usage.items()},
            "api_performance": {
                k: v.to_dict() for k, v in self.api_performance.items()
            },
            "system_metrics": self.system_metrics.to_dict(),
            "recent_events": [e.to_dict() for e in self.recent_events],
        }


class MetricsCollector:
    """Collects tool and API call metrics for one process.

    All recording methods are synchronous and never raise for ordinary
    inputs; no validation is applied to names or durations.
    """

    def __init__(
        self,
        event_capacity: int = DEFAULT_EVENT_CAPACITY,
        window_seconds: float = RATE_WINDOW_SECONDS,
        clock: Callable[[], float] = time.monotonic,
        wall_clock: Callable[[], float] = time.time,
    ):
        """
        Initialize metrics collector.

        Args:
            event_capacity: Size of the recent-events ring buffer
            window_seconds: Trailing window used for requests per minute
            clock: Monotonic clock used for windows and uptime
            wall_clock: Epoch clock used for event timestamps
        """
        self.event_capacity = event_capacity
        self.window_seconds = window_seconds
        self._clock = clock
        self._wall_clock = wall_clock
        self.lock = threading.RLock()
        self._process = psutil.Process(os.getpid())
        self._init_state()

    def _init_state(self):
        self.start_time = self._clock()
        self.requests_total = 0
        self.errors_total = 0
        self.google_api_calls = 0
        self.avg_response_time = 0.0
        self.tool_usage: Dict[str, ToolUsageStat] = {}
        self.api_performance: Dict[str, ApiPerformanceStat] = {}
        self.recent_events: Deque[MetricEvent] = deque(maxlen=self.event_capacity)
        self._request_times: Deque[float] = deque()

    def record_tool_call(
        self,
        name: str,
        duration_ms: float,
        success: bool,
        error: Optional[BaseException] = None,
    ):
        """Record one completed tool invocation."""
        with self.lock:
            now = self._clock()
            self.requests_total += 1
            if not success:
                self.errors_total += 1

            self.avg_response_time += (
                duration_ms - self.avg_response_time
            ) / self.requests_total
            self._request_times.append(now)
            self._prune_window(now)

            stat = self.tool_usage.get(name)
            if stat is None:
                stat = ToolUsageStat(
                    name=name, min_duration_ms=duration_ms, max_duration_ms=duration_ms
                )
                self.tool_usage[name] = stat

            stat.total_calls += 1
            if success:
                stat.successful_calls += 1
            else:
                stat.failed_calls += 1
            stat.avg_duration_ms += (duration_ms - stat.avg_duration_ms) / stat.total_calls
            stat.min_duration_ms = min(stat.min_duration_ms, duration_ms)
            stat.max_duration_ms = max(stat.max_duration_ms, duration_ms)
            stat.last_called = _iso(self._wall_clock())
            stat.error_rate = stat.failed_calls / stat.total_calls * 100

            self.recent_events.append(
                MetricEvent(
                    type="tool_call",
                    timestamp=self._wall_clock(),
                    success=success,
                    name=name,
                    duration_ms=duration_ms,
                    error_type=type(error).__name__ if error is not None else None,
                )
            )

            if error is not None:
                # A failed call already counted towards errors_total above
                self._add_error_event(
                    type(error).__name__,
                    {"tool": name, "message": str(error)},
                    count=success,
                )

    def record_api_call(
        self,
        api: str,
        duration_ms: float,
        success: bool,
        status_code: Optional[int] = None,
        rate_limited: bool = False,
    ):
        """Record one completed downstream Google API call."""
        with self.lock:
            self.google_api_calls += 1

            stat = self.api_performance.get(api)
            if stat is None:
                stat = ApiPerformanceStat(api_name=api)
                self.api_performance[api] = stat

            stat.total_calls += 1
            if success:
                stat.successful_calls += 1
            else:
                stat.failed_calls += 1
            if rate_limited:
                stat.rate_limit_hits += 1
            stat.avg_response_time += (
                duration_ms - stat.avg_response_time
            ) / stat.total_calls
            stat.last_call = _iso(self._wall_clock())
            stat.last_status_code = status_code

            self.recent_events.append(
                MetricEvent(
                    type="api_call",
                    timestamp=self._wall_clock(),
                    success=success,
                    name=api,
                    duration_ms=duration_ms,
                    details={"status_code": status_code, "rate_limited": rate_limited},
                )
            )

    def record_error(self, error_type: str, metadata: Optional[Dict[str, Any]] = None):
        """Record a general error that is not tied to a tool call."""
        with self.lock:
            self._add_error_event(error_type, metadata, count=True)

    def _add_error_event(
        self, error_type: str, metadata: Optional[Dict[str, Any]], count: bool
    ):
        if count:
            self.errors_total += 1
        self.recent_events.append(
            MetricEvent(
                type="error",
                timestamp=self._wall_clock(),
                success=False,
                error_type=error_type,
                details=dict(metadata) if metadata else None,
            )
        )

    def _prune_window(self, now: float):
        cutoff = now - self.window_seconds
        while self._request_times and self._request_times[0] <= cutoff:
            self._request_times.popleft()

    def _get_system_metrics(self) -> SystemMetrics:
        uptime = self._clock() - self.start_time
        try:
            with self._process.oneshot():
                memory = self._process.memory_info()
                memory_percent = self._process.memory_percent()
                cpu_percent = self._process.cpu_percent(interval=None)
                threads = self._process.num_threads()
            total = psutil.virtual_memory().total
        except psutil.Error as e:
            logger.debug(f"Could not read process metrics: {e}")
            return SystemMetrics(uptime_seconds=uptime)

        return SystemMetrics(
            uptime_seconds=uptime,
            memory_rss_bytes=memory.rss,
            memory_total_bytes=total,
            memory_usage_percent=round(memory_percent, 2),
            cpu_usage_percent=cpu_percent,
            thread_count=threads,
        )

    def get_metrics(self) -> MetricsData:
        """Get a snapshot of all metrics."""
        with self.lock:
            self._prune_window(self._clock())

            error_rate = (
                self.errors_total / self.requests_total * 100
                if self.requests_total > 0
                else 0
            )

            return MetricsData(
                timestamp=_iso(self._wall_clock()),
                requests_total=self.requests_total,
                errors_total=self.errors_total,
                error_rate=error_rate,
                requests_per_minute=len(self._request_times),
                avg_response_time=self.avg_response_time,
                google_api_calls=self.google_api_calls,
                tool_usage={k: replace(v) for k, v in self.tool_usage.items()},
                api_performance={
                    k: replace(v) for k, v in self.api_performance.items()
                },
                system_metrics=self._get_system_metrics(),
                recent_events=[_copy_event(e) for e in self.recent_events],
            )

    def get_tool_metrics(self, name: str) -> Optional[ToolUsageStat]:
        """Get a copy of one tool's statistics."""
        with self.lock:
            stat = self.tool_usage.get(name)
            return replace(stat) if stat else None

    def get_api_metrics(self, api: str) -> Optional[ApiPerformanceStat]:
        """Get a copy of one API's statistics."""
        with self.lock:
            stat = self.api_performance.get(api)
            return replace(stat) if stat else None

    def get_api_names(self) -> List[str]:
        """Names of every API with at least one recorded call."""
        with self.lock:
            return list(self.api_performance)

    def get_recent_events(self, limit: int = DEFAULT_EVENT_CAPACITY) -> List[MetricEvent]:
        """Get the newest events, oldest first."""
        with self.lock:
            if limit <= 0:
                return []
            return [_copy_event(e) for e in list(self.recent_events)[-limit:]]

    def get_prometheus_metrics(self) -> str:
        """Render all metrics in Prometheus text exposition format (0.0.4)."""
        metrics = self.get_metrics()
        lines: List[str] = []

        def family(name: str, kind: str, help_text: str, samples):
            if not samples:
                return
            full_name = f"{METRIC_PREFIX}_{name}"
            lines.append(f"# HELP {full_name} {help_text}")
            lines.append(f"# TYPE {full_name} {kind}")
            for labels, value in samples:
                lines.append(
                    f"{full_name}{_format_labels(labels)} {_format_value(value)}"
                )

        family("requests_total", "counter", "Total number of MCP tool requests",
               [(None, metrics.requests_total)])
        family("errors_total", "counter", "Total number of errors",
               [(None, metrics.errors_total)])
        family("error_rate", "gauge", "Error rate percentage",
               [(None, metrics.error_rate)])
        family("requests_per_minute", "gauge", "Tool requests in the last minute",
               [(None, metrics.requests_per_minute)])
        family("avg_response_time_ms", "gauge",
               "Average tool response time in milliseconds",
               [(None, metrics.avg_response_time)])
        family("google_api_calls_total", "counter", "Total Google API calls",
               [(None, metrics.google_api_calls)])

        tools = sorted(metrics.tool_usage.items())
        family("tool_calls_total", "counter", "Total tool calls",
               [({"tool": n}, s.total_calls) for n, s in tools])
        family("tool_success_total", "counter", "Successful tool calls",
               [({"tool": n}, s.successful_calls) for n, s in tools])
        family("tool_errors_total", "counter", "Failed tool calls",
               [({"tool": n}, s.failed_calls) for n, s in tools])
        family("tool_duration_avg_ms", "gauge",
               "Average tool duration in milliseconds",
               [({"tool": n}, s.avg_duration_ms) for n, s in tools])

        apis = sorted(metrics.api_performance.items())
        family("api_calls_total", "counter", "Total Google API calls by API",
               [({"api": n}, s.total_calls) for n, s in apis])
        family("api_success_total", "counter", "Successful Google API calls",
               [({"api": n}, s.successful_calls) for n, s in apis])
        family("api_errors_total", "counter", "Failed Google API calls",
               [({"api": n}, s.failed_calls) for n, s in apis])
        family("api_response_time_avg_ms", "gauge",
               "Average Google API response time in milliseconds",
               [({"api": n}, s.avg_response_time) for n, s in apis])
        family("api_rate_limit_hits_total", "counter", "Google API rate limit hits",
               [({"api": n}, s.rate_limit_hits) for n, s in apis])

        system = metrics.system_metrics
        family("uptime_seconds", "gauge", "Process uptime in seconds",
               [(None, system.uptime_seconds)])
        family("memory_rss_bytes", "gauge", "Resident memory of the process in bytes",
               [(None, system.memory_rss_bytes)])
        family("memory_usage_percent", "gauge",
               "Process resident memory as a percentage of system memory",
               [(None, system.memory_usage_percent)])

        return "\n".join(lines) + "\n"

    def reset(self):
        """Reset all metrics (test harnesses only)."""
        with self.lock:
            self._init_state()


def _copy_event(event: MetricEvent) -> MetricEvent:
    return replace(event, details=dict(event.details) if event.details else None)


def _escape_label(value: Any) -> str:
    return (
        str(value).replace("\\", "\\\\").replace("\n", "\\n").replace('"', '\\"')
    )


def _format_labels(labels: Optional[Dict[str, Any]]) -> str:
    if not labels:
        return ""
    body = ",".join(f'{k}="{_escape_label(v)}"' for k, v in labels.items())
    return "{" + body + "}"


def _format_value(value: Any) -> str:
    if isinstance(value, bool):
        return str(int(value))
    if isinstance(value, int):
        return str(value)
    value = float(value)
    if math.isnan(value):
        return "NaN"
    if math.isinf(value):
        return "+Inf" if value > 0 else "-Inf"
    return repr(value)


class MetricsMiddleware:
    """Decorators that feed tool invocations into a collector."""

    def __init__(self, metrics_collector: MetricsCollector):
        """Initialize metrics middleware."""
        self.metrics = metrics_collector

    def _finish(self, tool_name: str, start: float, result: Any, error: Optional[BaseException]):
        duration_ms = (time.perf_counter() - start) * 1000
        success = error is None
        if isinstance(result, dict) and not result.get("success", True):
            success = False
        self.metrics.record_tool_call(tool_name, duration_ms, success, error)

    def track_tool(self, tool_name: str):
        """Decorator recording exactly one tool call per invocation.

        Works for both plain and coroutine functions. Exceptions are
        recorded and re-raised unchanged.
        """

        def decorator(func):
            if asyncio.iscoroutinefunction(func):

                @functools.wraps(func)
                async def async_wrapper(*args, **kwargs):
                    start = time.perf_counter()
                    try:
                        result = await func(*args, **kwargs)
                    except Exception as e:
                        self._finish(tool_name, start, None, e)
                        raise
                    self._finish(tool_name, start, result, None)
                    return result

                return async_wrapper

            @functools.wraps(func)
            def wrapper(*args, **kwargs):
                start = time.perf_counter()
                try:
                    result = func(*args, **kwargs)
                except Exception as e:
                    self._finish(tool_name, start, None, e)
                    raise
                self._finish(tool_name, start, result, None)
                return result

            return wrapper

        return decorator
