"""
Health check and monitoring endpoints for the Google Meet MCP Server.
Serves health, readiness and metrics snapshots over HTTP for orchestrators
and Prometheus scrapers.
"""

import functools
import hmac
import json
import time
from datetime import datetime, timezone
from typing import Any, Dict, Optional

import psutil
from aiohttp import BasicAuth, web
from aiohttp.abc import AbstractAccessLogger

from gmeet_mcp.config.settings import settings
from gmeet_mcp.exceptions import ServerAlreadyRunningError
from gmeet_mcp.logging.logger import logger
from gmeet_mcp.monitoring import (
    ApiMonitor,
    HealthChecker,
    HealthState,
    MetricsCollector,
)


PROMETHEUS_CONTENT_TYPE = "text/plain; version=0.0.4; charset=utf-8"

ENDPOINTS = {
    "health": "/health - Comprehensive health check",
    "liveness": "/health/live - Liveness probe",
    "readiness": "/health/ready - Readiness probe",
    "metrics": "/metrics - JSON metrics",
    "prometheus": "/metrics/prometheus - Prometheus format",
    "api_status": "/api/status - API status overview",
    "api_performance": "/api/performance - Detailed API performance",
}

_dumps = functools.partial(json.dumps, indent=2, default=str)


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def status_code_for(status: HealthState) -> int:
    """HTTP status for a health verdict: degraded is still operational."""
    if status == HealthState.UNHEALTHY:
        return 503
    return 200


class HealthAccessLogger(AbstractAccessLogger):
    """Route aiohttp access logs through our logger instead of the default."""

    def log(self, request, response, elapsed):
        logger.debug(
            f"HTTP {request.method} {request.path} {response.status} "
            f"({elapsed * 1000:.1f} ms)"
        )


class HealthHandler:
    """Request handlers for the monitoring endpoints."""

    def __init__(
        self,
        health_checker: HealthChecker,
        metrics_collector: MetricsCollector,
        api_monitor: ApiMonitor,
        service_name: str = "Google Meet MCP Server",
        basic_auth: Optional[BasicAuth] = None,
        enable_cors: bool = True,
    ):
        """Initialize handler with the monitoring components it reads from."""
        self.health_checker = health_checker
        self.metrics_collector = metrics_collector
        self.api_monitor = api_monitor
        self.service_name = service_name
        self.basic_auth = basic_auth
        self.enable_cors = enable_cors

    def build_app(self) -> web.Application:
        """Create the aiohttp application with every route registered."""
        app = web.Application(middlewares=[self._middleware])
        app.router.add_get("/", self._handle_root)
        app.router.add_get("/health", self._handle_health)
        app.router.add_get("/health/live", self._handle_live)
        app.router.add_get("/health/ready", self._handle_ready)
        app.router.add_get("/metrics", self._handle_metrics)
        app.router.add_get("/metrics/prometheus", self._handle_prometheus)
        app.router.add_get("/api/status", self._handle_api_status)
        app.router.add_get("/api/performance", self._handle_api_performance)
        return app

    @web.middleware
    async def _middleware(self, request: web.Request, handler) -> web.StreamResponse:
        if request.method == "OPTIONS":
            response = web.Response(status=200)
        elif self.basic_auth and not self._check_basic_auth(request):
            response = self._send_error(401, "Unauthorized")
            response.headers["WWW-Authenticate"] = 'Basic realm="Monitoring"'
        else:
            try:
                response = await handler(request)
            except web.HTTPNotFound:
                response = self._send_error(404, "Not Found")
            except web.HTTPMethodNotAllowed:
                response = self._send_error(405, "Method Not Allowed")
            except web.HTTPException:
                raise
            except Exception as e:
                logger.exception(f"Error handling request {request.path}: {e}")
                response = self._send_error(500, "Internal Server Error")

        if self.enable_cors:
            response.headers["Access-Control-Allow-Origin"] = "*"
            response.headers["Access-Control-Allow-Methods"] = "GET, OPTIONS"
            response.headers["Access-Control-Allow-Headers"] = "Content-Type, Authorization"
        return response

    def _check_basic_auth(self, request: web.Request) -> bool:
        header = request.headers.get("Authorization", "")
        if not header.startswith("Basic "):
            return False
        try:
            supplied = BasicAuth.decode(header)
        except ValueError:
            return False
        return hmac.compare_digest(
            supplied.login, self.basic_auth.login
        ) and hmac.compare_digest(supplied.password, self.basic_auth.password)

    async def _handle_root(self, request: web.Request) -> web.Response:
        """Handle service index endpoint."""
        health = await self.health_checker.get_health_status()
        return self._send_response(
            200,
            {
                "service": self.service_name,
                "version": health.version,
                "status": health.status.value,
                "uptime": health.uptime_seconds,
                "endpoints": ENDPOINTS,
            },
        )

    async def _handle_health(self, request: web.Request) -> web.Response:
        """Handle health check endpoint."""
        health = await self.health_checker.get_health_status()
        return self._send_response(status_code_for(health.status), health.to_dict())

    async def _handle_live(self, request: web.Request) -> web.Response:
        """Handle liveness endpoint; answers while the process runs."""
        return self._send_response(
            200,
            {"status": "alive", "timestamp": _now_iso(), "uptime": self._uptime()},
        )

    async def _handle_ready(self, request: web.Request) -> web.Response:
        """Handle readiness endpoint: healthy and degraded are both ready."""
        is_ready = await self.health_checker.is_healthy()
        # is_healthy() runs a full check and keeps its result
        health = self.health_checker.get_last_health_status()

        response = {
            "status": "ready" if is_ready else "not_ready",
            "timestamp": _now_iso(),
            "health_status": health.status.value if health else None,
            "auth_valid": health.auth.token_valid if health else False,
            "apis_available": (
                health is not None
                and health.apis.overall_status != HealthState.UNHEALTHY
            ),
        }
        return self._send_response(200 if is_ready else 503, response)

    async def _handle_metrics(self, request: web.Request) -> web.Response:
        """Handle JSON metrics endpoint."""
        return self._send_response(200, self.metrics_collector.get_metrics().to_dict())

    async def _handle_prometheus(self, request: web.Request) -> web.Response:
        """Handle Prometheus scrape endpoint."""
        body = self.metrics_collector.get_prometheus_metrics()
        return web.Response(
            status=200,
            body=body.encode("utf-8"),
            headers={"Content-Type": PROMETHEUS_CONTENT_TYPE},
        )

    async def _handle_api_status(self, request: web.Request) -> web.Response:
        """Handle per-API status overview."""
        health = await self.health_checker.get_health_status()
        performance = self.api_monitor.get_api_performance_summary()

        apis = {
            name: {
                "status": endpoint.status.value,
                "last_success": endpoint.last_success,
                "last_error": endpoint.last_error,
                "error_count": endpoint.error_count,
                "performance": performance.get(name),
            }
            for name, endpoint in health.apis.endpoints.items()
        }

        return self._send_response(
            200,
            {
                "timestamp": _now_iso(),
                "overall_status": health.apis.overall_status.value,
                "apis": apis,
                "active_calls": len(self.api_monitor.get_active_calls()),
            },
        )

    async def _handle_api_performance(self, request: web.Request) -> web.Response:
        """Handle detailed API performance endpoint."""
        metrics = self.metrics_collector.get_metrics()

        return self._send_response(
            200,
            {
                "timestamp": _now_iso(),
                "overall_performance": {
                    "avg_response_time": metrics.avg_response_time,
                    "requests_per_minute": metrics.requests_per_minute,
                    "error_rate": metrics.error_rate,
                    "total_api_calls": metrics.google_api_calls,
                },
                "api_details": self.api_monitor.get_api_performance_summary(),
                "active_calls": [
                    call.to_dict() for call in self.api_monitor.get_active_calls()
                ],
                "recent_events": [
                    event.to_dict()
                    for event in self.metrics_collector.get_recent_events(20)
                ],
            },
        )

    @staticmethod
    def _uptime() -> float:
        try:
            return round(time.time() - psutil.Process().create_time(), 2)
        except psutil.Error:
            return 0.0

    @staticmethod
    def _send_response(status_code: int, data: Dict[str, Any]) -> web.Response:
        """Send JSON response."""
        return web.json_response(data, status=status_code, dumps=_dumps)

    def _send_error(self, status_code: int, message: str) -> web.Response:
        return self._send_response(
            status_code,
            {"error": message, "status": status_code, "timestamp": _now_iso()},
        )


class HealthServer:
    """HTTP server exposing the monitoring endpoints."""

    def __init__(
        self,
        health_checker: HealthChecker,
        metrics_collector: MetricsCollector,
        api_monitor: ApiMonitor,
        host: Optional[str] = None,
        port: Optional[int] = None,
        basic_auth: Optional[BasicAuth] = None,
        enable_cors: Optional[bool] = None,
    ):
        """Initialize health server; unset options come from settings."""
        self.host = host or settings.MONITORING_HOST
        self.port = settings.MONITORING_PORT if port is None else port
        self.handler = HealthHandler(
            health_checker,
            metrics_collector,
            api_monitor,
            service_name=settings.SERVICE_NAME,
            basic_auth=basic_auth,
            enable_cors=settings.ENABLE_CORS if enable_cors is None else enable_cors,
        )
        self.runner: Optional[web.AppRunner] = None
        self.running = False

    async def start(self):
        """Start the health server on the running event loop."""
        if self.runner is not None:
            raise ServerAlreadyRunningError("Monitoring server is already running")

        self.runner = web.AppRunner(
            self.handler.build_app(), access_log_class=HealthAccessLogger
        )
        await self.runner.setup()
        site = web.TCPSite(self.runner, self.host, self.port)
        try:
            await site.start()
        except OSError as e:
            logger.error(f"Failed to start health server: {e}")
            await self.runner.cleanup()
            self.runner = None
            raise

        self.running = True
        logger.info(f"Health server started on http://{self.host}:{self.port}")
        logger.info("Available endpoints:")
        for description in ENDPOINTS.values():
            logger.info(f"  - GET {description}")

    async def stop(self):
        """Stop the health server."""
        if self.runner is None:
            return
        await self.runner.cleanup()
        self.runner = None
        self.running = False
        logger.info("Health server stopped")

    def is_running(self) -> bool:
        """Check if server is running."""
        return self.running


def create_health_server(
    health_checker: HealthChecker,
    metrics_collector: MetricsCollector,
    api_monitor: ApiMonitor,
    port: Optional[int] = None,
) -> HealthServer:
    """Build a health server, enabling basic auth when credentials are configured."""
    basic_auth = None
    if settings.has_basic_auth():
        basic_auth = BasicAuth(settings.MONITORING_USERNAME, settings.MONITORING_PASSWORD)

    return HealthServer(
        health_checker,
        metrics_collector,
        api_monitor,
        port=port,
        basic_auth=basic_auth,
    )


async def start_health_server(
    health_checker: HealthChecker,
    metrics_collector: MetricsCollector,
    api_monitor: ApiMonitor,
    port: Optional[int] = None,
) -> HealthServer:
    """Create and start a health server."""
    server = create_health_server(health_checker, metrics_collector, api_monitor, port)
    await server.start()
    return server
