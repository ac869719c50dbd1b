"""Tests for the monitoring HTTP endpoints."""

from unittest.mock import AsyncMock, MagicMock

import pytest
from aiohttp import BasicAuth
from aiohttp.test_utils import TestClient, TestServer

from gmeet_mcp.api.health import (
    PROMETHEUS_CONTENT_TYPE,
    HealthHandler,
    HealthServer,
    status_code_for,
)
from gmeet_mcp.exceptions import ServerAlreadyRunningError
from gmeet_mcp.monitoring import (
    ApiEndpointHealth,
    ApiGroupHealth,
    AuthHealth,
    DependencyHealth,
    HealthState,
    HealthStatus,
    MemoryUsage,
)


def make_health(status=HealthState.HEALTHY, api_status=None, token_valid=True):
    api_status = api_status or status
    endpoints = {
        "calendar": ApiEndpointHealth(status=api_status, response_time_ms=12.5),
        "meet": ApiEndpointHealth(status=HealthState.HEALTHY, response_time_ms=8.0),
    }
    return HealthStatus(
        status=status,
        timestamp="2026-01-01T00:00:00+00:00",
        uptime_seconds=42.0,
        version="3.0.0",
        memory=MemoryUsage(rss_bytes=1024),
        auth=AuthHealth(
            status=HealthState.HEALTHY if token_valid else HealthState.UNHEALTHY,
            token_valid=token_valid,
        ),
        apis=ApiGroupHealth(endpoints=endpoints, overall_status=api_status),
        dependencies=[
            DependencyHealth(name="python", status=HealthState.HEALTHY, type="service")
        ],
    )


def make_handler(monitor, collector, health=None, **kwargs):
    health = health or make_health()
    checker = MagicMock()
    checker.get_health_status = AsyncMock(return_value=health)
    checker.is_healthy = AsyncMock(return_value=health.status != HealthState.UNHEALTHY)
    checker.get_last_health_status = MagicMock(return_value=health)
    return HealthHandler(checker, collector, monitor, **kwargs)


def client_for(handler):
    return TestClient(TestServer(handler.build_app()))


class TestHealthEndpoints:
    def test_status_code_mapping(self):
        assert status_code_for(HealthState.HEALTHY) == 200
        assert status_code_for(HealthState.DEGRADED) == 200
        assert status_code_for(HealthState.UNHEALTHY) == 503

    @pytest.mark.asyncio
    async def test_health_healthy(self, monitor, collector):
        async with client_for(make_handler(monitor, collector)) as client:
            response = await client.get("/health")
            body = await response.json()

        assert response.status == 200
        assert body["status"] == "healthy"
        assert body["apis"]["overall_status"] == "healthy"
        assert body["apis"]["calendar"]["response_time_ms"] == 12.5

    @pytest.mark.asyncio
    async def test_health_degraded_is_200(self, monitor, collector):
        handler = make_handler(monitor, collector, make_health(HealthState.DEGRADED))
        async with client_for(handler) as client:
            response = await client.get("/health")

        assert response.status == 200

    @pytest.mark.asyncio
    async def test_health_unhealthy_is_503(self, monitor, collector):
        handler = make_handler(monitor, collector, make_health(HealthState.UNHEALTHY))
        async with client_for(handler) as client:
            response = await client.get("/health")
            body = await response.json()

        assert response.status == 503
        assert body["status"] == "unhealthy"

    @pytest.mark.asyncio
    async def test_liveness(self, monitor, collector):
        async with client_for(make_handler(monitor, collector)) as client:
            response = await client.get("/health/live")
            body = await response.json()

        assert response.status == 200
        assert body["status"] == "alive"
        assert body["uptime"] >= 0

    @pytest.mark.asyncio
    async def test_readiness_degraded_is_ready(self, monitor, collector):
        handler = make_handler(monitor, collector, make_health(HealthState.DEGRADED))
        async with client_for(handler) as client:
            response = await client.get("/health/ready")
            body = await response.json()

        assert response.status == 200
        assert body["status"] == "ready"
        assert body["auth_valid"] is True
        assert body["apis_available"] is True

    @pytest.mark.asyncio
    async def test_readiness_unhealthy_is_not_ready(self, monitor, collector):
        health = make_health(HealthState.UNHEALTHY, token_valid=False)
        async with client_for(make_handler(monitor, collector, health)) as client:
            response = await client.get("/health/ready")
            body = await response.json()

        assert response.status == 503
        assert body["status"] == "not_ready"
        assert body["auth_valid"] is False

    @pytest.mark.asyncio
    async def test_readiness_goes_through_is_healthy(self, monitor, collector):
        handler = make_handler(monitor, collector)
        handler.health_checker.is_healthy.return_value = False
        handler.health_checker.get_last_health_status.return_value = None

        async with client_for(handler) as client:
            response = await client.get("/health/ready")
            body = await response.json()

        handler.health_checker.is_healthy.assert_awaited_once()
        handler.health_checker.get_health_status.assert_not_awaited()
        assert response.status == 503
        assert body["status"] == "not_ready"
        assert body["health_status"] is None
        assert body["apis_available"] is False

    @pytest.mark.asyncio
    async def test_index_lists_endpoints(self, monitor, collector):
        async with client_for(make_handler(monitor, collector)) as client:
            response = await client.get("/")
            body = await response.json()

        assert response.status == 200
        assert body["version"] == "3.0.0"
        assert "prometheus" in body["endpoints"]


class TestMetricsEndpoints:
    @pytest.mark.asyncio
    async def test_json_metrics(self, monitor, collector):
        collector.record_tool_call("list_events", 100, True)
        async with client_for(make_handler(monitor, collector)) as client:
            response = await client.get("/metrics")
            body = await response.json()

        assert response.status == 200
        assert body["requests_total"] == 1
        assert body["tool_usage"]["list_events"]["successful_calls"] == 1

    @pytest.mark.asyncio
    async def test_prometheus_metrics(self, monitor, collector):
        collector.record_tool_call("list_events", 100, True)
        async with client_for(make_handler(monitor, collector)) as client:
            response = await client.get("/metrics/prometheus")
            text = await response.text()

        assert response.status == 200
        assert response.headers["Content-Type"] == PROMETHEUS_CONTENT_TYPE
        assert "# TYPE gmcp_requests_total counter" in text
        assert 'gmcp_tool_calls_total{tool="list_events"} 1' in text

    @pytest.mark.asyncio
    async def test_api_status_merges_health_and_performance(self, monitor, collector):
        monitor.start_api_call("a", "calendar", "GET", "/events")
        monitor.end_api_call("a", 200, True)
        monitor.start_api_call("b", "meet", "GET", "/spaces")

        health = make_health(HealthState.DEGRADED)
        async with client_for(make_handler(monitor, collector, health)) as client:
            response = await client.get("/api/status")
            body = await response.json()

        assert response.status == 200
        assert body["overall_status"] == "degraded"
        assert body["active_calls"] == 1
        assert body["apis"]["calendar"]["status"] == "degraded"
        assert body["apis"]["calendar"]["performance"]["performance"]["total_calls"] == 1
        assert body["apis"]["meet"]["performance"] is None

    @pytest.mark.asyncio
    async def test_api_performance(self, monitor, collector):
        for i in range(25):
            collector.record_tool_call(f"tool_{i}", 10, True)
        monitor.start_api_call("a", "calendar", "GET", "/events")

        async with client_for(make_handler(monitor, collector)) as client:
            response = await client.get("/api/performance")
            body = await response.json()

        assert response.status == 200
        assert body["overall_performance"]["total_api_calls"] == 0
        assert len(body["recent_events"]) == 20
        assert body["recent_events"][-1]["name"] == "tool_24"
        assert body["active_calls"][0]["api"] == "calendar"


class TestRequestHandling:
    @pytest.mark.asyncio
    async def test_unknown_path_is_json_404(self, monitor, collector):
        async with client_for(make_handler(monitor, collector)) as client:
            response = await client.get("/nope")
            body = await response.json()

        assert response.status == 404
        assert body["error"] == "Not Found"
        assert body["status"] == 404

    @pytest.mark.asyncio
    async def test_other_methods_are_405(self, monitor, collector):
        async with client_for(make_handler(monitor, collector)) as client:
            response = await client.post("/health")

        assert response.status == 405

    @pytest.mark.asyncio
    async def test_options_preflight_with_cors(self, monitor, collector):
        async with client_for(make_handler(monitor, collector)) as client:
            response = await client.options("/health")

        assert response.status == 200
        assert response.headers["Access-Control-Allow-Origin"] == "*"

    @pytest.mark.asyncio
    async def test_cors_can_be_disabled(self, monitor, collector):
        handler = make_handler(monitor, collector, enable_cors=False)
        async with client_for(handler) as client:
            response = await client.get("/health")

        assert "Access-Control-Allow-Origin" not in response.headers

    @pytest.mark.asyncio
    async def test_handler_failure_is_json_500(self, monitor, collector):
        handler = make_handler(monitor, collector)
        handler.health_checker.get_health_status.side_effect = RuntimeError("boom")

        async with client_for(handler) as client:
            response = await client.get("/health")
            body = await response.json()

        assert response.status == 500
        assert body["error"] == "Internal Server Error"
        assert body["status"] == 500
        assert "timestamp" in body

    @pytest.mark.asyncio
    async def test_basic_auth_required(self, monitor, collector):
        handler = make_handler(
            monitor, collector, basic_auth=BasicAuth("admin", "s3cret")
        )
        async with client_for(handler) as client:
            missing = await client.get("/metrics")
            wrong = await client.get("/metrics", auth=BasicAuth("admin", "nope"))
            ok = await client.get("/metrics", auth=BasicAuth("admin", "s3cret"))

        assert missing.status == 401
        assert missing.headers["WWW-Authenticate"].startswith("Basic")
        assert wrong.status == 401
        assert ok.status == 200


class TestHealthServer:
    @pytest.mark.asyncio
    async def test_start_stop_lifecycle(self, monitor, collector):
        checker = MagicMock()
        checker.get_health_status = AsyncMock(return_value=make_health())
        server = HealthServer(checker, collector, monitor, host="127.0.0.1", port=0)

        assert not server.is_running()
        await server.start()
        try:
            assert server.is_running()
            with pytest.raises(ServerAlreadyRunningError):
                await server.start()
        finally:
            await server.stop()

        assert not server.is_running()
        await server.stop()
