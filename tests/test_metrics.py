"""Tests for MetricsCollector, Prometheus export and MetricsMiddleware."""

import math

import pytest

from gmeet_mcp.monitoring import MetricsCollector, MetricsMiddleware
from gmeet_mcp.monitoring.metrics import _format_value


class TestToolCalls:
    def test_aggregates_across_tools(self, collector):
        collector.record_tool_call("create_event", 100, True)
        collector.record_tool_call("list_events", 200, False)

        metrics = collector.get_metrics()
        assert metrics.requests_total == 2
        assert metrics.errors_total == 1
        assert metrics.error_rate == 50.0
        assert metrics.avg_response_time == 150.0
        assert set(metrics.tool_usage) == {"create_event", "list_events"}

    def test_per_tool_statistics(self, collector):
        for duration, success in [(50, True), (150, True), (100, False), (300, True)]:
            collector.record_tool_call("create_event", duration, success)

        stat = collector.get_tool_metrics("create_event")
        assert stat.total_calls == 4
        assert stat.successful_calls == 3
        assert stat.failed_calls == 1
        assert stat.total_calls == stat.successful_calls + stat.failed_calls
        assert stat.avg_duration_ms == pytest.approx(150.0)
        assert stat.min_duration_ms == 50
        assert stat.max_duration_ms == 300
        assert stat.error_rate == 25.0
        assert stat.last_called is not None

    def test_error_rate_is_zero_without_requests(self, collector):
        metrics = collector.get_metrics()
        assert metrics.requests_total == 0
        assert metrics.error_rate == 0
        assert metrics.avg_response_time == 0

    def test_unknown_tool_has_no_metrics(self, collector):
        assert collector.get_tool_metrics("missing") is None

    def test_failed_call_with_error_counts_once(self, collector):
        collector.record_tool_call("list_events", 20, False, ValueError("bad input"))

        metrics = collector.get_metrics()
        assert metrics.errors_total == 1
        types = [e.type for e in metrics.recent_events]
        assert types == ["tool_call", "error"]
        error_event = metrics.recent_events[-1]
        assert error_event.error_type == "ValueError"
        assert error_event.details == {"tool": "list_events", "message": "bad input"}

    def test_requests_per_minute_uses_sliding_window(self, collector, clock):
        for _ in range(3):
            collector.record_tool_call("list_events", 10, True)
        assert collector.get_metrics().requests_per_minute == 3

        clock.advance(30)
        collector.record_tool_call("list_events", 10, True)
        assert collector.get_metrics().requests_per_minute == 4

        clock.advance(31)
        assert collector.get_metrics().requests_per_minute == 1
        assert collector.get_metrics().requests_total == 4


class TestApiCalls:
    def test_records_api_statistics(self, collector):
        collector.record_api_call("calendar", 120, True, 200)
        collector.record_api_call("calendar", 80, False, 429, rate_limited=True)

        metrics = collector.get_metrics()
        assert metrics.google_api_calls == 2
        assert metrics.requests_total == 0

        stat = metrics.api_performance["calendar"]
        assert stat.total_calls == 2
        assert stat.successful_calls == 1
        assert stat.failed_calls == 1
        assert stat.rate_limit_hits == 1
        assert stat.avg_response_time == 100.0
        assert stat.last_status_code == 429
        assert collector.get_api_names() == ["calendar"]

    def test_api_event_details(self, collector):
        collector.record_api_call("meet", 40, True, 200)
        event = collector.get_recent_events(1)[0]
        assert event.type == "api_call"
        assert event.name == "meet"
        assert event.details == {"status_code": 200, "rate_limited": False}


class TestErrorsAndEvents:
    def test_record_error(self, collector):
        collector.record_error("ConfigError", {"key": "MEET_PROBE_URL"})

        metrics = collector.get_metrics()
        assert metrics.errors_total == 1
        assert metrics.requests_total == 0
        assert metrics.recent_events[0].type == "error"
        assert metrics.recent_events[0].details == {"key": "MEET_PROBE_URL"}

    def test_ring_buffer_keeps_newest(self, clock, wall_clock):
        collector = MetricsCollector(event_capacity=3, clock=clock, wall_clock=wall_clock)
        for i in range(5):
            collector.record_tool_call(f"tool_{i}", 10, True)

        events = collector.get_recent_events()
        assert [e.name for e in events] == ["tool_2", "tool_3", "tool_4"]

    def test_recent_events_limit(self, collector):
        for i in range(5):
            collector.record_tool_call(f"tool_{i}", 10, True)

        assert [e.name for e in collector.get_recent_events(2)] == ["tool_3", "tool_4"]
        assert collector.get_recent_events(0) == []

    def test_snapshots_are_isolated(self, collector):
        collector.record_error("Boom", {"a": 1})
        collector.record_tool_call("list_events", 10, True)

        metrics = collector.get_metrics()
        metrics.tool_usage["list_events"].total_calls = 99
        metrics.recent_events[0].details["a"] = 2

        again = collector.get_metrics()
        assert again.tool_usage["list_events"].total_calls == 1
        assert again.recent_events[0].details == {"a": 1}

    def test_reset(self, collector):
        collector.record_tool_call("list_events", 10, False)
        collector.record_api_call("calendar", 10, True, 200)
        collector.reset()

        metrics = collector.get_metrics()
        assert metrics.requests_total == 0
        assert metrics.errors_total == 0
        assert metrics.google_api_calls == 0
        assert metrics.requests_per_minute == 0
        assert metrics.tool_usage == {}
        assert metrics.api_performance == {}
        assert metrics.recent_events == []

    def test_to_dict_is_json_shaped(self, collector):
        collector.record_tool_call("list_events", 10, True)
        data = collector.get_metrics().to_dict()

        assert data["tool_usage"]["list_events"]["total_calls"] == 1
        assert isinstance(data["recent_events"][0]["timestamp"], str)
        assert "uptime_seconds" in data["system_metrics"]


class TestPrometheusExport:
    def test_families_have_help_and_type(self, collector):
        collector.record_tool_call("list_events", 100, True)
        collector.record_tool_call("create_event", 300, False)
        collector.record_api_call("calendar", 50, True, 200)

        text = collector.get_prometheus_metrics()
        lines = text.splitlines()

        assert text.endswith("\n")
        assert "# HELP gmcp_requests_total Total number of MCP tool requests" in lines
        assert "# TYPE gmcp_requests_total counter" in lines
        assert "gmcp_requests_total 2" in lines
        assert "gmcp_errors_total 1" in lines
        assert "# TYPE gmcp_error_rate gauge" in lines
        assert "gmcp_error_rate 50.0" in lines
        assert 'gmcp_api_calls_total{api="calendar"} 1' in lines

        samples = [l for l in lines if l.startswith("gmcp_tool_calls_total{")]
        assert samples == [
            'gmcp_tool_calls_total{tool="create_event"} 1',
            'gmcp_tool_calls_total{tool="list_events"} 1',
        ]

    def test_every_sample_follows_its_type_line(self, collector):
        collector.record_tool_call("list_events", 100, True)
        lines = collector.get_prometheus_metrics().splitlines()

        declared = set()
        for line in lines:
            if line.startswith("# TYPE "):
                declared.add(line.split()[2])
            elif not line.startswith("#"):
                name = line.split("{")[0].split()[0]
                assert name in declared

    def test_empty_labelled_families_are_omitted(self, collector):
        text = collector.get_prometheus_metrics()
        assert "gmcp_tool_calls_total" not in text
        assert "gmcp_api_calls_total" not in text
        assert "gmcp_requests_total 0" in text

    def test_label_values_are_escaped(self, collector):
        collector.record_tool_call('odd"tool\\name', 10, True)
        text = collector.get_prometheus_metrics()
        assert 'gmcp_tool_calls_total{tool="odd\\"tool\\\\name"} 1' in text

    def test_value_formatting(self):
        assert _format_value(3) == "3"
        assert _format_value(True) == "1"
        assert _format_value(2.5) == "2.5"
        assert _format_value(math.nan) == "NaN"
        assert _format_value(math.inf) == "+Inf"


class TestMetricsMiddleware:
    def test_sync_tool_success(self, collector):
        middleware = MetricsMiddleware(collector)

        @middleware.track_tool("list_events")
        def list_events():
            return {"success": True, "events": []}

        assert list_events() == {"success": True, "events": []}
        assert collector.get_tool_metrics("list_events").successful_calls == 1

    def test_result_flagged_unsuccessful_counts_as_failure(self, collector):
        middleware = MetricsMiddleware(collector)

        @middleware.track_tool("create_event")
        def create_event():
            return {"success": False, "error": "conflict"}

        create_event()
        assert collector.get_tool_metrics("create_event").failed_calls == 1

    def test_sync_tool_exception_is_reraised(self, collector):
        middleware = MetricsMiddleware(collector)

        @middleware.track_tool("delete_event")
        def delete_event():
            raise KeyError("event-1")

        with pytest.raises(KeyError):
            delete_event()

        metrics = collector.get_metrics()
        assert metrics.tool_usage["delete_event"].failed_calls == 1
        assert metrics.errors_total == 1

    @pytest.mark.asyncio
    async def test_async_tool(self, collector):
        middleware = MetricsMiddleware(collector)

        @middleware.track_tool("get_space")
        async def get_space(name):
            return {"name": name}

        @middleware.track_tool("end_conference")
        async def end_conference():
            raise RuntimeError("gone")

        assert await get_space("spaces/abc") == {"name": "spaces/abc"}
        with pytest.raises(RuntimeError):
            await end_conference()

        metrics = collector.get_metrics()
        assert metrics.requests_total == 2
        assert metrics.tool_usage["get_space"].successful_calls == 1
        assert metrics.tool_usage["end_conference"].failed_calls == 1
        assert get_space.__name__ == "get_space"
