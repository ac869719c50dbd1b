"""Shared fixtures for the monitoring tests."""

import pytest

from gmeet_mcp.monitoring import ApiMonitor, MetricsCollector


class FakeClock:
    """Manually advanced clock, callable like time.monotonic."""

    def __init__(self, start: float):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float):
        self.now += seconds


@pytest.fixture
def clock():
    return FakeClock(1000.0)


@pytest.fixture
def wall_clock():
    return FakeClock(1_700_000_000.0)


@pytest.fixture
def collector(clock, wall_clock):
    return MetricsCollector(clock=clock, wall_clock=wall_clock)


@pytest.fixture
def monitor(collector, clock, wall_clock):
    return ApiMonitor(collector, clock=clock, wall_clock=wall_clock)
