"""
Pytest configuration and fixtures for Session Telemetry tests.

This module provides deterministic stand-ins for the host: a fake platform,
a manually advanced scheduler and a fixed clock, plus pre-wired collectors
and a dashboard built on them.
"""

from datetime import datetime, timedelta
from typing import Callable, List, Optional, Sequence

import pytest

from session_telemetry.analytics.dashboard import AnalyticsDashboard, DashboardConfig
from session_telemetry.config.settings import MB, TelemetrySettings, get_settings
from session_telemetry.core.events import EventBus
from session_telemetry.core.logging import setup_logging
from session_telemetry.core.types import DeviceInfo, NetworkMetrics
from session_telemetry.host import ALL_ENTRY_TYPES, HeapSample, NavigationTiming, PageInfo
from session_telemetry.monitoring.error_tracker import ErrorTracker
from session_telemetry.monitoring.performance_monitor import PerformanceMonitor
from session_telemetry.monitoring.prometheus_exporter import TelemetryExporter

MOBILE_UA = (
    "Mozilla/5.0 (Linux; Android 13; Pixel 7) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/120.0.6099.144 Mobile Safari/537.36"
)


class FakePlatform:
    """Platform whose every probe is a plain attribute tests can set."""

    def __init__(self):
        self.supports_performance_observer = True
        self.entry_types: Sequence[str] = ALL_ENTRY_TYPES
        self.heap: Optional[HeapSample] = HeapSample(used=10 * MB, total=20 * MB, limit=200 * MB)
        self.network: Optional[NetworkMetrics] = NetworkMetrics(
            connection_type="wifi", effective_type="4g", downlink=10.0, rtt=50.0
        )
        self.timing: Optional[NavigationTiming] = None
        self.tasks: List[float] = []
        self.device = DeviceInfo(user_agent=MOBILE_UA, viewport=(412, 915), platform="Linux armv8l")
        self.page = PageInfo(url="https://example.test/checkout", referrer="https://example.test/", title="Checkout")
        self.elapsed_ms = 1200.0
        self.online = True
        self.failing: set = set()

    def _check(self, name: str) -> None:
        if name in self.failing:
            raise RuntimeError(f"{name} probe unavailable")

    def supported_entry_types(self) -> Sequence[str]:
        self._check("supported_entry_types")
        return self.entry_types

    def memory(self) -> Optional[HeapSample]:
        self._check("memory")
        return self.heap

    def connection(self) -> Optional[NetworkMetrics]:
        self._check("connection")
        return self.network

    def navigation_timing(self) -> Optional[NavigationTiming]:
        self._check("navigation_timing")
        return self.timing

    def long_tasks(self) -> List[float]:
        self._check("long_tasks")
        return list(self.tasks)

    def device_info(self) -> DeviceInfo:
        self._check("device_info")
        return self.device

    def page_info(self) -> PageInfo:
        self._check("page_info")
        return self.page

    def now(self) -> float:
        return self.elapsed_ms

    def is_online(self) -> bool:
        return self.online

    def cookies_enabled(self) -> bool:
        return True


class ManualTimer:
    def __init__(self, interval: float, callback: Callable[[], None]):
        self.interval = interval
        self.callback = callback
        self.due = interval
        self._cancelled = False

    def cancel(self) -> None:
        self._cancelled = True

    @property
    def cancelled(self) -> bool:
        return self._cancelled


class ManualScheduler:
    """Scheduler driven by ``advance`` instead of wall-clock time."""

    def __init__(self):
        self.timers: List[ManualTimer] = []
        self.time = 0.0

    def call_every(self, interval: float, callback: Callable[[], None]) -> ManualTimer:
        timer = ManualTimer(interval, callback)
        timer.due = self.time + interval
        self.timers.append(timer)
        return timer

    def active_timers(self) -> List[ManualTimer]:
        return [t for t in self.timers if not t.cancelled]

    def advance(self, seconds: float) -> None:
        """Move time forward, firing every timer that falls due on the way."""
        target = self.time + seconds
        while True:
            due = [t for t in self.active_timers() if t.due <= target]
            if not due:
                break
            timer = min(due, key=lambda t: t.due)
            self.time = timer.due
            timer.due += timer.interval
            timer.callback()
        self.time = target


class FixedClock:
    """Callable clock that only moves when told to."""

    def __init__(self, start: Optional[datetime] = None):
        self.now = start or datetime(2024, 1, 1, 12, 0, 0)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now += timedelta(**kwargs)


@pytest.fixture(scope="session", autouse=True)
def setup_test_logging():
    """Set up logging for tests."""
    setup_logging(log_level="DEBUG", environment="testing")


@pytest.fixture
def test_settings(monkeypatch) -> TelemetrySettings:
    """Create test settings with safe defaults."""
    monkeypatch.setenv("SESSION_TELEMETRY_ENVIRONMENT", "testing")
    monkeypatch.setenv("SESSION_TELEMETRY_LOG_LEVEL", "DEBUG")

    get_settings.cache_clear()
    try:
        yield get_settings()
    finally:
        get_settings.cache_clear()


@pytest.fixture
def platform() -> FakePlatform:
    return FakePlatform()


@pytest.fixture
def event_bus() -> EventBus:
    return EventBus()


@pytest.fixture
def scheduler() -> ManualScheduler:
    return ManualScheduler()


@pytest.fixture
def clock() -> FixedClock:
    return FixedClock()


@pytest.fixture
def monitor(platform, event_bus, scheduler, clock) -> PerformanceMonitor:
    """Performance monitor on the fake host; not started."""
    return PerformanceMonitor(platform, event_bus, scheduler, session_id="session_test", clock=clock)


@pytest.fixture
def tracker(platform, event_bus, monitor, clock) -> ErrorTracker:
    """Error tracker wired to the monitor; not started."""
    return ErrorTracker(platform, event_bus, performance_monitor=monitor, clock=clock)


@pytest.fixture
def exporter() -> TelemetryExporter:
    return TelemetryExporter()


@pytest.fixture
def dashboard(monitor, tracker, scheduler, exporter, clock) -> AnalyticsDashboard:
    """Dashboard over both collectors with the default configuration; not started."""
    return AnalyticsDashboard(monitor, tracker, scheduler, config=DashboardConfig(), exporter=exporter, clock=clock)


# Pytest configuration
def pytest_configure(config):
    """Configure pytest with custom markers."""
    config.addinivalue_line(
        "markers", "unit: mark test as a unit test"
    )
    config.addinivalue_line(
        "markers", "integration: mark test as an integration test"
    )
    config.addinivalue_line(
        "markers", "slow: mark test as slow running"
    )


def pytest_collection_modifyitems(config, items):
    """Modify test collection to add markers based on file location."""
    for item in items:
        # Add unit marker to tests in unit/ directory
        if "unit" in str(item.fspath):
            item.add_marker(pytest.mark.unit)

        # Add integration marker to tests in integration/ directory
        elif "integration" in str(item.fspath):
            item.add_marker(pytest.mark.integration)
