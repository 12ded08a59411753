"""
Unit tests for the performance monitor.

Covers entry handling, proactive report emission, memory pressure tiers,
threshold checks, probe fallbacks and the start/stop lifecycle.
"""

from datetime import datetime

import pytest

from session_telemetry.config.settings import MB
from session_telemetry.core.events import (
    CONNECTION_CHANGE_EVENT,
    PERFORMANCE_ENTRY_EVENT,
    ConnectionChangeEvent,
    PerformanceEntry,
)
from session_telemetry.core.types import (
    CoreWebVitals,
    MemoryMetrics,
    MemoryPressure,
    NetworkMetrics,
    PerformanceReport,
)
from session_telemetry.host import HeapSample, NavigationTiming
from session_telemetry.monitoring.performance_monitor import (
    MemoryThreshold,
    PerformanceThresholds,
    classify_memory_pressure,
)


def fcp(start_time=800.0):
    return PerformanceEntry(entry_type="paint", name="first-contentful-paint", start_time=start_time)


def lcp(start_time=2000.0):
    return PerformanceEntry(entry_type="largest-contentful-paint", start_time=start_time)


def make_report(lcp_ms=0.0, fid_ms=0.0, cls=0.0, used_heap=0):
    return PerformanceReport(
        id="report_1",
        timestamp=datetime(2024, 1, 1),
        session_id="session_test",
        page_url="https://example.test/",
        core_web_vitals=CoreWebVitals(lcp=lcp_ms, fid=fid_ms, cls=cls),
        memory_metrics=MemoryMetrics(used_heap=used_heap),
    )


class TestLifecycle:
    """Test start/stop symmetry."""

    def test_start_attaches_everything(self, monitor, event_bus, scheduler):
        """Starting subscribes to entries and connection changes and starts the memory timer."""
        monitor.start_monitoring()

        assert monitor.is_monitoring
        assert event_bus.handler_count(PERFORMANCE_ENTRY_EVENT) == 1
        assert event_bus.handler_count(CONNECTION_CHANGE_EVENT) == 1
        assert len(scheduler.active_timers()) == 1
        assert scheduler.active_timers()[0].interval == 5.0

    def test_start_is_idempotent(self, monitor, event_bus, scheduler):
        """A second start attaches nothing new."""
        monitor.start_monitoring()
        monitor.start_monitoring()

        assert event_bus.handler_count(PERFORMANCE_ENTRY_EVENT) == 1
        assert len(scheduler.active_timers()) == 1

    def test_stop_detaches_everything(self, monitor, event_bus, scheduler):
        """Stopping removes every subscription and cancels the timer; repeating is harmless."""
        monitor.start_monitoring()
        monitor.stop_monitoring()
        monitor.stop_monitoring()

        assert not monitor.is_monitoring
        assert event_bus.handler_count(PERFORMANCE_ENTRY_EVENT) == 0
        assert event_bus.handler_count(CONNECTION_CHANGE_EVENT) == 0
        assert scheduler.active_timers() == []

    def test_restart_after_stop(self, monitor, event_bus, scheduler):
        monitor.start_monitoring()
        monitor.stop_monitoring()
        monitor.start_monitoring()

        assert event_bus.handler_count(PERFORMANCE_ENTRY_EVENT) == 1
        assert len(scheduler.active_timers()) == 1

    def test_no_observer_support(self, monitor, platform, event_bus):
        """Without observer support no entry subscription is made."""
        platform.supports_performance_observer = False
        monitor.start_monitoring()

        assert event_bus.handler_count(PERFORMANCE_ENTRY_EVENT) == 0

    def test_no_connection_info(self, monitor, platform, event_bus):
        """Without network information no connection listener is attached."""
        platform.network = None
        monitor.start_monitoring()

        assert event_bus.handler_count(CONNECTION_CHANGE_EVENT) == 0


class TestEntryHandling:
    """Test web vital accumulation from timeline entries."""

    def test_report_emitted_once_lcp_and_fcp_known(self, monitor, event_bus):
        reports = []
        monitor.on_performance_report(reports.append)
        monitor.start_monitoring()

        event_bus.emit(PERFORMANCE_ENTRY_EVENT, fcp(800.0))
        assert reports == []

        event_bus.emit(PERFORMANCE_ENTRY_EVENT, lcp(2100.0))
        assert len(reports) == 1
        assert reports[0].core_web_vitals.lcp == 2100.0
        assert reports[0].core_web_vitals.fcp == 800.0

    def test_every_later_entry_emits(self, monitor, event_bus):
        reports = []
        monitor.on_performance_report(reports.append)
        monitor.start_monitoring()

        event_bus.emit(PERFORMANCE_ENTRY_EVENT, fcp())
        event_bus.emit(PERFORMANCE_ENTRY_EVENT, lcp())
        event_bus.emit(PERFORMANCE_ENTRY_EVENT, PerformanceEntry(entry_type="layout-shift", value=0.01))

        assert len(reports) == 2

    def test_first_input_delay(self, monitor, event_bus):
        monitor.start_monitoring()
        event_bus.emit(PERFORMANCE_ENTRY_EVENT, PerformanceEntry(
            entry_type="first-input", start_time=1000.0, processing_start=1120.0
        ))

        assert monitor.get_current_performance_snapshot().core_web_vitals.fid == 120.0

    def test_layout_shift_ignores_recent_input(self, monitor, event_bus):
        monitor.start_monitoring()
        for value, recent in ((0.05, False), (0.5, True), (0.02, False)):
            event_bus.emit(PERFORMANCE_ENTRY_EVENT, PerformanceEntry(
                entry_type="layout-shift", value=value, had_recent_input=recent
            ))

        assert monitor.get_current_performance_snapshot().core_web_vitals.cls == pytest.approx(0.07)

    def test_unsupported_entry_types_ignored(self, monitor, platform, event_bus):
        platform.entry_types = ("paint", "largest-contentful-paint")
        monitor.start_monitoring()
        event_bus.emit(PERFORMANCE_ENTRY_EVENT, PerformanceEntry(entry_type="layout-shift", value=0.3))

        assert monitor.get_current_performance_snapshot().core_web_vitals.cls == 0.0

    def test_entries_ignored_after_stop(self, monitor, event_bus):
        monitor.start_monitoring()
        monitor.stop_monitoring()
        event_bus.emit(PERFORMANCE_ENTRY_EVENT, lcp(3000.0))

        assert monitor.get_current_performance_snapshot().core_web_vitals.lcp == 0.0

    def test_interactive_and_blocking_time(self, monitor, platform):
        """TTI comes from navigation timing, TBT from long tasks over 50ms."""
        platform.timing = NavigationTiming(navigation_start=100.0, dom_interactive=1600.0)
        platform.tasks = [30.0, 80.0, 120.0]

        vitals = monitor.get_current_performance_snapshot().core_web_vitals
        assert vitals.tti == 1500.0
        assert vitals.tbt == 100.0


class TestMemoryAndNetwork:
    """Test memory sampling and connection change handling."""

    @pytest.mark.parametrize("used_mb, expected", [
        (10, MemoryPressure.LOW),
        (35, MemoryPressure.LOW),
        (36, MemoryPressure.MEDIUM),
        (60, MemoryPressure.HIGH),
        (100, MemoryPressure.HIGH),
        (120, MemoryPressure.CRITICAL),
    ])
    def test_pressure_tiers(self, used_mb, expected):
        thresholds = MemoryThreshold(warning=50 * MB, critical=100 * MB)
        assert classify_memory_pressure(used_mb * MB, thresholds) == expected

    def test_critical_sample_emits_report(self, monitor, platform, scheduler):
        reports = []
        monitor.on_performance_report(reports.append)
        monitor.start_monitoring()

        scheduler.advance(5)
        assert reports == []

        platform.heap = HeapSample(used=150 * MB, total=160 * MB, limit=200 * MB)
        scheduler.advance(5)
        assert len(reports) == 1
        assert reports[0].memory_metrics.pressure == MemoryPressure.CRITICAL

    def test_no_samples_after_stop(self, monitor, platform, scheduler):
        reports = []
        monitor.on_performance_report(reports.append)
        platform.heap = HeapSample(used=150 * MB, total=160 * MB, limit=200 * MB)
        monitor.start_monitoring()
        monitor.stop_monitoring()

        scheduler.advance(30)
        assert reports == []

    def test_connection_change_emits_only_on_type_change(self, monitor, platform, event_bus):
        reports = []
        monitor.on_performance_report(reports.append)
        monitor.start_monitoring()

        event_bus.emit(CONNECTION_CHANGE_EVENT, ConnectionChangeEvent(connection_type="wifi"))
        assert reports == []

        platform.network = NetworkMetrics(connection_type="cellular", effective_type="3g")
        event_bus.emit(CONNECTION_CHANGE_EVENT, ConnectionChangeEvent(connection_type="cellular"))
        event_bus.emit(CONNECTION_CHANGE_EVENT, ConnectionChangeEvent(connection_type="cellular"))

        assert len(reports) == 1
        assert reports[0].network_metrics.connection_type == "cellular"


class TestSnapshot:
    """Test point-in-time snapshots."""

    def test_snapshot_reads_platform(self, monitor):
        report = monitor.get_current_performance_snapshot()

        assert report.session_id == "session_test"
        assert report.page_url == "https://example.test/checkout"
        assert report.memory_metrics.used_heap == 10 * MB
        assert report.memory_metrics.pressure == MemoryPressure.LOW
        assert report.network_metrics.effective_type == "4g"
        assert report.device_info.is_mobile

    def test_snapshot_falls_back_when_probes_fail(self, monitor, platform):
        """Failing probes degrade to defaults instead of raising."""
        platform.failing = {"memory", "connection", "device_info", "page_info", "navigation_timing", "long_tasks"}

        report = monitor.get_current_performance_snapshot()

        assert report.page_url == "unknown"
        assert report.memory_metrics == MemoryMetrics()
        assert report.network_metrics.connection_type == "unknown"
        assert report.device_info.user_agent == "unknown"
        assert report.core_web_vitals.tti == 0.0
        assert report.core_web_vitals.tbt == 0.0

    def test_snapshot_without_memory_api(self, monitor, platform):
        platform.heap = None
        assert monitor.get_current_performance_snapshot().memory_metrics.used_heap == 0


class TestThresholdChecks:
    """Test threshold issue messages."""

    def test_no_issues(self, monitor):
        check = monitor.check_performance_thresholds(make_report(lcp_ms=1000, fid_ms=50, cls=0.05))
        assert not check.has_issues
        assert check.issues == []

    def test_all_issues(self, monitor):
        check = monitor.check_performance_thresholds(
            make_report(lcp_ms=5000, fid_ms=400, cls=0.3, used_heap=120 * MB)
        )

        assert check.has_issues
        assert check.issues == [
            "LCP too high: 5000ms",
            "FID too high: 400ms",
            "CLS too high: 0.3",
            "Critical memory usage: 120MB",
        ]

    def test_high_memory(self, monitor):
        check = monitor.check_performance_thresholds(make_report(used_heap=60 * MB))
        assert check.issues == ["High memory usage: 60MB"]

    def test_boundaries_are_exclusive(self, monitor):
        check = monitor.check_performance_thresholds(
            make_report(lcp_ms=4000, fid_ms=300, cls=0.25, used_heap=50 * MB)
        )
        assert not check.has_issues

    def test_custom_thresholds(self, platform, event_bus, scheduler):
        from session_telemetry.monitoring.performance_monitor import PerformanceMonitor, VitalThreshold

        monitor = PerformanceMonitor(
            platform, event_bus, scheduler,
            thresholds=PerformanceThresholds(lcp=VitalThreshold(good=1000, needs_improvement=1500)),
        )
        check = monitor.check_performance_thresholds(make_report(lcp_ms=2000))
        assert check.issues == ["LCP too high: 2000ms"]


class TestSubscribers:
    """Test report subscriber isolation."""

    def test_failing_subscriber_isolated(self, monitor, event_bus):
        received = []

        def broken(report):
            raise ValueError("subscriber bug")

        monitor.on_performance_report(broken)
        monitor.on_performance_report(received.append)
        monitor.start_monitoring()

        event_bus.emit(PERFORMANCE_ENTRY_EVENT, fcp())
        event_bus.emit(PERFORMANCE_ENTRY_EVENT, lcp())

        assert len(received) == 1

    def test_unsubscribe(self, monitor, event_bus):
        received = []
        unsubscribe = monitor.on_performance_report(received.append)
        unsubscribe()
        monitor.start_monitoring()

        event_bus.emit(PERFORMANCE_ENTRY_EVENT, fcp())
        event_bus.emit(PERFORMANCE_ENTRY_EVENT, lcp())

        assert received == []
