"""Unit tests for application wiring."""

import asyncio
import sys
from datetime import datetime

import pytest

from session_telemetry.app import TelemetryApp, thresholds_from_settings
from session_telemetry.config.settings import MB, TelemetrySettings
from session_telemetry.core.events import ERROR_EVENT, PERFORMANCE_ENTRY_EVENT, ErrorEvent, PerformanceEntry
from session_telemetry.host import HeapSample


@pytest.fixture
def settings():
    return TelemetrySettings(environment="testing", log_level="DEBUG")


@pytest.fixture
def telemetry(settings, platform, scheduler):
    return TelemetryApp(settings=settings, platform=platform, scheduler=scheduler)


class TestTelemetryApp:
    """Test component wiring and lifecycle."""

    def test_components_share_bus_and_scheduler(self, telemetry, scheduler):
        assert telemetry.performance_monitor.events is telemetry.events
        assert telemetry.error_tracker.events is telemetry.events
        assert telemetry.error_tracker.performance_monitor is telemetry.performance_monitor
        assert telemetry.dashboard.scheduler is scheduler
        assert telemetry.dashboard.exporter is telemetry.exporter

    def test_start_and_stop(self, telemetry, scheduler):
        telemetry.start()
        telemetry.start()

        assert telemetry.is_running
        assert telemetry.performance_monitor.is_monitoring
        assert telemetry.error_tracker.is_tracking
        assert telemetry.dashboard.is_monitoring
        assert len(scheduler.active_timers()) == 2

        telemetry.stop()
        telemetry.stop()

        assert not telemetry.is_running
        assert scheduler.active_timers() == []
        assert telemetry.events.handler_count(ERROR_EVENT) == 0

    def test_context_manager(self, telemetry):
        with telemetry as running:
            assert running.is_running
        assert not telemetry.is_running

    def test_end_to_end_alerts(self, telemetry, platform):
        alerts = []
        telemetry.dashboard.on_alert(alerts.append)

        with telemetry:
            platform.heap = HeapSample(used=120 * MB, total=130 * MB, limit=200 * MB)
            telemetry.events.emit(ERROR_EVENT, ErrorEvent(message="Script error"))
            telemetry.events.emit(PERFORMANCE_ENTRY_EVENT, PerformanceEntry(entry_type="paint", name="first-contentful-paint", start_time=700))
            telemetry.events.emit(PERFORMANCE_ENTRY_EVENT, PerformanceEntry(entry_type="largest-contentful-paint", start_time=1800))

        messages = [alert.message for alert in alerts]
        assert "javascript: Script error" in messages
        assert "Performance issues detected: Critical memory usage: 120MB" in messages

    def test_metrics_disabled(self, platform, scheduler):
        telemetry = TelemetryApp(
            settings=TelemetrySettings(environment="testing", metrics_enabled=False),
            platform=platform,
            scheduler=scheduler,
        )
        assert telemetry.exporter is None
        assert telemetry.dashboard.exporter is None

    def test_settings_flow_into_components(self, platform, scheduler):
        settings = TelemetrySettings(
            environment="testing",
            refresh_interval=15,
            memory_sample_interval=2,
            max_breadcrumbs=10,
            lcp_warning_ms=2000,
            lcp_critical_ms=3000,
        )
        telemetry = TelemetryApp(settings=settings, platform=platform, scheduler=scheduler)

        assert telemetry.dashboard.config.refresh_interval == 15
        assert telemetry.dashboard.config.alert_thresholds.lcp.critical == 3000
        assert telemetry.performance_monitor.memory_sample_interval == 2
        assert telemetry.performance_monitor.thresholds == thresholds_from_settings(settings)
        assert telemetry.error_tracker.max_breadcrumbs == 10

    def test_process_hooks(self, telemetry, monkeypatch):
        def original(*args):
            pass

        monkeypatch.setattr(sys, "excepthook", original)

        telemetry.start(process_hooks=True)
        assert sys.excepthook is not original

        telemetry.stop()
        assert sys.excepthook is original

    @pytest.mark.asyncio
    async def test_runs_on_event_loop(self, platform):
        settings = TelemetrySettings(environment="testing", refresh_interval=0.01, memory_sample_interval=0.01)
        telemetry = TelemetryApp(settings=settings, platform=platform)

        telemetry.start()
        await asyncio.sleep(0.05)
        telemetry.stop()

        history = telemetry.dashboard.get_metrics_history(datetime.min)
        assert len(history) >= 2
