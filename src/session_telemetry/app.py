"""
Application wiring.

Builds the collectors and the dashboard from ``TelemetrySettings`` on a
shared event bus and scheduler, and starts and stops them together.
"""

import asyncio
from typing import Optional

import structlog

from session_telemetry.analytics.dashboard import AnalyticsDashboard, DashboardConfig
from session_telemetry.config.settings import TelemetrySettings, get_settings
from session_telemetry.core.events import EventBus, Unsubscribe
from session_telemetry.core.scheduling import AsyncioScheduler, Scheduler
from session_telemetry.host import HostPlatform, Platform, bind_process_hooks
from session_telemetry.monitoring.error_tracker import ErrorTracker
from session_telemetry.monitoring.performance_monitor import (
    MemoryThreshold,
    PerformanceMonitor,
    PerformanceThresholds,
    VitalThreshold,
)
from session_telemetry.monitoring.prometheus_exporter import TelemetryExporter

logger = structlog.get_logger(__name__)


def thresholds_from_settings(settings: TelemetrySettings) -> PerformanceThresholds:
    return PerformanceThresholds(
        lcp=VitalThreshold(settings.lcp_warning_ms, settings.lcp_critical_ms),
        fid=VitalThreshold(settings.fid_warning_ms, settings.fid_critical_ms),
        cls=VitalThreshold(settings.cls_warning, settings.cls_critical),
        memory=MemoryThreshold(settings.memory_warning_bytes, settings.memory_critical_bytes),
    )


class TelemetryApp:
    """
    Owns one performance monitor, one error tracker and the dashboard.

    ``start()`` schedules timers, so with the default ``AsyncioScheduler`` it
    must be called from inside a running event loop.
    """

    def __init__(self,
                 settings: Optional[TelemetrySettings] = None,
                 platform: Optional[Platform] = None,
                 events: Optional[EventBus] = None,
                 scheduler: Optional[Scheduler] = None):
        self.settings = settings or get_settings()
        self.platform = platform or HostPlatform(page_url=self.settings.page_url)
        self.events = events or EventBus()
        self.scheduler = scheduler or AsyncioScheduler()

        self.exporter: Optional[TelemetryExporter] = None
        if self.settings.metrics_enabled:
            self.exporter = TelemetryExporter(namespace=self.settings.metrics_namespace)

        self.performance_monitor = PerformanceMonitor(
            self.platform,
            self.events,
            self.scheduler,
            thresholds=thresholds_from_settings(self.settings),
            memory_sample_interval=self.settings.memory_sample_interval,
        )
        self.error_tracker = ErrorTracker(
            self.platform,
            self.events,
            performance_monitor=self.performance_monitor,
            max_breadcrumbs=self.settings.max_breadcrumbs,
            max_session_events=self.settings.max_session_events,
        )
        self.dashboard = AnalyticsDashboard(
            self.performance_monitor,
            self.error_tracker,
            self.scheduler,
            config=DashboardConfig.from_settings(self.settings),
            exporter=self.exporter,
        )

        self._unbind_hooks: Optional[Unsubscribe] = None
        self._running = False

    @property
    def is_running(self) -> bool:
        return self._running

    def start(self, process_hooks: bool = False) -> None:
        """Start every component; optionally route process-level failures into the bus."""
        if self._running:
            return

        if process_hooks:
            try:
                loop: Optional[asyncio.AbstractEventLoop] = asyncio.get_running_loop()
            except RuntimeError:
                loop = None
            self._unbind_hooks = bind_process_hooks(self.events, loop)

        self.performance_monitor.start_monitoring()
        self.error_tracker.start_tracking()
        self.dashboard.start_monitoring()
        self._running = True

        logger.info("Telemetry started",
                    environment=self.settings.environment,
                    metrics_enabled=self.exporter is not None)

    def stop(self) -> None:
        """Stop every component in reverse order of start."""
        if not self._running:
            return

        self.dashboard.stop_monitoring()
        self.error_tracker.stop_tracking()
        self.performance_monitor.stop_monitoring()

        if self._unbind_hooks is not None:
            self._unbind_hooks()
            self._unbind_hooks = None

        self._running = False
        logger.info("Telemetry stopped")

    def __enter__(self) -> "TelemetryApp":
        self.start()
        return self

    def __exit__(self, exc_type, exc_value, traceback) -> None:
        self.stop()
