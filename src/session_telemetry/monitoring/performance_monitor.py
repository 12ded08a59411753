"""
Performance Monitoring

Tracks Core Web Vitals, heap usage and network information from the
platform's instrumentation, exposes point-in-time snapshots, and checks them
against fixed thresholds.
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Callable, Dict, List, Optional, TypeVar

import structlog

from session_telemetry.core.events import (
    CONNECTION_CHANGE_EVENT,
    PERFORMANCE_ENTRY_EVENT,
    CallbackRegistry,
    ConnectionChangeEvent,
    EventBus,
    PerformanceEntry,
    Unsubscribe,
)
from session_telemetry.core.scheduling import Scheduler, TimerHandle
from session_telemetry.core.types import (
    CoreWebVitals,
    DeviceInfo,
    MemoryMetrics,
    MemoryPressure,
    NetworkMetrics,
    PerformanceReport,
    bytes_to_mb,
    generate_id,
)
from session_telemetry.host import ALL_ENTRY_TYPES, Platform

logger = structlog.get_logger(__name__)

T = TypeVar("T")

# Tasks longer than this count towards total blocking time
LONG_TASK_BUDGET_MS = 50.0


@dataclass(frozen=True)
class VitalThreshold:
    """Good / needs-improvement boundaries for a single web vital."""

    good: float
    needs_improvement: float


@dataclass(frozen=True)
class MemoryThreshold:
    """Heap usage boundaries in bytes."""

    warning: int
    critical: int


@dataclass(frozen=True)
class PerformanceThresholds:
    """Thresholds based on the Core Web Vitals recommendations."""

    lcp: VitalThreshold = VitalThreshold(good=2500, needs_improvement=4000)
    fid: VitalThreshold = VitalThreshold(good=100, needs_improvement=300)
    cls: VitalThreshold = VitalThreshold(good=0.1, needs_improvement=0.25)
    memory: MemoryThreshold = MemoryThreshold(warning=50 * 1024 * 1024, critical=100 * 1024 * 1024)


@dataclass(frozen=True)
class ThresholdCheck:
    """Result of ``check_performance_thresholds``."""

    has_issues: bool
    issues: List[str] = field(default_factory=list)


def classify_memory_pressure(used_bytes: float,
                             thresholds: MemoryThreshold) -> MemoryPressure:
    """Map heap usage to a pressure tier, checking the highest tier first."""
    if used_bytes > thresholds.critical:
        return MemoryPressure.CRITICAL
    if used_bytes > thresholds.warning:
        return MemoryPressure.HIGH
    if used_bytes > thresholds.warning * 0.7:
        return MemoryPressure.MEDIUM
    return MemoryPressure.LOW


class PerformanceMonitor:
    """
    Samples the platform's performance instrumentation.

    Observed entries accumulate into the current web vitals. A report is
    pushed to subscribers once both LCP and FCP are known (and after every
    later entry), whenever a memory sample reaches critical pressure, and
    whenever the connection type changes. Snapshots can be pulled at any
    time and never raise.
    """

    def __init__(self,
                 platform: Platform,
                 events: EventBus,
                 scheduler: Scheduler,
                 thresholds: Optional[PerformanceThresholds] = None,
                 memory_sample_interval: float = 5.0,
                 session_id: Optional[str] = None,
                 clock: Optional[Callable[[], datetime]] = None):
        """Initialize the monitor; nothing is attached until ``start_monitoring``."""

        self.platform = platform
        self.events = events
        self.scheduler = scheduler
        self.thresholds = thresholds or PerformanceThresholds()
        self.memory_sample_interval = memory_sample_interval
        self.session_id = session_id or generate_id("session")
        self._clock = clock or datetime.now

        self._vitals: Dict[str, float] = {}
        self._callbacks: CallbackRegistry[PerformanceReport] = CallbackRegistry("performance_report")
        self._subscriptions: List[Unsubscribe] = []
        self._memory_timer: Optional[TimerHandle] = None
        self._observed_entry_types: List[str] = []
        self._last_connection_type: Optional[str] = None
        self._is_monitoring = False

        logger.info("PerformanceMonitor initialized",
                    session_id=self.session_id,
                    memory_sample_interval=memory_sample_interval)

    @property
    def is_monitoring(self) -> bool:
        return self._is_monitoring

    def start_monitoring(self) -> None:
        """Attach entry observers, the memory timer and the connection listener."""

        if self._is_monitoring:
            return

        self._is_monitoring = True
        self._observe_web_vitals()
        self._start_memory_monitoring()
        self._track_network_metrics()

        logger.info("Performance monitoring started",
                    entry_types=self._observed_entry_types)

    def stop_monitoring(self) -> None:
        """Detach everything ``start_monitoring`` attached."""

        if not self._is_monitoring:
            return

        self._is_monitoring = False

        for unsubscribe in self._subscriptions:
            unsubscribe()
        self._subscriptions = []
        self._observed_entry_types = []

        if self._memory_timer is not None:
            self._memory_timer.cancel()
            self._memory_timer = None

        logger.info("Performance monitoring stopped")

    def on_performance_report(self, callback: Callable[[PerformanceReport], None]) -> Unsubscribe:
        """Subscribe to pushed performance reports."""
        return self._callbacks.add(callback)

    def get_current_performance_snapshot(self) -> PerformanceReport:
        """Build a fresh report from whatever instrumentation is available."""
        page = self._probe("page_info", self.platform.page_info, None)

        return PerformanceReport(
            id=generate_id("report"),
            timestamp=self._clock(),
            session_id=self.session_id,
            page_url=page.url if page is not None else "unknown",
            device_info=self._probe("device_info", self.platform.device_info, DeviceInfo()),
            core_web_vitals=self._current_web_vitals(),
            memory_metrics=self._current_memory_metrics(),
            network_metrics=self._current_network_metrics(),
        )

    def check_performance_thresholds(self, report: PerformanceReport) -> ThresholdCheck:
        """List every vital above its poor boundary and any elevated heap usage."""
        issues: List[str] = []
        vitals = report.core_web_vitals

        if vitals.lcp > self.thresholds.lcp.needs_improvement:
            issues.append(f"LCP too high: {vitals.lcp:.10g}ms")
        if vitals.fid > self.thresholds.fid.needs_improvement:
            issues.append(f"FID too high: {vitals.fid:.10g}ms")
        if vitals.cls > self.thresholds.cls.needs_improvement:
            issues.append(f"CLS too high: {vitals.cls:.10g}")

        used = report.memory_metrics.used_heap
        if used > self.thresholds.memory.critical:
            issues.append(f"Critical memory usage: {bytes_to_mb(used)}MB")
        elif used > self.thresholds.memory.warning:
            issues.append(f"High memory usage: {bytes_to_mb(used)}MB")

        return ThresholdCheck(has_issues=bool(issues), issues=issues)

    def _observe_web_vitals(self) -> None:
        if not self._probe("supports_performance_observer",
                           lambda: self.platform.supports_performance_observer, False):
            logger.warning("Performance observer not available")
            return

        supported = set(self._probe("supported_entry_types", self.platform.supported_entry_types, ()))
        for entry_type in ALL_ENTRY_TYPES:
            if entry_type in supported:
                self._observed_entry_types.append(entry_type)
            else:
                logger.warning("Performance entry type not supported", entry_type=entry_type)

        if self._observed_entry_types:
            self._subscriptions.append(
                self.events.subscribe(PERFORMANCE_ENTRY_EVENT, self._handle_performance_entry)
            )

    def _handle_performance_entry(self, entry: PerformanceEntry) -> None:
        if entry.entry_type not in self._observed_entry_types:
            return

        if entry.entry_type == "paint":
            if entry.name == "first-contentful-paint":
                self._vitals["fcp"] = entry.start_time
        elif entry.entry_type == "largest-contentful-paint":
            self._vitals["lcp"] = entry.start_time
        elif entry.entry_type == "first-input":
            if entry.processing_start is not None:
                self._vitals["fid"] = entry.processing_start - entry.start_time
        elif entry.entry_type == "layout-shift":
            if not entry.had_recent_input:
                self._vitals["cls"] = self._vitals.get("cls", 0.0) + entry.value

        self._maybe_emit_performance_report()

    def _start_memory_monitoring(self) -> None:
        self._memory_timer = self.scheduler.call_every(
            self.memory_sample_interval, self._sample_memory
        )

    def _sample_memory(self) -> None:
        memory_metrics = self._current_memory_metrics()

        if memory_metrics.pressure == MemoryPressure.CRITICAL:
            logger.warning("Critical memory pressure",
                           used_mb=bytes_to_mb(memory_metrics.used_heap))
            self._emit_performance_report()

    def _track_network_metrics(self) -> None:
        connection = self._probe("connection", self.platform.connection, None)
        if connection is None:
            return

        self._last_connection_type = connection.connection_type
        self._subscriptions.append(
            self.events.subscribe(CONNECTION_CHANGE_EVENT, self._handle_connection_change)
        )

    def _handle_connection_change(self, event: Optional[ConnectionChangeEvent]) -> None:
        connection = self._current_network_metrics()
        if connection.connection_type == self._last_connection_type:
            return

        logger.info("Connection type changed",
                    previous=self._last_connection_type,
                    current=connection.connection_type)
        self._last_connection_type = connection.connection_type
        self._emit_performance_report()

    def _current_web_vitals(self) -> CoreWebVitals:
        return CoreWebVitals(
            lcp=self._vitals.get("lcp", 0.0),
            fid=self._vitals.get("fid", 0.0),
            cls=self._vitals.get("cls", 0.0),
            fcp=self._vitals.get("fcp", 0.0),
            tti=self._probe("time_to_interactive", self._time_to_interactive, 0.0),
            tbt=self._probe("total_blocking_time", self._total_blocking_time, 0.0),
        )

    def _current_memory_metrics(self) -> MemoryMetrics:
        sample = self._probe("memory", self.platform.memory, None)
        if sample is None:
            return MemoryMetrics()

        return MemoryMetrics(
            used_heap=sample.used,
            total_heap=sample.total,
            heap_limit=sample.limit,
            pressure=classify_memory_pressure(sample.used, self.thresholds.memory),
        )

    def _current_network_metrics(self) -> NetworkMetrics:
        connection = self._probe("connection", self.platform.connection, None)
        return connection if connection is not None else NetworkMetrics()

    def _time_to_interactive(self) -> float:
        timing = self.platform.navigation_timing()
        if timing is None:
            return 0.0
        return timing.dom_interactive - timing.navigation_start

    def _total_blocking_time(self) -> float:
        return sum(
            duration - LONG_TASK_BUDGET_MS
            for duration in self.platform.long_tasks()
            if duration > LONG_TASK_BUDGET_MS
        )

    def _maybe_emit_performance_report(self) -> None:
        if "lcp" in self._vitals and "fcp" in self._vitals:
            self._emit_performance_report()

    def _emit_performance_report(self) -> None:
        report = self.get_current_performance_snapshot()
        self._callbacks.notify(report)

    def _probe(self, name: str, probe: Callable[[], T], default: T) -> T:
        try:
            return probe()
        except Exception as e:
            logger.warning("Platform probe failed", probe=name, error=str(e))
            return default
