"""
Performance Analytics Dashboard

Aggregates collector snapshots into a rolling metrics history, raises graded
alerts against configurable thresholds, and fronts the A/B testing engine.
"""

from dataclasses import dataclass, fields, replace
from datetime import datetime, timedelta
from typing import Any, Callable, Dict, List, Mapping, Optional, Sequence, Tuple, Union

import structlog

from session_telemetry.analytics.ab_testing import (
    ABTest,
    ABTestEngine,
    ABTestVariant,
    TargetMetric,
    VariantSpec,
)
from session_telemetry.analytics.alerting import (
    AlertLog,
    AlertThreshold,
    AlertType,
    PerformanceAlert,
    VitalGrade,
    grade_issues,
    grade_web_vital,
)
from session_telemetry.config.settings import MB, TelemetrySettings
from session_telemetry.core.events import CallbackRegistry, Unsubscribe
from session_telemetry.core.exceptions import ConfigurationError
from session_telemetry.core.logging import log_execution_time
from session_telemetry.core.scheduling import Scheduler, TimerHandle
from session_telemetry.core.types import MemoryPressure, PerformanceReport, Severity, bytes_to_mb, detect_browser
from session_telemetry.monitoring.error_tracker import ErrorTracker, MobileErrorReport
from session_telemetry.monitoring.performance_monitor import PerformanceMonitor
from session_telemetry.monitoring.prometheus_exporter import TelemetryExporter

logger = structlog.get_logger(__name__)

ERROR_RATE_WINDOW = timedelta(seconds=60)


@dataclass(frozen=True)
class AlertThresholds:
    """Per-metric alert thresholds."""

    lcp: AlertThreshold = AlertThreshold(warning=2500, critical=4000)
    fid: AlertThreshold = AlertThreshold(warning=100, critical=300)
    cls: AlertThreshold = AlertThreshold(warning=0.1, critical=0.25)
    memory_usage: AlertThreshold = AlertThreshold(warning=50 * MB, critical=100 * MB)
    error_rate: AlertThreshold = AlertThreshold(warning=5, critical=10)

    def merged(self, changes: Mapping[str, Any]) -> "AlertThresholds":
        """Return a copy with the given metrics' thresholds replaced."""
        known = {f.name for f in fields(self)}
        updates: Dict[str, AlertThreshold] = {}
        for name, value in changes.items():
            if name not in known:
                raise ConfigurationError(f"Unknown alert threshold: {name}")
            updates[name] = _coerce_threshold(value)
        return replace(self, **updates)


def _coerce_threshold(value: Any) -> AlertThreshold:
    if isinstance(value, AlertThreshold):
        return value
    try:
        if isinstance(value, Mapping):
            warning, critical = value["warning"], value["critical"]
        else:
            warning, critical = value
        return AlertThreshold(warning=warning, critical=critical)
    except (KeyError, TypeError, ValueError) as e:
        raise ConfigurationError(f"Invalid alert threshold: {value!r}") from e


@dataclass(frozen=True)
class DashboardConfig:
    """Configuration for the analytics dashboard."""

    refresh_interval: float = 30.0  # seconds
    alert_thresholds: AlertThresholds = AlertThresholds()
    retention_period: int = 30  # days
    enable_real_time_alerts: bool = True

    def __post_init__(self) -> None:
        if self.refresh_interval <= 0:
            raise ConfigurationError("refresh_interval must be positive")
        if self.retention_period < 0:
            raise ConfigurationError("retention_period must not be negative")

    @classmethod
    def from_settings(cls, settings: TelemetrySettings) -> "DashboardConfig":
        return cls(
            refresh_interval=settings.refresh_interval,
            alert_thresholds=AlertThresholds(
                lcp=AlertThreshold(settings.lcp_warning_ms, settings.lcp_critical_ms),
                fid=AlertThreshold(settings.fid_warning_ms, settings.fid_critical_ms),
                cls=AlertThreshold(settings.cls_warning, settings.cls_critical),
                memory_usage=AlertThreshold(settings.memory_warning_bytes, settings.memory_critical_bytes),
                error_rate=AlertThreshold(settings.error_rate_warning, settings.error_rate_critical),
            ),
            retention_period=settings.retention_period_days,
            enable_real_time_alerts=settings.enable_real_time_alerts,
        )


@dataclass(frozen=True)
class GradedVital:
    value: float
    grade: VitalGrade


@dataclass(frozen=True)
class GradedWebVitals:
    lcp: GradedVital
    fid: GradedVital
    cls: GradedVital


@dataclass(frozen=True)
class MemoryUsage:
    current: int
    peak: int
    pressure: MemoryPressure


@dataclass(frozen=True)
class ErrorRate:
    total: int
    rate: int  # errors in the trailing minute
    critical_errors: int


@dataclass(frozen=True)
class NetworkPerformance:
    connection_type: str
    effective_type: str
    downlink: float
    rtt: float


@dataclass(frozen=True)
class DeviceSnapshot:
    is_mobile: bool
    platform: str
    browser_name: str
    viewport_size: Tuple[int, int]


@dataclass(frozen=True)
class PerformanceMetrics:
    """One aggregated, timestamped dashboard sample."""

    timestamp: datetime
    core_web_vitals: GradedWebVitals
    memory_usage: MemoryUsage
    error_rate: ErrorRate
    network_performance: NetworkPerformance
    device_info: DeviceSnapshot


@dataclass(frozen=True)
class AlertRule:
    """How one tracked metric turns into an alert."""

    threshold: str
    alert_type: AlertType
    value: Callable[[PerformanceMetrics], float]
    critical_message: Callable[[float], str]
    warning_message: Callable[[float], str]


def _num(value: float) -> str:
    return f"{value:.10g}"


ALERT_RULES: Tuple[AlertRule, ...] = (
    AlertRule(
        "lcp", AlertType.PERFORMANCE,
        lambda m: m.core_web_vitals.lcp.value,
        lambda v: f"LCP is critically high: {_num(v)}ms",
        lambda v: f"LCP needs improvement: {_num(v)}ms",
    ),
    AlertRule(
        "fid", AlertType.PERFORMANCE,
        lambda m: m.core_web_vitals.fid.value,
        lambda v: f"FID is critically high: {_num(v)}ms",
        lambda v: f"FID needs improvement: {_num(v)}ms",
    ),
    AlertRule(
        "cls", AlertType.PERFORMANCE,
        lambda m: m.core_web_vitals.cls.value,
        lambda v: f"CLS is critically high: {_num(v)}",
        lambda v: f"CLS needs improvement: {_num(v)}",
    ),
    AlertRule(
        "memory_usage", AlertType.MEMORY,
        lambda m: m.memory_usage.current,
        lambda v: f"Memory usage is critical: {bytes_to_mb(v)}MB",
        lambda v: f"Memory usage is high: {bytes_to_mb(v)}MB",
    ),
    AlertRule(
        "error_rate", AlertType.ERROR,
        lambda m: m.error_rate.rate,
        lambda v: f"Error rate is critical: {_num(v)} errors/min",
        lambda v: f"Error rate is high: {_num(v)} errors/min",
    ),
)


class AnalyticsDashboard:
    """
    Real-time performance dashboard with alerting and A/B testing.

    Pulls a snapshot from each collector every ``refresh_interval`` seconds
    while monitoring, and turns pushed collector reports into alerts.
    """

    def __init__(self,
                 performance_monitor: PerformanceMonitor,
                 error_tracker: ErrorTracker,
                 scheduler: Scheduler,
                 config: Optional[DashboardConfig] = None,
                 exporter: Optional[TelemetryExporter] = None,
                 clock: Optional[Callable[[], datetime]] = None):
        """Initialize the dashboard; nothing runs until ``start_monitoring``."""

        self.performance_monitor = performance_monitor
        self.error_tracker = error_tracker
        self.scheduler = scheduler
        self.config = config or DashboardConfig()
        self.exporter = exporter
        self._clock = clock or datetime.now

        self._metrics: List[PerformanceMetrics] = []
        self._alerts = AlertLog(clock=self._clock)
        self._ab_tests = ABTestEngine(
            clock=self._clock,
            on_assignment=exporter.observe_assignment if exporter else None,
            on_conversion=exporter.observe_conversion if exporter else None,
        )
        self._alert_callbacks: CallbackRegistry[PerformanceAlert] = CallbackRegistry("alert")
        self._metrics_callbacks: CallbackRegistry[PerformanceMetrics] = CallbackRegistry("metrics_update")
        self._subscriptions: List[Unsubscribe] = []
        self._refresh_timer: Optional[TimerHandle] = None
        self._is_monitoring = False

        logger.info("AnalyticsDashboard initialized",
                    refresh_interval=self.config.refresh_interval,
                    retention_days=self.config.retention_period)

    @property
    def is_monitoring(self) -> bool:
        return self._is_monitoring

    # Monitoring lifecycle

    def start_monitoring(self) -> None:
        """Subscribe to both collectors and start periodic collection."""

        if self._is_monitoring:
            return

        self._is_monitoring = True
        self._subscriptions.append(
            self.performance_monitor.on_performance_report(self._process_performance_report)
        )
        self._subscriptions.append(
            self.error_tracker.on_error_report(self._process_error_report)
        )
        self._refresh_timer = self.scheduler.call_every(
            self.config.refresh_interval, self.collect_current_metrics
        )

        logger.info("Dashboard monitoring started",
                    refresh_interval=self.config.refresh_interval)

        self.collect_current_metrics()

    def stop_monitoring(self) -> None:
        """Cancel the collection timer and detach from the collectors."""

        if not self._is_monitoring:
            return

        self._is_monitoring = False

        if self._refresh_timer is not None:
            self._refresh_timer.cancel()
            self._refresh_timer = None

        for unsubscribe in self._subscriptions:
            unsubscribe()
        self._subscriptions = []

        logger.info("Dashboard monitoring stopped")

    # Metrics

    @log_execution_time("dashboard.collect_current_metrics")
    def collect_current_metrics(self) -> PerformanceMetrics:
        """Fold fresh collector snapshots into a new sample and evaluate alerts."""

        report = self.performance_monitor.get_current_performance_snapshot()
        session_errors = self.error_tracker.get_session_errors()
        now = self._clock()

        vitals = report.core_web_vitals
        memory = report.memory_metrics
        network = report.network_metrics
        device = report.device_info

        peak = max([m.memory_usage.current for m in self._metrics] + [memory.used_heap])

        metrics = PerformanceMetrics(
            timestamp=now,
            core_web_vitals=GradedWebVitals(
                lcp=GradedVital(vitals.lcp, grade_web_vital("lcp", vitals.lcp)),
                fid=GradedVital(vitals.fid, grade_web_vital("fid", vitals.fid)),
                cls=GradedVital(vitals.cls, grade_web_vital("cls", vitals.cls)),
            ),
            memory_usage=MemoryUsage(
                current=memory.used_heap,
                peak=peak,
                pressure=memory.pressure,
            ),
            error_rate=ErrorRate(
                total=len(session_errors),
                rate=self._calculate_error_rate(session_errors, now),
                critical_errors=sum(1 for e in session_errors if e.severity == Severity.CRITICAL),
            ),
            network_performance=NetworkPerformance(
                connection_type=network.connection_type,
                effective_type=network.effective_type,
                downlink=network.downlink,
                rtt=network.rtt,
            ),
            device_info=DeviceSnapshot(
                is_mobile=device.is_mobile,
                platform=device.platform,
                browser_name=detect_browser(device.user_agent)[0],
                viewport_size=device.viewport,
            ),
        )

        self._metrics.append(metrics)
        self.check_for_alerts(metrics)

        if self.exporter is not None:
            self.exporter.observe_metrics(metrics)
        self._metrics_callbacks.notify(metrics)

        return metrics

    def get_current_metrics(self) -> Optional[PerformanceMetrics]:
        return self._metrics[-1] if self._metrics else None

    def get_metrics_history(self,
                            start_date: datetime,
                            end_date: Optional[datetime] = None) -> List[PerformanceMetrics]:
        """Samples timestamped within ``[start_date, end_date]`` inclusive."""
        end_date = end_date or self._clock()
        return [m for m in self._metrics if start_date <= m.timestamp <= end_date]

    def on_metrics_update(self, callback: Callable[[PerformanceMetrics], None]) -> Unsubscribe:
        return self._metrics_callbacks.add(callback)

    # Alerts

    def check_for_alerts(self, metrics: PerformanceMetrics) -> List[PerformanceAlert]:
        """Raise an alert for every tracked metric past its warning threshold."""
        raised = []
        thresholds = self.config.alert_thresholds

        for rule in ALERT_RULES:
            value = rule.value(metrics)
            severity = getattr(thresholds, rule.threshold).evaluate(value)
            if severity is None:
                continue

            message = rule.critical_message(value) if severity == Severity.CRITICAL else rule.warning_message(value)
            raised.append(self._add_alert(rule.alert_type, severity, message, {"metrics": metrics}))

        return raised

    def get_active_alerts(self) -> List[PerformanceAlert]:
        """Alerts neither acknowledged nor resolved."""
        return self._alerts.active()

    def get_all_alerts(self) -> List[PerformanceAlert]:
        return self._alerts.all()

    def acknowledge_alert(self, alert_id: str) -> bool:
        return self._alerts.acknowledge(alert_id)

    def resolve_alert(self, alert_id: str) -> bool:
        return self._alerts.resolve(alert_id)

    def on_alert(self, callback: Callable[[PerformanceAlert], None]) -> Unsubscribe:
        return self._alert_callbacks.add(callback)

    # A/B testing

    def create_ab_test(self,
                       name: str,
                       variants: Sequence[VariantSpec],
                       target_metric: Union[TargetMetric, str] = TargetMetric.CONVERSION,
                       description: str = "") -> str:
        return self._ab_tests.create_test(name, variants, target_metric, description)

    def start_ab_test(self, test_id: str) -> bool:
        return self._ab_tests.start_test(test_id)

    def pause_ab_test(self, test_id: str) -> bool:
        return self._ab_tests.pause_test(test_id)

    def resume_ab_test(self, test_id: str) -> bool:
        return self._ab_tests.resume_test(test_id)

    def stop_ab_test(self, test_id: str) -> bool:
        return self._ab_tests.stop_test(test_id)

    def get_variant_for_user(self, test_id: str, user_id: str) -> Optional[ABTestVariant]:
        return self._ab_tests.get_variant_for_user(test_id, user_id)

    def record_conversion(self, test_id: str, user_id: str) -> bool:
        return self._ab_tests.record_conversion(test_id, user_id)

    def record_variant_performance(self,
                                   test_id: str,
                                   user_id: str,
                                   performance_score: float,
                                   had_error: bool = False) -> bool:
        return self._ab_tests.record_variant_performance(test_id, user_id, performance_score, had_error)

    def get_ab_test_results(self, test_id: str) -> Optional[ABTest]:
        return self._ab_tests.get_test(test_id)

    # Configuration and retention

    def update_config(self, **changes: Any) -> DashboardConfig:
        """
        Apply a partial configuration update.

        ``alert_thresholds`` may be a full ``AlertThresholds`` or a mapping of
        metric name to threshold, merged over the current ones. Monitoring is
        restarted when running so a new refresh interval takes effect.
        """
        known = {f.name for f in fields(DashboardConfig)}
        unknown = set(changes) - known
        if unknown:
            raise ConfigurationError(f"Unknown dashboard settings: {sorted(unknown)}")

        thresholds = changes.get("alert_thresholds")
        if thresholds is not None and not isinstance(thresholds, AlertThresholds):
            changes["alert_thresholds"] = self.config.alert_thresholds.merged(thresholds)

        self.config = replace(self.config, **changes)
        logger.info("Dashboard configuration updated", changed=sorted(changes))

        if self._is_monitoring:
            self.stop_monitoring()
            self.start_monitoring()

        return self.config

    def cleanup_old_data(self) -> int:
        """Drop samples and alerts older than the retention period; returns the count removed."""
        cutoff = self._clock() - timedelta(days=self.config.retention_period)

        before = len(self._metrics)
        self._metrics = [m for m in self._metrics if m.timestamp >= cutoff]
        removed_metrics = before - len(self._metrics)
        removed_alerts = self._alerts.purge_older_than(cutoff)

        logger.info("Cleaned up old dashboard data",
                    removed_metrics=removed_metrics,
                    removed_alerts=removed_alerts,
                    retention_days=self.config.retention_period)

        return removed_metrics + removed_alerts

    # Collector report handling

    def _process_performance_report(self, report: PerformanceReport) -> None:
        check = self.performance_monitor.check_performance_thresholds(report)
        if not check.has_issues:
            return

        self._add_alert(
            AlertType.PERFORMANCE,
            grade_issues(check.issues),
            f"Performance issues detected: {', '.join(check.issues)}",
            {"report": report, "issues": list(check.issues)},
        )

    def _process_error_report(self, report: MobileErrorReport) -> None:
        self._add_alert(
            AlertType.ERROR,
            report.severity,
            f"{report.error_type.value}: {report.message}",
            {"report": report},
        )

    def _add_alert(self,
                   alert_type: AlertType,
                   severity: Severity,
                   message: str,
                   data: Dict[str, Any]) -> PerformanceAlert:
        alert = self._alerts.create(alert_type, severity, message, data)

        if self.exporter is not None:
            self.exporter.observe_alert(alert)

        if self.config.enable_real_time_alerts:
            self._alert_callbacks.notify(alert)

        return alert

    def _calculate_error_rate(self, errors: List[MobileErrorReport], now: datetime) -> int:
        window_start = now - ERROR_RATE_WINDOW
        return sum(1 for error in errors if error.timestamp >= window_start)
