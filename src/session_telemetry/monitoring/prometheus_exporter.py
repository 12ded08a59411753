"""
Prometheus Metrics Exporter

Mirrors dashboard samples, alerts and experiment counters into a Prometheus
registry so a scraper (or the CLI) can render them in exposition format.
"""

from typing import TYPE_CHECKING, Optional

from prometheus_client import CONTENT_TYPE_LATEST, CollectorRegistry, Counter, Gauge, generate_latest
import structlog

if TYPE_CHECKING:
    from session_telemetry.analytics.ab_testing import ABTest, ABTestVariant
    from session_telemetry.analytics.alerting import PerformanceAlert
    from session_telemetry.analytics.dashboard import PerformanceMetrics

logger = structlog.get_logger(__name__)


class TelemetryExporter:
    """
    Prometheus exporter for the analytics dashboard.

    Uses a private ``CollectorRegistry`` by default so several dashboards
    (or test cases) never collide on metric names.
    """

    content_type = CONTENT_TYPE_LATEST

    def __init__(self,
                 registry: Optional[CollectorRegistry] = None,
                 namespace: str = "session_telemetry"):
        """Initialize the exporter and register its collectors."""

        self.registry = registry or CollectorRegistry()
        self.namespace = namespace
        self._setup_prometheus_metrics()

        logger.info("TelemetryExporter initialized", namespace=namespace)

    def _setup_prometheus_metrics(self) -> None:
        """Setup Prometheus metrics collectors."""

        # Web vitals
        self.web_vital_gauge = Gauge(
            f"{self.namespace}_web_vital",
            "Latest sampled Core Web Vital value",
            ["metric"],
            registry=self.registry
        )

        # Memory
        self.memory_used_gauge = Gauge(
            f"{self.namespace}_memory_used_bytes",
            "Heap in use at the latest sample",
            registry=self.registry
        )

        self.memory_peak_gauge = Gauge(
            f"{self.namespace}_memory_peak_bytes",
            "Peak heap in use across the sample history",
            registry=self.registry
        )

        # Errors
        self.error_rate_gauge = Gauge(
            f"{self.namespace}_error_rate_per_minute",
            "Errors reported in the trailing minute",
            registry=self.registry
        )

        self.session_errors_gauge = Gauge(
            f"{self.namespace}_session_errors",
            "Errors reported in the current session",
            ["kind"],
            registry=self.registry
        )

        # Alerts
        self.alerts_counter = Counter(
            f"{self.namespace}_alerts",
            "Alerts raised by the dashboard",
            ["type", "severity"],
            registry=self.registry
        )

        # Experiments
        self.participants_counter = Counter(
            f"{self.namespace}_ab_participants",
            "Users assigned to an experiment variant",
            ["test_id", "variant_id"],
            registry=self.registry
        )

        self.conversions_counter = Counter(
            f"{self.namespace}_ab_conversions",
            "Conversions recorded for an experiment variant",
            ["test_id", "variant_id"],
            registry=self.registry
        )

    def observe_metrics(self, metrics: "PerformanceMetrics") -> None:
        """Record an aggregated dashboard sample."""

        vitals = metrics.core_web_vitals
        self.web_vital_gauge.labels(metric="lcp").set(vitals.lcp.value)
        self.web_vital_gauge.labels(metric="fid").set(vitals.fid.value)
        self.web_vital_gauge.labels(metric="cls").set(vitals.cls.value)

        self.memory_used_gauge.set(metrics.memory_usage.current)
        self.memory_peak_gauge.set(metrics.memory_usage.peak)

        self.error_rate_gauge.set(metrics.error_rate.rate)
        self.session_errors_gauge.labels(kind="total").set(metrics.error_rate.total)
        self.session_errors_gauge.labels(kind="critical").set(metrics.error_rate.critical_errors)

    def observe_alert(self, alert: "PerformanceAlert") -> None:
        """Count a raised alert."""
        self.alerts_counter.labels(type=alert.type.value, severity=alert.severity.value).inc()

    def observe_assignment(self, test: "ABTest", variant: "ABTestVariant") -> None:
        """Count a new variant assignment."""
        self.participants_counter.labels(test_id=test.id, variant_id=variant.id).inc()

    def observe_conversion(self, test: "ABTest", variant: "ABTestVariant") -> None:
        """Count a recorded conversion."""
        self.conversions_counter.labels(test_id=test.id, variant_id=variant.id).inc()

    def export(self) -> bytes:
        """Render the registry in Prometheus exposition format."""
        return generate_latest(self.registry)
