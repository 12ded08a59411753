"""Unit tests for the Prometheus exporter."""

from prometheus_client import CollectorRegistry

from session_telemetry.analytics.ab_testing import ABTest, ABTestVariant
from session_telemetry.analytics.alerting import AlertLog, AlertType
from session_telemetry.core.types import Severity
from session_telemetry.monitoring.prometheus_exporter import TelemetryExporter


class TestTelemetryExporter:
    """Test metric recording and exposition."""

    def test_private_registries_do_not_collide(self):
        first = TelemetryExporter()
        second = TelemetryExporter()

        assert first.registry is not second.registry

    def test_shared_registry_and_namespace(self):
        registry = CollectorRegistry()
        exporter = TelemetryExporter(registry=registry, namespace="checkout")

        exporter.observe_alert(AlertLog().create(AlertType.MEMORY, Severity.CRITICAL, "Memory usage is critical: 120MB"))

        assert registry.get_sample_value(
            "checkout_alerts_total", {"type": "memory", "severity": "critical"}
        ) == 1.0

    def test_observe_metrics(self, dashboard, exporter, tracker):
        tracker.report_error("boom")
        exporter.observe_metrics(dashboard.collect_current_metrics())

        registry = exporter.registry
        assert registry.get_sample_value("session_telemetry_session_errors", {"kind": "total"}) == 1.0
        assert registry.get_sample_value("session_telemetry_session_errors", {"kind": "critical"}) == 0.0
        assert registry.get_sample_value("session_telemetry_error_rate_per_minute") == 1.0

    def test_experiment_counters(self, exporter):
        variant = ABTestVariant(id="control", name="Control", traffic_percentage=50)
        test = ABTest(id="test_1", name="Checkout", variants=[variant])

        exporter.observe_assignment(test, variant)
        exporter.observe_assignment(test, variant)
        exporter.observe_conversion(test, variant)

        labels = {"test_id": "test_1", "variant_id": "control"}
        assert exporter.registry.get_sample_value("session_telemetry_ab_participants_total", labels) == 2.0
        assert exporter.registry.get_sample_value("session_telemetry_ab_conversions_total", labels) == 1.0

    def test_export_format(self, exporter):
        exporter.observe_alert(AlertLog().create(AlertType.ERROR, Severity.HIGH, "boom"))

        output = exporter.export().decode()
        assert "# TYPE session_telemetry_alerts counter" in output
        assert exporter.registry.get_sample_value(
            "session_telemetry_alerts_total", {"type": "error", "severity": "high"}
        ) == 1.0
        assert exporter.content_type.startswith("text/plain")
