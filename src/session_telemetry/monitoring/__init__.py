"""
Collectors

- Performance monitoring: web vitals, heap pressure, network information
- Error tracking: error reports, breadcrumbs and session recording
- Prometheus export of dashboard samples and alerts
"""

from .error_tracker import ErrorTracker, MobileErrorReport
from .performance_monitor import PerformanceMonitor, PerformanceThresholds
from .prometheus_exporter import TelemetryExporter

__all__ = [
    "ErrorTracker",
    "MobileErrorReport",
    "PerformanceMonitor",
    "PerformanceThresholds",
    "TelemetryExporter",
]
