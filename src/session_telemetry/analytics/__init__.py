"""Analytics dashboard, alerting and A/B testing."""

from .ab_testing import ABTest, ABTestEngine, ABTestVariant, bucket_for_user
from .alerting import AlertThreshold, PerformanceAlert
from .dashboard import AnalyticsDashboard, DashboardConfig, PerformanceMetrics

__all__ = [
    "ABTest",
    "ABTestEngine",
    "ABTestVariant",
    "bucket_for_user",
    "AlertThreshold",
    "PerformanceAlert",
    "AnalyticsDashboard",
    "DashboardConfig",
    "PerformanceMetrics",
]
