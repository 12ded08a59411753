"""
Alert grading and lifecycle.

Alerts are created unacknowledged and unresolved, may be acknowledged, and
may be resolved (which also acknowledges them). They are never deleted
except by retention cleanup.
"""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Callable, Dict, List, Optional, Sequence

import structlog

from session_telemetry.core.exceptions import ConfigurationError
from session_telemetry.core.types import Severity, generate_id

logger = structlog.get_logger(__name__)


class AlertType(str, Enum):
    """Subsystem an alert is about."""
    PERFORMANCE = "performance"
    ERROR = "error"
    MEMORY = "memory"
    NETWORK = "network"


class VitalGrade(str, Enum):
    GOOD = "good"
    NEEDS_IMPROVEMENT = "needs-improvement"
    POOR = "poor"


@dataclass(frozen=True)
class AlertThreshold:
    """Warning and critical boundaries for one tracked metric."""

    warning: float
    critical: float

    def __post_init__(self) -> None:
        if self.warning > self.critical:
            raise ConfigurationError(
                f"Warning threshold {self.warning} exceeds critical threshold {self.critical}"
            )

    def evaluate(self, value: float) -> Optional[Severity]:
        """``critical`` above critical, ``medium`` above warning, otherwise ``None``."""
        if value > self.critical:
            return Severity.CRITICAL
        if value > self.warning:
            return Severity.MEDIUM
        return None


@dataclass
class PerformanceAlert:
    """A graded alert raised by the dashboard."""

    id: str
    timestamp: datetime
    type: AlertType
    severity: Severity
    message: str
    data: Dict[str, Any] = field(default_factory=dict)
    acknowledged: bool = False
    resolved_at: Optional[datetime] = None

    @property
    def is_active(self) -> bool:
        return not self.acknowledged and self.resolved_at is None


# Grading boundaries for the dashboard's web vital grades
VITAL_GRADE_BOUNDARIES = {
    "lcp": (2500.0, 4000.0),
    "fid": (100.0, 300.0),
    "cls": (0.1, 0.25),
}


def grade_web_vital(metric: str, value: float) -> VitalGrade:
    """Grade a vital: good up to the first boundary, poor past the second."""
    good, poor = VITAL_GRADE_BOUNDARIES[metric]
    if value <= good:
        return VitalGrade.GOOD
    if value <= poor:
        return VitalGrade.NEEDS_IMPROVEMENT
    return VitalGrade.POOR


def grade_issues(issues: Sequence[str]) -> Severity:
    """Grade a collector threshold check by its issue messages."""
    if any("critical" in issue.lower() for issue in issues):
        return Severity.CRITICAL
    if len(issues) >= 3:
        return Severity.HIGH
    if len(issues) >= 2:
        return Severity.MEDIUM
    return Severity.LOW


class AlertLog:
    """Append-only alert store with in-place acknowledgement and resolution."""

    def __init__(self, clock: Optional[Callable[[], datetime]] = None):
        self._clock = clock or datetime.now
        self._alerts: List[PerformanceAlert] = []

    def create(self,
               alert_type: AlertType,
               severity: Severity,
               message: str,
               data: Optional[Dict[str, Any]] = None) -> PerformanceAlert:
        alert = PerformanceAlert(
            id=generate_id("alert"),
            timestamp=self._clock(),
            type=alert_type,
            severity=severity,
            message=message,
            data=data or {},
        )
        self._alerts.append(alert)

        logger.info("Alert raised",
                    alert_id=alert.id,
                    alert_type=alert_type.value,
                    severity=severity.value,
                    message=message)
        return alert

    def find(self, alert_id: str) -> Optional[PerformanceAlert]:
        for alert in self._alerts:
            if alert.id == alert_id:
                return alert
        return None

    def acknowledge(self, alert_id: str) -> bool:
        alert = self.find(alert_id)
        if alert is None:
            return False
        alert.acknowledged = True
        return True

    def resolve(self, alert_id: str) -> bool:
        alert = self.find(alert_id)
        if alert is None:
            return False
        alert.resolved_at = self._clock()
        alert.acknowledged = True
        return True

    def active(self) -> List[PerformanceAlert]:
        return [alert for alert in self._alerts if alert.is_active]

    def all(self) -> List[PerformanceAlert]:
        return list(self._alerts)

    def purge_older_than(self, cutoff: datetime) -> int:
        """Drop alerts timestamped strictly before ``cutoff``; returns the count removed."""
        before = len(self._alerts)
        self._alerts = [alert for alert in self._alerts if alert.timestamp >= cutoff]
        return before - len(self._alerts)

    def __len__(self) -> int:
        return len(self._alerts)
