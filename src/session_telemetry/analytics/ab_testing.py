"""
A/B testing engine.

Users are bucketed deterministically from their id, assignments are sticky
for the lifetime of a test, and each variant keeps raw participant,
conversion, performance and error counters. No significance testing is
performed; the recorded winner is simply the best raw rate.
"""

from dataclasses import dataclass, field, replace
from datetime import datetime
from enum import Enum
from typing import Any, Callable, Dict, List, Mapping, Optional, Sequence, Union

import structlog

from session_telemetry.core.exceptions import ValidationError
from session_telemetry.core.types import generate_id

logger = structlog.get_logger(__name__)

_UINT32 = 0xFFFFFFFF


class ABTestStatus(str, Enum):
    DRAFT = "draft"
    RUNNING = "running"
    PAUSED = "paused"
    COMPLETED = "completed"


class TargetMetric(str, Enum):
    PERFORMANCE = "performance"
    CONVERSION = "conversion"
    ERROR_RATE = "error-rate"


@dataclass
class VariantMetrics:
    """Raw counters for one variant."""

    participants: int = 0
    conversions: int = 0
    conversion_rate: float = 0.0
    avg_performance_score: float = 0.0
    error_rate: float = 0.0
    performance_samples: int = 0
    errors: int = 0


@dataclass
class ABTestVariant:
    """One arm of an experiment."""

    id: str
    name: str
    traffic_percentage: float
    enabled: bool = True
    description: str = ""
    config: Dict[str, Any] = field(default_factory=dict)
    metrics: VariantMetrics = field(default_factory=VariantMetrics)


@dataclass
class ABTest:
    """An experiment and its variants, in declared order."""

    id: str
    name: str
    variants: List[ABTestVariant]
    target_metric: TargetMetric = TargetMetric.CONVERSION
    description: str = ""
    status: ABTestStatus = ABTestStatus.DRAFT
    start_date: Optional[datetime] = None
    end_date: Optional[datetime] = None
    current_winner: Optional[str] = None

    def variant(self, variant_id: str) -> Optional[ABTestVariant]:
        for variant in self.variants:
            if variant.id == variant_id:
                return variant
        return None


def bucket_for_user(user_id: str) -> int:
    """
    Map a user id to a bucket in ``[0, 100)``.

    Accumulates ``hash * 31 + code_unit`` over the UTF-16 code units of the id
    with 32-bit wraparound, reads the result as a signed integer, and returns
    its absolute value modulo 100.
    """
    encoded = user_id.encode("utf-16-le")
    value = 0
    for i in range(0, len(encoded), 2):
        code_unit = encoded[i] | (encoded[i + 1] << 8)
        value = (value * 31 + code_unit) & _UINT32

    if value & 0x80000000:
        value -= 0x100000000

    return abs(value) % 100


VariantSpec = Union[ABTestVariant, Mapping[str, Any]]


class ABTestEngine:
    """Experiment registry with sticky, hash-bucketed variant assignment."""

    def __init__(self,
                 clock: Optional[Callable[[], datetime]] = None,
                 on_assignment: Optional[Callable[[ABTest, ABTestVariant], None]] = None,
                 on_conversion: Optional[Callable[[ABTest, ABTestVariant], None]] = None):
        self._clock = clock or datetime.now
        self._tests: Dict[str, ABTest] = {}
        self._assignments: Dict[str, str] = {}
        self._on_assignment = on_assignment
        self._on_conversion = on_conversion

    def create_test(self,
                    name: str,
                    variants: Sequence[VariantSpec],
                    target_metric: Union[TargetMetric, str] = TargetMetric.CONVERSION,
                    description: str = "") -> str:
        """Register a new experiment in ``draft`` status and return its id."""
        built = [self._build_variant(spec) for spec in variants]
        self._validate_variants(name, built)

        try:
            metric = TargetMetric(target_metric)
        except ValueError as e:
            raise ValidationError(f"Unknown target metric: {target_metric}") from e

        test = ABTest(
            id=generate_id("test"),
            name=name,
            variants=built,
            target_metric=metric,
            description=description,
        )
        self._tests[test.id] = test

        logger.info("A/B test created",
                    test_id=test.id,
                    name=name,
                    variants=[v.id for v in built])
        return test.id

    def start_test(self, test_id: str) -> bool:
        """``draft`` -> ``running``; stamps the start date."""
        test = self._tests.get(test_id)
        if test is None or test.status != ABTestStatus.DRAFT:
            return False

        test.status = ABTestStatus.RUNNING
        test.start_date = self._clock()
        logger.info("A/B test started", test_id=test_id)
        return True

    def pause_test(self, test_id: str) -> bool:
        """``running`` -> ``paused``; new assignments stop."""
        return self._transition(test_id, ABTestStatus.RUNNING, ABTestStatus.PAUSED)

    def resume_test(self, test_id: str) -> bool:
        """``paused`` -> ``running``."""
        return self._transition(test_id, ABTestStatus.PAUSED, ABTestStatus.RUNNING)

    def stop_test(self, test_id: str) -> bool:
        """``running`` -> ``completed``; stamps the end date and records the raw winner."""
        test = self._tests.get(test_id)
        if test is None or test.status != ABTestStatus.RUNNING:
            return False

        test.status = ABTestStatus.COMPLETED
        test.end_date = self._clock()
        test.current_winner = self._raw_winner(test)

        logger.info("A/B test completed",
                    test_id=test_id,
                    winner=test.current_winner)
        return True

    def get_variant_for_user(self, test_id: str, user_id: str) -> Optional[ABTestVariant]:
        """
        Return the user's variant, assigning one if the test is running.

        An existing assignment is returned as-is, even if the variant list or
        traffic split has changed since it was made.
        """
        test = self._tests.get(test_id)
        if test is None:
            return None

        key = f"{test_id}:{user_id}"
        assigned = self._assignments.get(key)
        if assigned is not None:
            return test.variant(assigned)

        if test.status != ABTestStatus.RUNNING:
            return None

        bucket = bucket_for_user(user_id)
        cumulative = 0.0
        for variant in test.variants:
            if not variant.enabled:
                continue

            cumulative += variant.traffic_percentage
            if bucket <= cumulative:
                self._assignments[key] = variant.id
                variant.metrics.participants += 1

                logger.debug("Variant assigned",
                             test_id=test_id,
                             user_id=user_id,
                             variant_id=variant.id,
                             bucket=bucket)
                if self._on_assignment is not None:
                    self._on_assignment(test, variant)
                return variant

        logger.debug("No variant covers bucket",
                     test_id=test_id,
                     user_id=user_id,
                     bucket=bucket)
        return None

    def record_conversion(self, test_id: str, user_id: str) -> bool:
        """Count a conversion for the user's assigned variant."""
        variant = self._assigned_variant(test_id, user_id)
        if variant is None:
            return False

        metrics = variant.metrics
        metrics.conversions += 1
        metrics.conversion_rate = (
            metrics.conversions / metrics.participants * 100
            if metrics.participants > 0 else 0.0
        )

        if self._on_conversion is not None:
            self._on_conversion(self._tests[test_id], variant)
        return True

    def record_variant_performance(self,
                                   test_id: str,
                                   user_id: str,
                                   performance_score: float,
                                   had_error: bool = False) -> bool:
        """Fold one performance observation into the user's variant."""
        variant = self._assigned_variant(test_id, user_id)
        if variant is None:
            return False

        metrics = variant.metrics
        metrics.performance_samples += 1
        metrics.avg_performance_score += (
            (performance_score - metrics.avg_performance_score) / metrics.performance_samples
        )
        if had_error:
            metrics.errors += 1
        metrics.error_rate = metrics.errors / metrics.performance_samples * 100
        return True

    def get_test(self, test_id: str) -> Optional[ABTest]:
        return self._tests.get(test_id)

    def tests(self) -> List[ABTest]:
        return list(self._tests.values())

    def _assigned_variant(self, test_id: str, user_id: str) -> Optional[ABTestVariant]:
        test = self._tests.get(test_id)
        assigned = self._assignments.get(f"{test_id}:{user_id}")
        if test is None or assigned is None:
            return None
        return test.variant(assigned)

    def _transition(self, test_id: str, source: ABTestStatus, target: ABTestStatus) -> bool:
        test = self._tests.get(test_id)
        if test is None or test.status != source:
            return False

        test.status = target
        logger.info("A/B test status changed",
                    test_id=test_id,
                    status=target.value)
        return True

    @staticmethod
    def _build_variant(spec: VariantSpec) -> ABTestVariant:
        # Each test owns its variants; counters never leak between tests
        if isinstance(spec, ABTestVariant):
            return replace(spec, config=dict(spec.config), metrics=replace(spec.metrics))

        data = dict(spec)
        data.setdefault("id", generate_id("variant"))
        data.setdefault("name", data["id"])
        metrics = data.pop("metrics", None)
        try:
            variant = ABTestVariant(**data)
            if isinstance(metrics, VariantMetrics):
                variant.metrics = replace(metrics)
            elif metrics is not None:
                variant.metrics = VariantMetrics(**metrics)
        except TypeError as e:
            raise ValidationError(f"Invalid variant definition: {e}") from e
        return variant

    @staticmethod
    def _validate_variants(name: str, variants: List[ABTestVariant]) -> None:
        if not variants:
            raise ValidationError(f"A/B test '{name}' needs at least one variant")

        ids = [variant.id for variant in variants]
        if len(set(ids)) != len(ids):
            raise ValidationError(f"A/B test '{name}' has duplicate variant ids")

        for variant in variants:
            if not 0 <= variant.traffic_percentage <= 100:
                raise ValidationError(
                    f"Variant '{variant.id}' traffic percentage must be between 0 and 100"
                )

        enabled_total = sum(v.traffic_percentage for v in variants if v.enabled)
        if enabled_total > 100:
            logger.warning("A/B test traffic exceeds 100%",
                           name=name,
                           total=enabled_total)

    @staticmethod
    def _raw_winner(test: ABTest) -> Optional[str]:
        candidates = [v for v in test.variants if v.metrics.participants > 0]
        if not candidates:
            return None

        if test.target_metric == TargetMetric.CONVERSION:
            best = max(candidates, key=lambda v: v.metrics.conversion_rate)
        elif test.target_metric == TargetMetric.PERFORMANCE:
            best = max(candidates, key=lambda v: v.metrics.avg_performance_score)
        else:
            best = min(candidates, key=lambda v: v.metrics.error_rate)
        return best.id
