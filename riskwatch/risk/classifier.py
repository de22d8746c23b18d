"""
Status classification for metrics.

Maps a metric's value against its threshold into a status, a severity and a
trend. Classification is a pure function of the metric and the value it had
in the preceding evaluation cycle.
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Optional, Tuple

from riskwatch.core.config import ClassificationConfig
from riskwatch.metrics.schema import Metric, Polarity

from .schema import ClassifiedMetric, Severity, Status, Trend


@dataclass
class StatusClassifier:
    """
    Polarity-aware threshold classifier.

    Bands (inclusive on the stricter side):
    - ratio < degraded_from                    -> healthy / low
    - degraded_from <= ratio < close_call_from -> degraded / medium
    - close_call_from <= ratio < critical_from -> degraded / high
    - ratio >= critical_from                   -> critical / critical
    """

    bands: ClassificationConfig

    def ratio(self, metric: Metric) -> float:
        """
        Polarity-adjusted ratio; values >= 1.0 are at or past the threshold.

        A higher-is-better metric at or below zero has no meaningful inverse
        and is treated as infinitely bad.
        """
        if metric.current_value is None:
            raise ValueError(f"Metric {metric.id} has no current value")

        value = float(metric.current_value)
        if not math.isfinite(value):
            raise ValueError(f"Metric {metric.id} has a non-finite value: {value}")

        if metric.polarity == Polarity.HIGHER_IS_WORSE:
            return value / metric.threshold
        if value <= 0.0:
            return math.inf
        return metric.threshold / value

    def bucket(self, ratio: float) -> Tuple[Status, Severity]:
        if ratio >= self.bands.critical_from:
            return Status.CRITICAL, Severity.CRITICAL
        if ratio >= self.bands.close_call_from:
            return Status.DEGRADED, Severity.HIGH
        if ratio >= self.bands.degraded_from:
            return Status.DEGRADED, Severity.MEDIUM
        return Status.HEALTHY, Severity.LOW

    def trend(self, current: Optional[float], previous: Optional[float]) -> Trend:
        if current is None or previous is None:
            return Trend.STABLE
        delta = current - previous
        if delta > self.bands.trend_epsilon:
            return Trend.UP
        if delta < -self.bands.trend_epsilon:
            return Trend.DOWN
        return Trend.STABLE

    def classify(self, metric: Metric, previous_value: Optional[float] = None) -> ClassifiedMetric:
        if not metric.is_observed:
            return self.unknown(metric, previous_value)

        ratio = self.ratio(metric)
        status, severity = self.bucket(ratio)
        return ClassifiedMetric(
            **metric.model_dump(),
            status=status,
            severity=severity,
            trend=self.trend(metric.current_value, previous_value),
            ratio=ratio,
            previous_value=previous_value,
        )

    def unknown(self, metric: Metric, previous_value: Optional[float] = None) -> ClassifiedMetric:
        return ClassifiedMetric(
            **metric.model_dump(),
            status=Status.UNKNOWN,
            severity=Severity.NONE,
            trend=Trend.STABLE,
            ratio=None,
            previous_value=previous_value,
        )
