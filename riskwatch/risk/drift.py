"""
Baseline drift detection.

Drift compares a metric's current value with its recorded baseline, not with
the previous reading, so it captures sustained movement rather than noise.
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Optional

from riskwatch.core.config import DriftConfig
from riskwatch.metrics.schema import Metric

from .schema import DriftDirection, DriftRecord


def drift_percent(baseline: float, current: float) -> float:
    """
    Signed percentage drift of ``current`` from ``baseline``.

    A zero baseline cannot be divided by: it yields 0.0 when current is also
    zero and +/-100.0 (sign of current) otherwise, so real movement away from
    zero still registers.
    """
    if baseline == 0.0:
        if current == 0.0:
            return 0.0
        return math.copysign(100.0, current)
    return (current - baseline) * 100.0 / abs(baseline)


@dataclass
class DriftDetector:
    """
    Computes DriftRecords and flags drifting/significant metrics.

    Both thresholds are strict: a drift of exactly ``significant_percent`` is
    drifting but not significant.
    """

    thresholds: DriftConfig

    def is_drifting(self, percent: float) -> bool:
        return abs(percent) > self.thresholds.drifting_percent

    def is_significant(self, percent: float) -> bool:
        return abs(percent) > self.thresholds.significant_percent

    def compute(self, metric: Metric) -> Optional[DriftRecord]:
        """
        Build the DriftRecord for a metric.

        Returns None when the metric has no usable current value or baseline.
        """
        if not metric.is_observed or metric.baseline is None:
            return None

        current = float(metric.current_value)
        baseline = float(metric.baseline)
        percent = drift_percent(baseline, current)

        return DriftRecord(
            metric_id=metric.id,
            metric_name=metric.name,
            category=metric.category,
            baseline=baseline,
            current=current,
            drift_percent=percent,
            direction=DriftDirection.UP if percent >= 0.0 else DriftDirection.DOWN,
            window_label=metric.window_label or self.thresholds.window_label,
            drifting=self.is_drifting(percent),
            significant=self.is_significant(percent),
        )
