"""
Composite health/risk scoring.

Starts from 100 and subtracts named, configurable penalties. The numeric
score maps to a three-band risk label, with an override: any critical metric
or open critical anomaly caps the label at ELEVATED however good the average
looks.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Iterable, Optional

from riskwatch.core.config import AnomalyRulesConfig, ScoringWeights

from .schema import (
    AnomalyEvent,
    ClassifiedMetric,
    DriftRecord,
    HealthSnapshot,
    RiskLevel,
    Severity,
    Status,
    TrialBalanceStatus,
    overall_severity,
)


def band_for(score: int, weights: ScoringWeights) -> RiskLevel:
    if score >= weights.low_risk_min:
        return RiskLevel.LOW
    if score >= weights.elevated_min:
        return RiskLevel.ELEVATED
    return RiskLevel.CRITICAL


@dataclass
class CompositeScorer:
    """
    Aggregates classified metrics, drift and anomalies into a HealthSnapshot.

    Penalties (defaults):
    - 15 per critical metric
    - 7 per high-severity metric
    - 3 per open anomaly
    - 2 per metric with significant drift
    Metrics with unknown status are excluded from every count.
    """

    weights: ScoringWeights
    rules: AnomalyRulesConfig

    def composite_score(
        self, critical: int, high: int, open_anomalies: int, significant_drift: int
    ) -> int:
        penalty = (
            self.weights.critical_metric * critical
            + self.weights.high_metric * high
            + self.weights.open_anomaly * open_anomalies
            + self.weights.significant_drift * significant_drift
        )
        return max(0, 100 - penalty)

    def score(
        self,
        classified: Iterable[ClassifiedMetric],
        anomalies: Iterable[AnomalyEvent],
        drift_records: Iterable[DriftRecord] = (),
        generated_at: Optional[datetime] = None,
        cycle: int = 0,
    ) -> HealthSnapshot:
        generated_at = generated_at or datetime.now(timezone.utc)
        metrics = list(classified)
        events = list(anomalies)

        known = [m for m in metrics if m.status != Status.UNKNOWN]
        known_ids = {m.id for m in known}
        drift = [d for d in drift_records if d.metric_id in known_ids]

        critical_count = sum(1 for m in known if m.status == Status.CRITICAL)
        high_count = sum(1 for m in known if m.severity == Severity.HIGH)
        drift_count = sum(1 for d in drift if d.drifting)
        significant_count = sum(1 for d in drift if d.significant)
        open_events = [e for e in events if e.is_open]

        score = self.composite_score(critical_count, high_count, len(open_events), significant_count)
        level = band_for(score, self.weights)

        highest_open = overall_severity(*(e.severity for e in open_events))
        has_critical = critical_count > 0 or highest_open == Severity.CRITICAL
        if has_critical and level == RiskLevel.LOW:
            level = RiskLevel.ELEVATED

        recent_from = generated_at - timedelta(hours=self.rules.recent_window_hours)
        recent = [e for e in events if e.timestamp >= recent_from]

        tb_status = (
            TrialBalanceStatus.IMBALANCED
            if any(e.financial_integrity_impact for e in open_events)
            else TrialBalanceStatus.BALANCED
        )

        return HealthSnapshot(
            composite_score=score,
            risk_level=level,
            critical_count=critical_count,
            high_count=high_count,
            drift_count=drift_count,
            significant_drift_count=significant_count,
            unresolved_anomaly_count=len(open_events),
            highest_open_severity=highest_open,
            unknown_count=len(metrics) - len(known),
            recent_anomaly_count=len(recent),
            auto_resolved_count=sum(1 for e in recent if e.auto_resolved),
            tb_status=tb_status,
            cycle=cycle,
            generated_at=generated_at,
        )
