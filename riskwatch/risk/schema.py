"""
Schema definitions for risk classification, drift, anomalies and snapshots.

All outputs are deterministic and explainable: a ClassifiedMetric carries the
ratio it was classified from, a DriftRecord carries both reference values,
and every AnomalyEvent names the trigger that created it.
"""

from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import FrozenSet, Optional
from uuid import uuid4

from pydantic import BaseModel, ConfigDict, Field, field_validator

from riskwatch.metrics.schema import Metric, MetricCategory


class Status(str, Enum):
    """Health status of a metric."""

    HEALTHY = "healthy"
    DEGRADED = "degraded"
    CRITICAL = "critical"
    UNKNOWN = "unknown"


class Severity(str, Enum):
    """Severity levels shared by metrics and anomalies."""

    NONE = "none"
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


class Trend(str, Enum):
    UP = "up"
    DOWN = "down"
    STABLE = "stable"


class DriftDirection(str, Enum):
    UP = "up"
    DOWN = "down"


class RiskLevel(str, Enum):
    """Three-band label for the composite score."""

    LOW = "LOW"
    ELEVATED = "ELEVATED"
    CRITICAL = "CRITICAL"


class TrialBalanceStatus(str, Enum):
    BALANCED = "BALANCED"
    IMBALANCED = "IMBALANCED"


class AnomalyTrigger(str, Enum):
    """Rule that created an anomaly."""

    CRITICAL_STATUS = "critical_status"
    SIGNIFICANT_DRIFT = "significant_drift"
    MODERATE_DRIFT = "moderate_drift"
    EXTERNAL_SIGNAL = "external_signal"


class Resolution(str, Enum):
    ACKNOWLEDGED = "acknowledged"
    CONDITION_CLEARED = "condition_cleared"


_SEVERITY_ORDER = [
    Severity.NONE,
    Severity.LOW,
    Severity.MEDIUM,
    Severity.HIGH,
    Severity.CRITICAL,
]


def severity_rank(severity: Severity) -> int:
    return _SEVERITY_ORDER.index(severity)


def overall_severity(*severities: Severity) -> Severity:
    """
    Return the highest severity among inputs (NONE when empty).
    """
    if not severities:
        return Severity.NONE
    return max(severities, key=severity_rank)


class ClassifiedMetric(Metric):
    """
    Metric plus the result of one classification pass.

    Fields:
    - status/severity: polarity-adjusted classification
    - trend: direction of change versus the preceding evaluation cycle
    - ratio: polarity-adjusted value/threshold ratio (None when unknown)
    - previous_value: value seen by the preceding cycle, if any
    """

    status: Status
    severity: Severity
    trend: Trend = Trend.STABLE
    ratio: Optional[float] = None
    previous_value: Optional[float] = None


class DriftRecord(BaseModel):
    """
    Drift of a metric from its recorded baseline.

    Fields:
    - drift_percent: signed percentage, (current - baseline) / |baseline| * 100
    - direction: up for drift_percent >= 0, down otherwise
    - drifting: |drift_percent| above the drifting threshold
    - significant: |drift_percent| above the significant threshold
    """

    metric_id: str
    metric_name: str
    category: MetricCategory
    baseline: float
    current: float
    drift_percent: float
    direction: DriftDirection
    window_label: str
    drifting: bool = False
    significant: bool = False


class AnomalyEvent(BaseModel):
    """
    Structured anomaly record.

    Frozen once created; resolving an anomaly stores an updated copy in the
    history in place of the original.

    Fields:
    - id: unique identifier
    - timestamp: detection time
    - category: domain of the triggering metric or signal
    - severity: severity assigned by the triggering rule
    - affected_systems: systems impacted (metric id for metric-driven events)
    - auto_resolved: True once acknowledged or the condition cleared
    - financial_integrity_impact: trial-balance (TB) impact flag
    - metric_id: triggering metric, None for unattributed external signals
    - trigger: rule that created the event
    - resolution/resolved_at: how and when the event was resolved
    """

    model_config = ConfigDict(frozen=True)

    id: str = Field(default_factory=lambda: str(uuid4()))
    timestamp: datetime
    category: MetricCategory
    severity: Severity
    title: str
    description: str
    affected_systems: FrozenSet[str] = frozenset()
    auto_resolved: bool = False
    financial_integrity_impact: bool = False
    metric_id: Optional[str] = None
    trigger: AnomalyTrigger
    resolution: Optional[Resolution] = None
    resolved_at: Optional[datetime] = None

    @property
    def is_open(self) -> bool:
        return not self.auto_resolved


class ExternalSignal(BaseModel):
    """
    Anomaly signal ingested directly from a collaborator, e.g. a
    reconciliation mismatch reported by the ledger.
    """

    category: MetricCategory
    severity: Severity
    title: str = Field(..., min_length=1)
    description: str = ""
    affected_systems: FrozenSet[str] = frozenset()
    metric_id: Optional[str] = None
    timestamp: Optional[datetime] = None

    @field_validator("timestamp")
    @classmethod
    def _ensure_utc(cls, value: Optional[datetime]) -> Optional[datetime]:
        if value is None:
            return value
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value.astimezone(timezone.utc)


class HealthSnapshot(BaseModel):
    """
    Composite health/risk snapshot published by an evaluation cycle.

    Superseded, never mutated, by the next cycle.
    """

    model_config = ConfigDict(frozen=True)

    composite_score: int = Field(ge=0, le=100)
    risk_level: RiskLevel
    critical_count: int = Field(0, ge=0)
    high_count: int = Field(0, ge=0)
    drift_count: int = Field(0, ge=0)
    significant_drift_count: int = Field(0, ge=0)
    unresolved_anomaly_count: int = Field(0, ge=0)
    highest_open_severity: Severity = Severity.NONE
    unknown_count: int = Field(0, ge=0)
    recent_anomaly_count: int = Field(0, ge=0)
    auto_resolved_count: int = Field(0, ge=0)
    tb_status: TrialBalanceStatus = TrialBalanceStatus.BALANCED
    cycle: int = Field(0, ge=0)
    generated_at: datetime
