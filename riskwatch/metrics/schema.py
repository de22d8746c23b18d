"""
Canonical metric schema for the risk & drift engine.

Static configuration arrives as MetricDefinition records from the definition
registry; live values arrive as Observation records from the ingestion feed.
The Metric Store merges both into Metric objects, which are the only input
the classifiers and scorers ever see.

Design rationale:
- Polarity is required on every definition so ratio direction is never guessed
- All timestamps in UTC for consistency
- current_value/baseline are optional until the first observation arrives
"""

from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field, field_validator


class MetricCategory(str, Enum):
    """Domains a metric can belong to."""

    PERFORMANCE = "performance"
    FINANCIAL = "financial"
    SECURITY = "security"
    COMPLIANCE = "compliance"


class Polarity(str, Enum):
    """
    Which direction of change is bad for a metric.

    Error rate and latency are HIGHER_IS_WORSE; compliance score and
    reconciliation rate are HIGHER_IS_BETTER.
    """

    HIGHER_IS_WORSE = "higher_is_worse"
    HIGHER_IS_BETTER = "higher_is_better"


class MetricDefinition(BaseModel):
    """
    Static definition of a monitored metric.

    Attributes:
        id: Stable metric identifier (e.g. "error_rate")
        name: Human readable name
        category: Metric domain
        threshold: Value at which the metric becomes critical (must be > 0)
        polarity: Direction in which the metric gets worse (required)
        integrity_critical: True for balance/reconciliation metrics whose
            anomalies affect financial-statement integrity
        unit: Display unit
        baseline: Optional initial baseline; seeded from the first observation
            when omitted
        window_label: Label of the baseline reference window (engine default
            when omitted)
    """

    id: str = Field(..., min_length=1, max_length=128)
    name: str = Field(..., min_length=1)
    category: MetricCategory
    threshold: float = Field(..., gt=0.0, allow_inf_nan=False)
    polarity: Polarity
    integrity_critical: bool = False
    unit: str = ""
    baseline: Optional[float] = Field(None, allow_inf_nan=False)
    window_label: Optional[str] = Field(None, min_length=1)


class Metric(BaseModel):
    """
    Current state of a monitored metric.

    Identity is ``id``. ``observation_error`` is set when the most recent
    observation could not be used; the classifier then reports the metric as
    unknown until a valid observation replaces it.
    """

    id: str = Field(..., min_length=1, max_length=128)
    name: str
    category: MetricCategory
    threshold: float = Field(..., gt=0.0)
    polarity: Polarity
    integrity_critical: bool = False
    unit: str = ""
    current_value: Optional[float] = None
    baseline: Optional[float] = None
    window_label: Optional[str] = None
    last_observed_at: Optional[datetime] = None
    observation_error: Optional[str] = None

    @classmethod
    def from_definition(cls, definition: MetricDefinition) -> "Metric":
        return cls(
            id=definition.id,
            name=definition.name,
            category=definition.category,
            threshold=definition.threshold,
            polarity=definition.polarity,
            integrity_critical=definition.integrity_critical,
            unit=definition.unit,
            baseline=definition.baseline,
            window_label=definition.window_label,
        )

    @property
    def is_observed(self) -> bool:
        return self.current_value is not None and self.observation_error is None


class Observation(BaseModel):
    """
    Raw observation from the metric-ingestion feed.

    Non-finite values are rejected at validation time; naive timestamps are
    assumed to be UTC.
    """

    id: str = Field(..., min_length=1)
    value: float = Field(..., allow_inf_nan=False)
    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    @field_validator("timestamp")
    @classmethod
    def _ensure_utc(cls, value: datetime) -> datetime:
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value.astimezone(timezone.utc)
