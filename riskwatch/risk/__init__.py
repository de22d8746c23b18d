"""
Risk module: status classification, drift detection, anomaly classification,
composite scoring and scheduled re-evaluation.
"""

from .anomalies import AnomalyClassifier, AnomalyHistory, has_integrity_impact
from .classifier import StatusClassifier
from .drift import DriftDetector, drift_percent
from .engine import CycleResult, RiskEngine, coerce_category
from .scheduler import RefreshScheduler, SchedulerState
from .schema import (
	AnomalyEvent,
	AnomalyTrigger,
	ClassifiedMetric,
	DriftDirection,
	DriftRecord,
	ExternalSignal,
	HealthSnapshot,
	Resolution,
	RiskLevel,
	Severity,
	Status,
	Trend,
	TrialBalanceStatus,
	overall_severity,
)
from .scoring import CompositeScorer, band_for

__all__ = [
	"RiskEngine",
	"CycleResult",
	"coerce_category",
	"RefreshScheduler",
	"SchedulerState",
	"StatusClassifier",
	"DriftDetector",
	"drift_percent",
	"AnomalyClassifier",
	"AnomalyHistory",
	"has_integrity_impact",
	"CompositeScorer",
	"band_for",
	"AnomalyEvent",
	"AnomalyTrigger",
	"ClassifiedMetric",
	"DriftDirection",
	"DriftRecord",
	"ExternalSignal",
	"HealthSnapshot",
	"Resolution",
	"RiskLevel",
	"Severity",
	"Status",
	"Trend",
	"TrialBalanceStatus",
	"overall_severity",
]
