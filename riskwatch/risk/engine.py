"""
Risk evaluation engine.

Wires the Metric Store, Status Classifier, Drift Detector, Anomaly Classifier
and Composite Scorer into one evaluation pipeline:

    observations ──► MetricStore ──► StatusClassifier ──► DriftDetector
                                                              │
             HealthSnapshot ◄── CompositeScorer ◄── AnomalyClassifier

All state lives in the store, the anomaly history and the preceding cycle's
classified metrics. Store/history mutation and evaluation are serialized with
a re-entrant lock, so the engine can be shared between a threaded HTTP
surface and the scheduler's worker thread.
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Iterable, List, Mapping, Optional, Union

from pydantic import ValidationError

from riskwatch.core.config import EngineConfig, config
from riskwatch.core.exceptions import InvalidConfigurationError
from riskwatch.metrics.ingestion import IngestionResult, ParsedRow, parse_observation
from riskwatch.metrics.registry import DefinitionRegistry
from riskwatch.metrics.schema import Metric, MetricCategory, Observation
from riskwatch.metrics.store import MetricStore

from .anomalies import AnomalyClassifier, AnomalyHistory
from .classifier import StatusClassifier
from .drift import DriftDetector
from .schema import (
    AnomalyEvent,
    ClassifiedMetric,
    DriftRecord,
    ExternalSignal,
    HealthSnapshot,
    Status,
)
from .scoring import CompositeScorer

logger = logging.getLogger(__name__)

CategoryFilter = Union[MetricCategory, str, None]


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def coerce_category(category: CategoryFilter) -> Optional[MetricCategory]:
    """
    Normalize a category filter; None and "all" mean no filter.
    """
    if category is None or isinstance(category, MetricCategory):
        return category
    if category.strip().lower() == "all":
        return None
    try:
        return MetricCategory(category.strip().lower())
    except ValueError as exc:
        raise InvalidConfigurationError(f"Unknown metric category: {category}") from exc


@dataclass
class CycleResult:
    """Everything published by one evaluation cycle."""

    snapshot: HealthSnapshot
    classified: List[ClassifiedMetric] = field(default_factory=list)
    drift: List[DriftRecord] = field(default_factory=list)
    new_anomalies: List[AnomalyEvent] = field(default_factory=list)


class RiskEngine:
    """
    Deterministic risk & drift engine for one monitored target.

    Notes:
    - The engine holds no sample data; metrics come from a DefinitionRegistry
      and values from the observation feed.
    - list_classified_metrics/list_drift return what the latest cycle
      published; before the first cycle they return a live preview with
      stable trends.
    """

    def __init__(
        self,
        registry: Optional[DefinitionRegistry] = None,
        settings: Optional[EngineConfig] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ) -> None:
        self.settings = settings or config.engine
        self.store = MetricStore()
        self.history = AnomalyHistory()
        self._clock = clock or _utcnow
        self._lock = threading.RLock()

        self._classifier = StatusClassifier(self.settings.classification)
        self._drift_detector = DriftDetector(self.settings.drift)
        self._anomaly_classifier = AnomalyClassifier(self.settings.anomalies, self.history)
        self._scorer = CompositeScorer(self.settings.scoring, self.settings.anomalies)

        self._previous: Dict[str, ClassifiedMetric] = {}
        self._latest: Optional[CycleResult] = None
        self._cycle = 0

        if registry is not None:
            self.load_definitions(registry)

    @property
    def latest_snapshot(self) -> Optional[HealthSnapshot]:
        latest = self._latest
        return latest.snapshot if latest else None

    @property
    def cycle(self) -> int:
        return self._cycle

    def load_definitions(self, registry: DefinitionRegistry) -> None:
        """
        Register metrics from a definition registry.

        Redefining a known metric updates its static fields and keeps its
        observed value and baseline.
        """
        with self._lock:
            for definition in registry:
                fresh = Metric.from_definition(definition)
                if definition.id in self.store:
                    current = self.store.get(definition.id)
                    fresh = fresh.model_copy(
                        update={
                            "current_value": current.current_value,
                            "baseline": current.baseline if definition.baseline is None else definition.baseline,
                            "last_observed_at": current.last_observed_at,
                            "observation_error": current.observation_error,
                        }
                    )
                self.store.upsert(fresh)
            logger.info("Engine monitoring %d metrics", len(self.store))

    def ingest(self, rows: Iterable[Union[Observation, Mapping[str, Any]]]) -> IngestionResult:
        """
        Apply a batch of observations from the ingestion feed.

        Unknown metric ids are counted and skipped; malformed observations mark
        their metric unknown until a valid value arrives; observations older
        than the metric's latest one are ignored.
        """
        result = IngestionResult()
        with self._lock:
            for raw in rows:
                if isinstance(raw, Observation):
                    row = ParsedRow(metric_id=raw.id, observation=raw)
                elif isinstance(raw, Mapping):
                    row = parse_observation(dict(raw))
                else:
                    row = ParsedRow(metric_id=None, error=f"unsupported row type {type(raw).__name__}")

                if row.metric_id is None or row.metric_id not in self.store:
                    result.unknown += 1
                    if row.metric_id is not None:
                        result.unknown_ids.append(row.metric_id)
                    logger.warning("Observation for unknown metric skipped: %s", row.metric_id)
                    continue

                if row.observation is None:
                    self.store.mark_malformed(row.metric_id, row.error or "invalid observation")
                    result.malformed += 1
                    continue

                metric = self.store.get(row.metric_id)
                if metric.last_observed_at and row.observation.timestamp < metric.last_observed_at:
                    logger.debug(
                        "Out-of-order observation for %s ignored (%s < %s)",
                        metric.id, row.observation.timestamp, metric.last_observed_at,
                    )
                    result.stale += 1
                    continue

                self.store.record_observation(row.observation)
                result.accepted += 1

        logger.info(
            "Ingested observations: accepted=%d malformed=%d unknown=%d stale=%d",
            result.accepted, result.malformed, result.unknown, result.stale,
        )
        return result

    def ingest_signal(self, signal: Union[ExternalSignal, Mapping[str, Any]]) -> AnomalyEvent:
        """
        Record an external anomaly signal (e.g. a reconciliation mismatch).

        Raises:
            InvalidConfigurationError: If the signal payload is malformed
            NotFoundError: If the signal names an unknown metric
        """
        if not isinstance(signal, ExternalSignal):
            try:
                signal = ExternalSignal.model_validate(dict(signal))
            except ValidationError as exc:
                raise InvalidConfigurationError(f"Invalid external signal: {exc}") from exc

        with self._lock:
            metric = self.store.get(signal.metric_id) if signal.metric_id else None
            return self._anomaly_classifier.ingest_signal(signal, metric, self._clock())

    def evaluate(self) -> HealthSnapshot:
        """
        Run one full evaluation cycle and publish a new HealthSnapshot.

        A metric whose classification fails is reported as unknown and left
        out of the composite score; the rest of the cycle continues.
        """
        with self._lock:
            now = self._clock()
            classified, drift = self._classify_all(self._previous)

            drift_by_metric = {record.metric_id: record for record in drift}
            new_events = self._anomaly_classifier.evaluate(classified, drift_by_metric, now)

            self._cycle += 1
            snapshot = self._scorer.score(
                classified,
                self.history.list(),
                drift,
                generated_at=now,
                cycle=self._cycle,
            )

            self._previous = {m.id: m for m in classified}
            self._latest = CycleResult(
                snapshot=snapshot,
                classified=classified,
                drift=drift,
                new_anomalies=new_events,
            )

        logger.info(
            "Cycle %d: score=%d risk=%s critical=%d high=%d drifting=%d open_anomalies=%d new=%d",
            snapshot.cycle,
            snapshot.composite_score,
            snapshot.risk_level.value,
            snapshot.critical_count,
            snapshot.high_count,
            snapshot.drift_count,
            snapshot.unresolved_anomaly_count,
            len(new_events),
        )
        return snapshot

    def _classify_all(self, previous: Mapping[str, ClassifiedMetric]):
        classified: List[ClassifiedMetric] = []
        drift: List[DriftRecord] = []

        for metric in self.store.list():
            before = previous.get(metric.id)
            previous_value = (
                before.current_value if before is not None and before.status != Status.UNKNOWN else None
            )
            try:
                result = self._classifier.classify(metric, previous_value)
                record = self._drift_detector.compute(metric)
            except (ArithmeticError, ValueError) as exc:
                logger.warning("Classification failed for %s: %s", metric.id, exc)
                result = self._classifier.unknown(metric, previous_value)
                record = None

            classified.append(result)
            if record is not None and result.status != Status.UNKNOWN:
                drift.append(record)

        return classified, drift

    def list_classified_metrics(self, category: CategoryFilter = None) -> List[ClassifiedMetric]:
        wanted = coerce_category(category)
        with self._lock:
            if self._latest is not None:
                metrics = list(self._latest.classified)
            else:
                metrics, _ = self._classify_all({})
        if wanted is None:
            return metrics
        return [m for m in metrics if m.category == wanted]

    def list_drift(self, category: CategoryFilter = None) -> List[DriftRecord]:
        wanted = coerce_category(category)
        with self._lock:
            if self._latest is not None:
                records = list(self._latest.drift)
            else:
                _, records = self._classify_all({})
        if wanted is None:
            return records
        return [r for r in records if r.category == wanted]

    def list_anomalies(
        self, since: Optional[datetime] = None, open_only: bool = False
    ) -> List[AnomalyEvent]:
        """
        Anomaly history, newest first.

        Naive ``since`` values are taken as UTC. With ``open_only`` resolved
        events are left out.
        """
        if since is not None and since.tzinfo is None:
            since = since.replace(tzinfo=timezone.utc)
        with self._lock:
            if open_only:
                return self.history.open_events(since)
            return self.history.list(since)

    def last_cycle_anomalies(self) -> List[AnomalyEvent]:
        """Anomalies raised by the most recent evaluation cycle."""
        with self._lock:
            latest = self._latest
            return list(latest.new_anomalies) if latest else []

    def get_metric(self, metric_id: str) -> Metric:
        with self._lock:
            return self.store.get(metric_id)

    def reset_baseline(self, metric_id: str) -> Metric:
        """
        Copy a metric's current value into its baseline.

        Drift against the new baseline shows up from the next cycle on.
        """
        with self._lock:
            return self.store.reset_baseline(metric_id)

    def acknowledge_anomaly(self, anomaly_id: str) -> AnomalyEvent:
        with self._lock:
            return self._anomaly_classifier.acknowledge(anomaly_id, self._clock())

