"""
Anomaly classification and history.

Turns threshold crossings, baseline drift and external signals into
AnomalyEvent records, and resolves them again once the triggering condition
has stayed clear for a number of consecutive evaluation cycles.

Each (metric, trigger) pair is tracked as a condition:
- a condition fires at most one open event at a time
- an event auto-resolves after ``clear_cycles`` consecutive clean cycles
- an acknowledged event resolves immediately, and its condition stays
  latched (no new event) until it has cleared
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Dict, Iterable, List, Mapping, Optional, Tuple

from riskwatch.core.config import AnomalyRulesConfig
from riskwatch.core.exceptions import NotFoundError
from riskwatch.metrics.schema import Metric, MetricCategory

from .schema import (
    AnomalyEvent,
    AnomalyTrigger,
    ClassifiedMetric,
    DriftRecord,
    ExternalSignal,
    Resolution,
    Severity,
    Status,
)

logger = logging.getLogger(__name__)

ConditionKey = Tuple[str, AnomalyTrigger]


def has_integrity_impact(metric: Optional[Metric]) -> bool:
    """
    True iff the metric is financial and tagged integrity_critical.

    Only balance/reconciliation metrics carry the tag; other financial
    metrics never affect trial-balance integrity.
    """
    if metric is None:
        return False
    return metric.category == MetricCategory.FINANCIAL and metric.integrity_critical


class AnomalyHistory:
    """
    Append-only anomaly history.

    Events are never removed. Resolving an event swaps in its resolved copy at
    the same position.
    """

    def __init__(self) -> None:
        self._events: List[AnomalyEvent] = []
        self._positions: Dict[str, int] = {}

    def __len__(self) -> int:
        return len(self._events)

    def append(self, event: AnomalyEvent) -> None:
        if event.id in self._positions:
            raise ValueError(f"Anomaly {event.id} already recorded")
        self._positions[event.id] = len(self._events)
        self._events.append(event)

    def get(self, anomaly_id: str) -> AnomalyEvent:
        position = self._positions.get(anomaly_id)
        if position is None:
            raise NotFoundError("anomaly", anomaly_id)
        return self._events[position]

    def resolve(self, anomaly_id: str, resolution: Resolution, at: datetime) -> AnomalyEvent:
        event = self.get(anomaly_id)
        if event.auto_resolved:
            return event
        resolved = event.model_copy(
            update={"auto_resolved": True, "resolution": resolution, "resolved_at": at}
        )
        self._events[self._positions[anomaly_id]] = resolved
        return resolved

    def list(self, since: Optional[datetime] = None) -> List[AnomalyEvent]:
        """
        Events newest first, optionally limited to timestamps >= since.

        Events sharing a timestamp keep reverse insertion order.
        """
        events = sorted(reversed(self._events), key=lambda e: e.timestamp, reverse=True)
        if since is None:
            return events
        return [e for e in events if e.timestamp >= since]

    def open_events(self, since: Optional[datetime] = None) -> List[AnomalyEvent]:
        return [e for e in self.list(since) if e.is_open]


@dataclass
class ConditionState:
    """Tracking state of one (metric, trigger) condition."""

    anomaly_id: Optional[str] = None
    clear_streak: int = 0
    latched: bool = False

    @property
    def idle(self) -> bool:
        return self.anomaly_id is None and not self.latched


class AnomalyClassifier:
    """
    Rule-based anomaly classifier.

    Severity mapping:
    - metric newly critical           -> critical
    - significant drift               -> high
    - drifting but not significant    -> medium
    - external signal                 -> severity carried by the signal
    """

    def __init__(self, rules: AnomalyRulesConfig, history: AnomalyHistory) -> None:
        self.rules = rules
        self.history = history
        self._conditions: Dict[ConditionKey, ConditionState] = {}

    def evaluate(
        self,
        classified: Iterable[ClassifiedMetric],
        drift_by_metric: Mapping[str, DriftRecord],
        now: datetime,
    ) -> List[AnomalyEvent]:
        """
        Apply one evaluation cycle and return the events it created.

        Metrics with unknown status are skipped entirely: their conditions
        neither fire nor count towards clearing.
        """
        created: List[AnomalyEvent] = []

        for metric in classified:
            if metric.status == Status.UNKNOWN:
                continue

            drift = drift_by_metric.get(metric.id)
            conditions = {
                AnomalyTrigger.CRITICAL_STATUS: metric.status == Status.CRITICAL,
                AnomalyTrigger.SIGNIFICANT_DRIFT: bool(drift and drift.significant),
                AnomalyTrigger.MODERATE_DRIFT: bool(
                    drift and drift.drifting and not drift.significant
                ),
            }

            for trigger, active in conditions.items():
                event = self._step((metric.id, trigger), active, metric, drift, now)
                if event is not None:
                    created.append(event)

        return created

    def _step(
        self,
        key: ConditionKey,
        active: bool,
        metric: ClassifiedMetric,
        drift: Optional[DriftRecord],
        now: datetime,
    ) -> Optional[AnomalyEvent]:
        state = self._conditions.get(key)

        if active:
            if state is None:
                state = self._conditions[key] = ConditionState()
            state.clear_streak = 0
            if not state.idle:
                return None
            event = self._metric_event(key[1], metric, drift, now)
            self.history.append(event)
            state.anomaly_id = event.id
            logger.info(
                "Anomaly %s raised for %s (%s, %s)",
                event.id, metric.id, key[1].value, event.severity.value,
            )
            return event

        if state is None:
            return None

        state.clear_streak += 1
        if state.clear_streak >= self.rules.clear_cycles:
            if state.anomaly_id is not None:
                self.history.resolve(state.anomaly_id, Resolution.CONDITION_CLEARED, now)
                logger.info(
                    "Anomaly %s auto-resolved after %d clear cycles",
                    state.anomaly_id, state.clear_streak,
                )
            del self._conditions[key]
        return None

    def _metric_event(
        self,
        trigger: AnomalyTrigger,
        metric: ClassifiedMetric,
        drift: Optional[DriftRecord],
        now: datetime,
    ) -> AnomalyEvent:
        unit = metric.unit or ""
        if trigger == AnomalyTrigger.CRITICAL_STATUS:
            severity = Severity.CRITICAL
            title = f"{metric.name} critical"
            description = (
                f"{metric.name} at {metric.current_value:g}{unit} breached threshold "
                f"{metric.threshold:g}{unit} ({metric.polarity.value})"
            )
        else:
            severity = (
                Severity.HIGH if trigger == AnomalyTrigger.SIGNIFICANT_DRIFT else Severity.MEDIUM
            )
            title = f"{metric.name} drift"
            description = (
                f"{metric.name} drifted {drift.drift_percent:+.1f}% from baseline "
                f"{drift.baseline:g}{unit} to {drift.current:g}{unit} ({drift.window_label} window)"
            )

        return AnomalyEvent(
            timestamp=now,
            category=metric.category,
            severity=severity,
            title=title,
            description=description,
            affected_systems=frozenset({metric.id}),
            financial_integrity_impact=has_integrity_impact(metric),
            metric_id=metric.id,
            trigger=trigger,
        )

    def ingest_signal(
        self, signal: ExternalSignal, metric: Optional[Metric], now: datetime
    ) -> AnomalyEvent:
        """
        Record an external signal as an anomaly.

        Signal anomalies have no condition to clear; they only resolve through
        acknowledgement.
        """
        affected = set(signal.affected_systems)
        if metric is not None:
            affected.add(metric.id)

        event = AnomalyEvent(
            timestamp=signal.timestamp or now,
            category=signal.category,
            severity=signal.severity,
            title=signal.title,
            description=signal.description,
            affected_systems=frozenset(affected),
            financial_integrity_impact=has_integrity_impact(metric),
            metric_id=metric.id if metric is not None else None,
            trigger=AnomalyTrigger.EXTERNAL_SIGNAL,
        )
        self.history.append(event)
        logger.info("External signal recorded as anomaly %s: %s", event.id, event.title)
        return event

    def acknowledge(self, anomaly_id: str, now: datetime) -> AnomalyEvent:
        """
        Resolve an anomaly by explicit acknowledgement.

        Acknowledging an already resolved anomaly returns it unchanged.
        """
        event = self.history.get(anomaly_id)
        if event.auto_resolved:
            return event

        for state in self._conditions.values():
            if state.anomaly_id == anomaly_id:
                state.anomaly_id = None
                state.latched = True
                break

        resolved = self.history.resolve(anomaly_id, Resolution.ACKNOWLEDGED, now)
        logger.info("Anomaly %s acknowledged", anomaly_id)
        return resolved
