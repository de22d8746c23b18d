"""
Unit tests for anomaly classification and history.
"""

import pytest
from datetime import datetime, timedelta, timezone

from riskwatch.core.config import AnomalyRulesConfig, ClassificationConfig, DriftConfig
from riskwatch.core.exceptions import NotFoundError
from riskwatch.metrics.schema import Metric
from riskwatch.risk.anomalies import AnomalyClassifier, AnomalyHistory, has_integrity_impact
from riskwatch.risk.classifier import StatusClassifier
from riskwatch.risk.drift import DriftDetector
from riskwatch.risk.schema import (
    AnomalyEvent,
    AnomalyTrigger,
    ExternalSignal,
    Resolution,
    Severity,
)


T0 = datetime(2025, 2, 7, 10, 0, tzinfo=timezone.utc)

STATUS = StatusClassifier(ClassificationConfig())
DRIFT = DriftDetector(DriftConfig())


def _metric(value, baseline=None, **overrides) -> Metric:
    data = {
        "id": "error_rate",
        "name": "Error Rate",
        "category": "performance",
        "threshold": 100.0,
        "polarity": "higher_is_worse",
        "current_value": value,
        "baseline": baseline if baseline is not None else value,
    }
    data.update(overrides)
    return Metric(**data)


def _cycle(classifier: AnomalyClassifier, metric: Metric, now: datetime):
    classified = STATUS.classify(metric)
    record = DRIFT.compute(metric)
    drift = {metric.id: record} if record else {}
    return classifier.evaluate([classified], drift, now)


@pytest.fixture
def history() -> AnomalyHistory:
    return AnomalyHistory()


@pytest.fixture
def classifier(history) -> AnomalyClassifier:
    return AnomalyClassifier(AnomalyRulesConfig(clear_cycles=2), history)


class TestMetricAnomalies:
    """Test anomalies raised from classification and drift."""

    def test_crossing_into_critical_raises_one_event(self, classifier, history):
        events = _cycle(classifier, _metric(120.0), T0)

        assert len(events) == 1
        event = events[0]
        assert event.severity == Severity.CRITICAL
        assert event.trigger == AnomalyTrigger.CRITICAL_STATUS
        assert event.metric_id == "error_rate"
        assert event.affected_systems == frozenset({"error_rate"})
        assert event.is_open
        assert len(history) == 1

    def test_staying_critical_does_not_duplicate(self, classifier, history):
        _cycle(classifier, _metric(120.0), T0)
        events = _cycle(classifier, _metric(125.0, baseline=120.0), T0 + timedelta(seconds=30))

        assert events == []
        assert len(history) == 1

    def test_significant_drift_is_high(self, classifier):
        events = _cycle(classifier, _metric(60.0, baseline=40.0), T0)

        assert [(e.trigger, e.severity) for e in events] == [
            (AnomalyTrigger.SIGNIFICANT_DRIFT, Severity.HIGH)
        ]
        assert "+50.0%" in events[0].description
        assert "7d" in events[0].description

    def test_moderate_drift_is_medium(self, classifier):
        events = _cycle(classifier, _metric(45.0, baseline=40.0), T0)

        assert [(e.trigger, e.severity) for e in events] == [
            (AnomalyTrigger.MODERATE_DRIFT, Severity.MEDIUM)
        ]

    def test_auto_resolves_after_clear_cycles(self, classifier, history):
        (event,) = _cycle(classifier, _metric(120.0), T0)

        _cycle(classifier, _metric(50.0), T0 + timedelta(seconds=30))
        assert history.get(event.id).is_open

        _cycle(classifier, _metric(50.0), T0 + timedelta(seconds=60))
        resolved = history.get(event.id)
        assert resolved.auto_resolved is True
        assert resolved.resolution == Resolution.CONDITION_CLEARED
        assert resolved.resolved_at == T0 + timedelta(seconds=60)

    def test_relapse_resets_clear_streak(self, classifier, history):
        (event,) = _cycle(classifier, _metric(120.0), T0)

        _cycle(classifier, _metric(50.0), T0 + timedelta(seconds=30))
        _cycle(classifier, _metric(120.0), T0 + timedelta(seconds=60))
        _cycle(classifier, _metric(50.0), T0 + timedelta(seconds=90))

        assert history.get(event.id).is_open
        assert len(history) == 1

    def test_unknown_metric_is_skipped(self, classifier, history):
        events = _cycle(classifier, _metric(None, baseline=50.0), T0)

        assert events == []
        assert len(history) == 0

    def test_integrity_impact_only_for_tagged_financial_metrics(self, classifier):
        tagged = _metric(120.0, id="tb_imbalance", category="financial", integrity_critical=True)
        untagged = _metric(120.0, id="revenue_var", category="financial")

        (tagged_event,) = _cycle(classifier, tagged, T0)
        (untagged_event,) = _cycle(classifier, untagged, T0)

        assert tagged_event.financial_integrity_impact is True
        assert untagged_event.financial_integrity_impact is False
        assert has_integrity_impact(None) is False


class TestAcknowledgement:
    """Test explicit resolution of anomalies."""

    def test_acknowledge_resolves(self, classifier):
        (event,) = _cycle(classifier, _metric(120.0), T0)

        resolved = classifier.acknowledge(event.id, T0 + timedelta(minutes=1))

        assert resolved.auto_resolved is True
        assert resolved.resolution == Resolution.ACKNOWLEDGED
        assert resolved.id == event.id

    def test_acknowledged_condition_stays_latched_until_cleared(self, classifier, history):
        (event,) = _cycle(classifier, _metric(120.0), T0)
        classifier.acknowledge(event.id, T0)

        assert _cycle(classifier, _metric(120.0), T0 + timedelta(seconds=30)) == []

        _cycle(classifier, _metric(50.0), T0 + timedelta(seconds=60))
        _cycle(classifier, _metric(50.0), T0 + timedelta(seconds=90))
        events = _cycle(classifier, _metric(120.0), T0 + timedelta(seconds=120))

        assert len(events) == 1
        assert events[0].id != event.id
        assert len(history) == 2

    def test_acknowledge_twice_is_idempotent(self, classifier):
        (event,) = _cycle(classifier, _metric(120.0), T0)

        first = classifier.acknowledge(event.id, T0)
        second = classifier.acknowledge(event.id, T0 + timedelta(minutes=5))

        assert first == second

    def test_acknowledge_unknown_raises(self, classifier):
        with pytest.raises(NotFoundError):
            classifier.acknowledge("missing", T0)


class TestExternalSignals:
    """Test anomalies ingested from collaborators."""

    def test_signal_against_integrity_metric(self, classifier):
        metric = _metric(5.0, id="tb_imbalance", category="financial", integrity_critical=True)
        signal = ExternalSignal(
            category="financial",
            severity=Severity.HIGH,
            title="Reconciliation mismatch",
            affected_systems={"ledger"},
        )

        event = classifier.ingest_signal(signal, metric, T0)

        assert event.trigger == AnomalyTrigger.EXTERNAL_SIGNAL
        assert event.severity == Severity.HIGH
        assert event.financial_integrity_impact is True
        assert event.affected_systems == frozenset({"ledger", "tb_imbalance"})
        assert event.timestamp == T0

    def test_naive_signal_timestamp_is_utc(self):
        signal = ExternalSignal(
            category="security",
            severity=Severity.LOW,
            title="Port scan",
            timestamp=datetime(2025, 2, 7, 10, 0),
        )

        assert signal.timestamp == T0
        assert signal.timestamp.tzinfo is not None

    def test_signal_is_not_auto_resolved_by_cycles(self, classifier, history):
        signal = ExternalSignal(category="security", severity=Severity.MEDIUM, title="Port scan")
        event = classifier.ingest_signal(signal, None, T0)

        for i in range(3):
            _cycle(classifier, _metric(10.0), T0 + timedelta(seconds=30 * i))

        assert history.get(event.id).is_open


class TestAnomalyHistory:
    """Test ordering and lookup."""

    def _event(self, ts: datetime, title: str) -> AnomalyEvent:
        return AnomalyEvent(
            timestamp=ts,
            category="performance",
            severity=Severity.LOW,
            title=title,
            description="",
            trigger=AnomalyTrigger.EXTERNAL_SIGNAL,
        )

    def test_newest_first(self, history):
        history.append(self._event(T0, "a"))
        history.append(self._event(T0 + timedelta(minutes=2), "b"))
        history.append(self._event(T0 + timedelta(minutes=1), "c"))

        assert [e.title for e in history.list()] == ["b", "c", "a"]

    def test_since_filter_is_inclusive(self, history):
        history.append(self._event(T0, "a"))
        history.append(self._event(T0 + timedelta(minutes=1), "b"))

        assert [e.title for e in history.list(since=T0 + timedelta(minutes=1))] == ["b"]
        assert len(history.list(since=T0)) == 2

    def test_resolution_keeps_events(self, history):
        event = self._event(T0, "a")
        history.append(event)

        history.resolve(event.id, Resolution.ACKNOWLEDGED, T0)

        assert len(history) == 1
        assert history.open_events() == []

    def test_duplicate_append_rejected(self, history):
        event = self._event(T0, "a")
        history.append(event)

        with pytest.raises(ValueError):
            history.append(event)

    def test_get_unknown_raises(self, history):
        with pytest.raises(NotFoundError):
            history.get("missing")
