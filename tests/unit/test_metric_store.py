"""
Unit tests for metric schema and the Metric Store.
"""

import pytest
from datetime import datetime, timedelta, timezone
from pydantic import ValidationError

from riskwatch.core.exceptions import NotFoundError
from riskwatch.metrics.schema import (
    Metric,
    MetricCategory,
    MetricDefinition,
    Observation,
    Polarity,
)
from riskwatch.metrics.store import MetricStore


T0 = datetime(2025, 2, 7, 10, 0, tzinfo=timezone.utc)


def _metric(metric_id: str, category: MetricCategory = MetricCategory.PERFORMANCE, **overrides) -> Metric:
    data = {
        "id": metric_id,
        "name": metric_id.replace("_", " ").title(),
        "category": category,
        "threshold": 100.0,
        "polarity": Polarity.HIGHER_IS_WORSE,
    }
    data.update(overrides)
    return Metric(**data)


class TestSchema:
    """Test validation of definitions and observations."""

    def test_definition_requires_polarity(self):
        """Polarity is never defaulted."""
        with pytest.raises(ValidationError):
            MetricDefinition(id="m", name="M", category="performance", threshold=1.0)

    def test_definition_rejects_non_positive_threshold(self):
        with pytest.raises(ValidationError):
            MetricDefinition(
                id="m", name="M", category="performance", threshold=0, polarity="higher_is_worse"
            )

    def test_observation_rejects_non_finite_value(self):
        with pytest.raises(ValidationError):
            Observation(id="m", value=float("inf"))

    def test_observation_naive_timestamp_is_utc(self):
        obs = Observation(id="m", value=1.0, timestamp=datetime(2025, 2, 7, 10, 0))

        assert obs.timestamp.tzinfo is not None
        assert obs.timestamp == T0

    def test_metric_from_definition(self):
        definition = MetricDefinition(
            id="tb_imbalance",
            name="TB Imbalance",
            category="financial",
            threshold=100,
            polarity="higher_is_worse",
            integrity_critical=True,
            baseline=5.0,
        )

        metric = Metric.from_definition(definition)

        assert metric.integrity_critical is True
        assert metric.baseline == 5.0
        assert metric.current_value is None
        assert not metric.is_observed


class TestMetricStore:
    """Test store lookups, observations and baselines."""

    def test_list_preserves_insertion_order_and_filters(self):
        store = MetricStore()
        store.upsert(_metric("latency"))
        store.upsert(_metric("balance", MetricCategory.FINANCIAL))
        store.upsert(_metric("errors"))

        assert [m.id for m in store.list()] == ["latency", "balance", "errors"]
        assert [m.id for m in store.list(MetricCategory.FINANCIAL)] == ["balance"]
        assert store.list(MetricCategory.SECURITY) == []

    def test_upsert_replaces_in_place(self):
        store = MetricStore()
        store.upsert(_metric("a"))
        store.upsert(_metric("b"))
        store.upsert(_metric("a", threshold=50.0))

        assert [m.id for m in store.list()] == ["a", "b"]
        assert store.get("a").threshold == 50.0

    def test_get_unknown_raises(self):
        with pytest.raises(NotFoundError, match="nope"):
            MetricStore().get("nope")

    def test_first_observation_seeds_baseline(self):
        store = MetricStore()
        store.upsert(_metric("latency"))

        metric = store.record_observation(Observation(id="latency", value=120.0, timestamp=T0))

        assert metric.current_value == 120.0
        assert metric.baseline == 120.0
        assert metric.last_observed_at == T0

    def test_later_observations_keep_baseline(self):
        store = MetricStore()
        store.upsert(_metric("latency", baseline=100.0))

        store.record_observation(Observation(id="latency", value=130.0, timestamp=T0))
        metric = store.record_observation(
            Observation(id="latency", value=145.0, timestamp=T0 + timedelta(minutes=1))
        )

        assert metric.current_value == 145.0
        assert metric.baseline == 100.0

    def test_stored_metrics_are_not_mutated(self):
        store = MetricStore()
        store.upsert(_metric("latency"))
        before = store.get("latency")

        store.record_observation(Observation(id="latency", value=120.0, timestamp=T0))

        assert before.current_value is None
        assert store.get("latency").current_value == 120.0

    def test_malformed_then_valid_observation(self):
        store = MetricStore()
        store.upsert(_metric("latency"))
        store.record_observation(Observation(id="latency", value=120.0, timestamp=T0))

        malformed = store.mark_malformed("latency", "value: not a number")
        assert not malformed.is_observed
        assert malformed.current_value == 120.0

        recovered = store.record_observation(
            Observation(id="latency", value=125.0, timestamp=T0 + timedelta(minutes=1))
        )
        assert recovered.is_observed
        assert recovered.observation_error is None

    def test_reset_baseline_copies_current_value(self):
        store = MetricStore()
        store.upsert(_metric("latency", baseline=100.0))
        store.record_observation(Observation(id="latency", value=145.0, timestamp=T0))

        metric = store.reset_baseline("latency")

        assert metric.baseline == 145.0
        assert store.get("latency").baseline == 145.0

    def test_reset_baseline_without_observation_is_noop(self):
        store = MetricStore()
        store.upsert(_metric("latency", baseline=100.0))

        metric = store.reset_baseline("latency")

        assert metric.baseline == 100.0

    def test_reset_baseline_after_malformed_observation_is_noop(self):
        store = MetricStore()
        store.upsert(_metric("latency", baseline=100.0))
        store.record_observation(Observation(id="latency", value=145.0, timestamp=T0))
        store.mark_malformed("latency", "value: not a number")

        metric = store.reset_baseline("latency")

        assert metric.baseline == 100.0
        assert store.get("latency").baseline == 100.0

    def test_reset_baseline_unknown_raises(self):
        with pytest.raises(NotFoundError):
            MetricStore().reset_baseline("nope")
