"""
In-memory Metric Store.

Holds the current observed value, threshold and baseline of every monitored
metric. Baselines only move through ``reset_baseline`` (or are seeded by the
first observation of a metric defined without one), which keeps drift
measured against a long-lived reference instead of the previous reading.
"""

from __future__ import annotations

import logging
from typing import Dict, Iterator, List, Optional

from riskwatch.core.exceptions import NotFoundError

from .schema import Metric, MetricCategory, Observation

logger = logging.getLogger(__name__)


class MetricStore:
    """
    Ordered store of Metric objects keyed by id.

    Stored objects are replaced, never mutated in place, so a Metric handed
    out by ``get`` or ``list`` is a stable view of the store at that moment.
    """

    def __init__(self) -> None:
        self._metrics: Dict[str, Metric] = {}

    def __len__(self) -> int:
        return len(self._metrics)

    def __contains__(self, metric_id: object) -> bool:
        return metric_id in self._metrics

    def __iter__(self) -> Iterator[Metric]:
        return iter(list(self._metrics.values()))

    def upsert(self, metric: Metric) -> Metric:
        """
        Insert a new metric or replace an existing one.

        Replacing keeps the original insertion position.
        """
        self._metrics[metric.id] = metric
        return metric

    def get(self, metric_id: str) -> Metric:
        metric = self._metrics.get(metric_id)
        if metric is None:
            raise NotFoundError("metric", metric_id)
        return metric

    def list(self, category: Optional[MetricCategory] = None) -> List[Metric]:
        """
        List metrics in insertion order.

        Args:
            category: Optional category filter; None returns all metrics
        """
        metrics = list(self._metrics.values())
        if category is None:
            return metrics
        return [m for m in metrics if m.category == category]

    def record_observation(self, observation: Observation) -> Metric:
        """
        Apply a valid observation to its metric.

        Clears any previous malformed-observation marker and seeds the
        baseline when the metric has none yet.
        """
        metric = self.get(observation.id)
        update = {
            "current_value": observation.value,
            "last_observed_at": observation.timestamp,
            "observation_error": None,
        }
        if metric.baseline is None:
            update["baseline"] = observation.value
            logger.info("Seeded baseline for %s at %s", metric.id, observation.value)
        updated = metric.model_copy(update=update)
        self._metrics[metric.id] = updated
        return updated

    def mark_malformed(self, metric_id: str, reason: str) -> Metric:
        metric = self.get(metric_id)
        updated = metric.model_copy(update={"observation_error": reason})
        self._metrics[metric_id] = updated
        logger.warning("Malformed observation for %s: %s", metric_id, reason)
        return updated

    def reset_baseline(self, metric_id: str) -> Metric:
        """
        Copy a metric's current value into its baseline.

        A metric without a usable current value (never observed, or whose
        latest observation was malformed) keeps its baseline unchanged.
        """
        metric = self.get(metric_id)
        if not metric.is_observed:
            logger.warning("Baseline reset skipped for %s: no valid current value", metric_id)
            return metric

        updated = metric.model_copy(update={"baseline": metric.current_value})
        self._metrics[metric_id] = updated
        logger.info(
            "Baseline reset for %s: %s -> %s", metric_id, metric.baseline, updated.baseline
        )
        return updated
