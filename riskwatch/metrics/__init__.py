"""
Metrics module: metric definitions, the Metric Store, and observation ingestion.

    Definition registry (JSON / dicts) ──► MetricStore ◄── Observation feed
                                              │
                                              ▼
                                   Risk engine (riskwatch.risk)
"""

from riskwatch.metrics.ingestion import (
    CSVObservationSource,
    IngestionResult,
    JSONObservationSource,
    ParsedRow,
    parse_observation,
    read_observations,
)
from riskwatch.metrics.registry import DefinitionRegistry
from riskwatch.metrics.schema import (
    Metric,
    MetricCategory,
    MetricDefinition,
    Observation,
    Polarity,
)
from riskwatch.metrics.store import MetricStore

__all__ = [
    # Schema
    "Metric",
    "MetricCategory",
    "MetricDefinition",
    "Observation",
    "Polarity",

    # Store and registry
    "MetricStore",
    "DefinitionRegistry",

    # Ingestion
    "read_observations",
    "parse_observation",
    "ParsedRow",
    "JSONObservationSource",
    "CSVObservationSource",
    "IngestionResult",
]
