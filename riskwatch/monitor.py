"""
External interface of the risk & drift engine.

RiskMonitor bundles a RiskEngine with its RefreshScheduler and exposes the
operations a presentation layer needs. View state such as the selected
category tab is passed per call; nothing about the UI lives here.
"""

from __future__ import annotations

import logging
from datetime import datetime
from pathlib import Path
from typing import Any, Callable, Iterable, List, Mapping, Optional, Union

from riskwatch.core.config import EngineConfig, config
from riskwatch.core.exceptions import StaleDataError
from riskwatch.metrics.ingestion import IngestionResult, read_observations
from riskwatch.metrics.registry import DefinitionRegistry
from riskwatch.metrics.schema import Metric, Observation
from riskwatch.risk.engine import CategoryFilter, RiskEngine
from riskwatch.risk.scheduler import RefreshScheduler
from riskwatch.risk.schema import (
    AnomalyEvent,
    ClassifiedMetric,
    DriftRecord,
    ExternalSignal,
    HealthSnapshot,
)

logger = logging.getLogger(__name__)


class RiskMonitor:
    """
    Facade over one engine/scheduler pair.

    Synchronous read operations are safe to call from any thread. The
    coroutine methods, and ``set_auto_refresh`` once started, belong to the
    event loop that runs the scheduler.
    """

    def __init__(
        self,
        registry: DefinitionRegistry,
        settings: Optional[EngineConfig] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ) -> None:
        self.settings = settings or config.engine
        self.engine = RiskEngine(registry, settings=self.settings, clock=clock)
        self.scheduler = RefreshScheduler(self.engine, self.settings.scheduler, clock=clock)

    @classmethod
    def from_file(
        cls, definitions_path: Union[str, Path], settings: Optional[EngineConfig] = None
    ) -> "RiskMonitor":
        return cls(DefinitionRegistry.from_file(definitions_path), settings=settings)

    async def start(self, evaluate_now: bool = True) -> None:
        await self.scheduler.start(evaluate_now=evaluate_now)

    async def stop(self) -> None:
        await self.scheduler.stop()

    async def evaluate(self, timeout: Optional[float] = None) -> HealthSnapshot:
        """
        Evaluate on demand.

        If a cycle is already in flight this call waits for that cycle
        instead of starting another one.

        Raises:
            StaleDataError: On timeout; ``last_snapshot`` holds the last good one
        """
        snapshot = await self.scheduler.trigger(timeout)
        if snapshot is None:
            snapshot = await self.scheduler.join(timeout)
        if snapshot is None:
            raise StaleDataError("No snapshot available", None)
        return snapshot

    def current_snapshot(self) -> HealthSnapshot:
        return self.scheduler.current_snapshot()

    def list_classified_metrics(self, category: CategoryFilter = None) -> List[ClassifiedMetric]:
        return self.engine.list_classified_metrics(category)

    def list_anomalies(
        self, since: Optional[datetime] = None, open_only: bool = False
    ) -> List[AnomalyEvent]:
        return self.engine.list_anomalies(since, open_only=open_only)

    def last_cycle_anomalies(self) -> List[AnomalyEvent]:
        return self.engine.last_cycle_anomalies()

    def list_drift(self, category: CategoryFilter = None) -> List[DriftRecord]:
        return self.engine.list_drift(category)

    def reset_baseline(self, metric_id: str) -> Metric:
        return self.engine.reset_baseline(metric_id)

    def acknowledge_anomaly(self, anomaly_id: str) -> AnomalyEvent:
        return self.engine.acknowledge_anomaly(anomaly_id)

    def set_auto_refresh(self, enabled: bool, interval_ms: Optional[int] = None) -> None:
        self.scheduler.set_auto_refresh(enabled, interval_ms)

    def ingest(self, rows: Iterable[Union[Observation, Mapping[str, Any]]]) -> IngestionResult:
        return self.engine.ingest(rows)

    def ingest_file(self, filepath: Union[str, Path], format: str = "auto") -> IngestionResult:
        logger.info("Ingesting observations from %s", filepath)
        return self.engine.ingest(read_observations(filepath, format=format))

    def ingest_signal(self, signal: Union[ExternalSignal, Mapping[str, Any]]) -> AnomalyEvent:
        return self.engine.ingest_signal(signal)
