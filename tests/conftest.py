"""
Pytest configuration and shared fixtures.

Provides a representative metric registry, deterministic clocks and engine
settings for unit and integration tests.
"""

import pytest
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List

from riskwatch.core.config import EngineConfig, SchedulerConfig
from riskwatch.metrics.registry import DefinitionRegistry
from riskwatch.risk.engine import RiskEngine


T0 = datetime(2025, 2, 7, 10, 0, tzinfo=timezone.utc)


class FakeClock:
    """Manually advanced UTC clock."""

    def __init__(self, start: datetime = T0):
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now = self.now + timedelta(**kwargs)
        return self.now


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def metric_definitions() -> List[Dict[str, Any]]:
    """
    Fixture providing one metric per category plus both polarities.

    Returns:
        List[Dict]: Raw definition dictionaries, as found in a registry file
    """
    return [
        {
            "id": "error_rate",
            "name": "Error Rate",
            "category": "performance",
            "threshold": 0.05,
            "polarity": "higher_is_worse",
        },
        {
            "id": "latency_p95",
            "name": "P95 Latency",
            "category": "performance",
            "threshold": 500,
            "polarity": "higher_is_worse",
            "unit": "ms",
        },
        {
            "id": "tb_imbalance",
            "name": "Trial Balance Imbalance",
            "category": "financial",
            "threshold": 100,
            "polarity": "higher_is_worse",
            "integrity_critical": True,
        },
        {
            "id": "reconciliation_rate",
            "name": "Reconciliation Rate",
            "category": "financial",
            "threshold": 99.5,
            "polarity": "higher_is_better",
            "unit": "%",
        },
        {
            "id": "failed_logins",
            "name": "Failed Logins",
            "category": "security",
            "threshold": 50,
            "polarity": "higher_is_worse",
        },
        {
            "id": "compliance_score",
            "name": "Compliance Score",
            "category": "compliance",
            "threshold": 90,
            "polarity": "higher_is_better",
            "window_label": "30d",
        },
    ]


@pytest.fixture
def healthy_observations() -> List[Dict[str, Any]]:
    """Observations that keep every fixture metric comfortably healthy."""
    ts = T0.isoformat()
    return [
        {"id": "error_rate", "value": 0.02, "timestamp": ts},
        {"id": "latency_p95", "value": 200, "timestamp": ts},
        {"id": "tb_imbalance", "value": 10, "timestamp": ts},
        {"id": "reconciliation_rate", "value": 150, "timestamp": ts},
        {"id": "failed_logins", "value": 5, "timestamp": ts},
        {"id": "compliance_score", "value": 200, "timestamp": ts},
    ]


@pytest.fixture
def registry(metric_definitions) -> DefinitionRegistry:
    return DefinitionRegistry.from_dicts(metric_definitions)


@pytest.fixture
def engine_settings() -> EngineConfig:
    """
    Engine settings independent of the environment.

    Auto-refresh is off so tests drive every cycle explicitly.
    """
    return EngineConfig(scheduler=SchedulerConfig(auto_refresh=False, interval_ms=1_000))


@pytest.fixture
def engine(registry, engine_settings, clock) -> RiskEngine:
    return RiskEngine(registry, settings=engine_settings, clock=clock)


def pytest_configure(config):
    """
    Pytest hook for custom configuration.

    Registers custom markers used throughout tests.
    """
    config.addinivalue_line(
        "markers", "unit: mark test as a unit test"
    )
    config.addinivalue_line(
        "markers", "integration: mark test as an integration test"
    )
    config.addinivalue_line(
        "markers", "slow: mark test as slow running (deferred CI)"
    )
