"""
riskwatch: risk & drift scoring engine.

Derives status and severity from raw metric observations, measures drift
against recorded baselines, classifies anomalies and aggregates everything
into a 0-100 composite health/risk index for a presentation layer to consume.
"""

from riskwatch.monitor import RiskMonitor

__version__ = "0.1.0"

__all__ = ["RiskMonitor", "__version__"]
