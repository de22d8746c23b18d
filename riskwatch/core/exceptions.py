"""
Custom exceptions for the risk & drift engine.

These exceptions provide clear error semantics across the system.
Use them to distinguish between unknown identifiers, bad metric definitions,
and evaluations that could not produce fresh data in time.
"""

from typing import Any, Optional


class RiskEngineError(Exception):
    """Base exception for engine failures."""
    pass


class NotFoundError(RiskEngineError):
    """Raised when a metric or anomaly id is unknown."""

    def __init__(self, kind: str, identifier: str):
        super().__init__(f"Unknown {kind} id: {identifier}")
        self.kind = kind
        self.identifier = identifier


class InvalidConfigurationError(RiskEngineError):
    """Raised when a metric definition or engine setting is malformed."""
    pass


class IngestionError(RiskEngineError):
    """Raised when an observation feed cannot be read."""
    pass


class StaleDataError(RiskEngineError):
    """
    Raised when an evaluation times out or the latest snapshot is too old.

    The last good snapshot (possibly None before the first cycle) is attached
    so callers can keep rendering something.
    """

    def __init__(self, message: str, last_snapshot: Optional[Any] = None):
        super().__init__(message)
        self.last_snapshot = last_snapshot
