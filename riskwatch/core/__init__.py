"""
Core module: Configuration, logging, and exception handling.
"""

from .config import Config, config
from .exceptions import (
    IngestionError,
    InvalidConfigurationError,
    NotFoundError,
    RiskEngineError,
    StaleDataError,
)

__all__ = [
    "Config",
    "config",
    "RiskEngineError",
    "NotFoundError",
    "InvalidConfigurationError",
    "IngestionError",
    "StaleDataError",
]
