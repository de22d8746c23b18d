"""
Logging configuration for the engine and its HTTP surface.

Console plus a size-rotated file under ``config.logs_dir``. Evaluation
cycles run in scheduler worker threads, so records carry the thread name.
"""

import logging
import logging.handlers
from typing import Optional

from .config import config

LOG_FORMAT = "%(asctime)s - %(name)s - %(threadName)s - %(levelname)s - %(message)s"


def setup_logging(*logger_names: str, level: Optional[str] = None) -> logging.Logger:
    """
    Attach console and rotating-file handlers to the given loggers.

    Child loggers obtained with ``logging.getLogger(__name__)`` inside the
    ``riskwatch`` package propagate to the ``riskwatch`` logger, so one call
    covers the whole engine. Loggers that already have handlers are left
    alone.

    Args:
        *logger_names: Loggers to configure (default: "riskwatch")
        level: Level override; defaults to config.log_level

    Returns:
        The first configured logger
    """
    names = logger_names or ("riskwatch",)
    level = (level or config.log_level).upper()

    pending = [logging.getLogger(name) for name in names if not logging.getLogger(name).handlers]
    if not pending:
        return logging.getLogger(names[0])

    formatter = logging.Formatter(fmt=LOG_FORMAT, datefmt="%Y-%m-%d %H:%M:%S")
    file_handler = logging.handlers.RotatingFileHandler(
        config.logs_dir / "riskwatch.log",
        maxBytes=10 * 1024 * 1024,
        backupCount=5,
        encoding="utf-8",
        delay=True,
    )
    file_handler.setFormatter(formatter)

    for logger in pending:
        logger.setLevel(level)

        console_handler = logging.StreamHandler()
        console_handler.setFormatter(formatter)
        logger.addHandler(console_handler)
        logger.addHandler(file_handler)
        logger.propagate = False

    return logging.getLogger(names[0])
