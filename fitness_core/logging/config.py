# =============================================================================
# fitness_core/logging/config.py
# Logging Configuration for the Fitness Data Core
# =============================================================================

import logging
import sys
import time
from datetime import datetime
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import List, Optional


LOG_FORMAT = "%(asctime)s | %(threadName)s | %(name)s | %(levelname)s | %(message)s"
LOG_DATE_FORMAT = "%Y-%m-%d %H:%M:%S"

LOG_DIR = Path("logs")
MAX_LOG_BYTES = 5 * 1024 * 1024
LOG_BACKUPS = 3

# Client libraries that log every HTTP request at INFO
QUIET_LOGGERS = ("urllib3", "requests", "httpx", "httpcore", "hpack", "supabase", "postgrest")


def setup_logging(
    level: int = logging.INFO,
    log_to_file: bool = True,
    log_filename: Optional[str] = None,
) -> None:
    """
    Configure logging for an app embedding the data core.

    Args:
        level: Root logging level
        log_to_file: Also write to a size-rotated file under ``logs/``
        log_filename: File name (default: fitness_YYYY-MM-DD.log)
    """
    handlers: List[logging.Handler] = [logging.StreamHandler(sys.stdout)]

    if log_to_file:
        LOG_DIR.mkdir(parents=True, exist_ok=True)
        filename = log_filename or f"fitness_{datetime.now():%Y-%m-%d}.log"
        handlers.append(
            RotatingFileHandler(LOG_DIR / filename, maxBytes=MAX_LOG_BYTES, backupCount=LOG_BACKUPS)
        )

    logging.basicConfig(
        level=level,
        format=LOG_FORMAT,
        datefmt=LOG_DATE_FORMAT,
        handlers=handlers,
        force=True,
    )
    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)

    logging.getLogger("fitness_core").info(f"Logging initialized at {logging.getLevelName(level)}")


def get_logger(name: str) -> logging.Logger:
    """Module logger; call as ``get_logger(__name__)``."""
    return logging.getLogger(name)


class LogContext:
    """
    Log the start, duration and outcome of a block.

    Usage:
        with LogContext(logger, "Drain pass", level=logging.DEBUG):
            ...
        # "Drain pass... started"
        # "Drain pass... completed (0.12s)"

    Exceptions are logged and re-raised.
    """

    def __init__(self, logger: logging.Logger, operation: str, level: int = logging.INFO):
        self.logger = logger
        self.operation = operation
        self.level = level
        self._started: Optional[float] = None

    def __enter__(self) -> "LogContext":
        self._started = time.monotonic()
        self.logger.log(self.level, f"{self.operation}... started")
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> bool:
        elapsed = time.monotonic() - self._started
        if exc_val is None:
            self.logger.log(self.level, f"{self.operation}... completed ({elapsed:.2f}s)")
        else:
            self.logger.error(f"{self.operation}... failed after {elapsed:.2f}s: {exc_val}", exc_info=True)
        return False
