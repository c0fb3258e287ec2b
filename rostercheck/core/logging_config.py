"""Console and file logging for rostercheck.

Package modules obtain loggers through get_logger() and inherit the handlers
that setup_logging() installs on the ``rostercheck`` root. Scripts call
setup_logging() with their own name. Engine calls run in worker threads, so
every line carries the thread name next to the logger name.
"""

from __future__ import annotations

import logging
import sys
from typing import Optional

ROOT_LOGGER_NAME = "rostercheck"

LOG_FORMAT = "%(asctime)s | %(levelname)-8s | %(name)s [%(threadName)s] | %(message)s"
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"


class ColoredFormatter(logging.Formatter):
    """Highlights level and logger name when stdout is a terminal."""

    COLORS = {
        logging.DEBUG: "\033[36m",
        logging.INFO: "\033[32m",
        logging.WARNING: "\033[33m",
        logging.ERROR: "\033[31m",
        logging.CRITICAL: "\033[35m",
    }
    RESET = "\033[0m"
    BOLD = "\033[1m"

    def format(self, record: logging.LogRecord) -> str:
        color = self.COLORS.get(record.levelno)
        if color is None or not (hasattr(sys.stdout, "isatty") and sys.stdout.isatty()):
            return super().format(record)

        # A file handler may format the same record; color a copy
        record = logging.makeLogRecord(record.__dict__)
        record.levelname = f"{color}{self.BOLD}{record.levelname}{self.RESET}"
        record.name = f"{self.BOLD}{record.name}{self.RESET}"
        return super().format(record)


def _configured_level() -> str:
    from rostercheck.core.config import get_config

    try:
        return get_config().log_level
    except ValueError:
        # A bad .env must still let the caller log the config error
        return "INFO"


def setup_logging(
    name: str = ROOT_LOGGER_NAME,
    level: Optional[str] = None,
    log_file: Optional[str] = None,
) -> logging.Logger:
    """Attach console (and optional file) handlers to logger ``name``.

    Calling it again for a logger that already has handlers returns the
    logger unchanged.

    Args:
        name: ``rostercheck`` for the package root, or a script's __name__
        level: DEBUG, INFO, WARNING, ERROR or CRITICAL; LOG_LEVEL from the
               environment when None
        log_file: Also write plain (uncolored) lines to this file

    Returns:
        The configured logger.

    Example:
        >>> logger = setup_logging("rostercheck", level="DEBUG")
        >>> logger.info("Resolving model sources")
    """
    logger = logging.getLogger(name)
    if logger.handlers:
        return logger

    level = level or _configured_level()
    logger.setLevel(getattr(logging, level.upper(), logging.INFO))

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setLevel(logger.level)
    console_handler.setFormatter(ColoredFormatter(LOG_FORMAT, datefmt=DATE_FORMAT))
    logger.addHandler(console_handler)

    if log_file:
        file_handler = logging.FileHandler(log_file)
        file_handler.setLevel(logger.level)
        file_handler.setFormatter(logging.Formatter(LOG_FORMAT, datefmt=DATE_FORMAT))
        logger.addHandler(file_handler)

    # Handlers live here; the root logger would print every line twice
    logger.propagate = False

    return logger


def get_logger(name: str) -> logging.Logger:
    """Logger for a module.

    Names inside the ``rostercheck`` hierarchy are returned bare so they share
    the package root's handlers. Any other name gets its own handlers.
    """
    if name == ROOT_LOGGER_NAME or name.startswith(ROOT_LOGGER_NAME + "."):
        return logging.getLogger(name)
    return setup_logging(name)
