"""
Structured logging for the sync engine.

All modules log through structlog with JSON output on top of stdlib
logging, so job events can be shipped and queried as records.
"""

import logging
import sys
from typing import Optional

import structlog

_configured_level: Optional[int] = None


def configure_logging(level: str | int = "INFO") -> None:
    """
    Configure structlog and the stdlib root handler.

    Safe to call repeatedly; later calls only adjust the level.

    Args:
        level: Log level name or number
    """
    global _configured_level

    if isinstance(level, str):
        level = logging.getLevelName(level.upper())
        if not isinstance(level, int):
            level = logging.INFO

    if _configured_level is None:
        logging.basicConfig(
            level=level,
            format="%(message)s",
            stream=sys.stderr,
        )
        structlog.configure(
            processors=[
                structlog.stdlib.add_log_level,
                structlog.stdlib.add_logger_name,
                structlog.processors.TimeStamper(fmt="iso"),
                structlog.processors.StackInfoRenderer(),
                structlog.processors.format_exc_info,
                structlog.processors.JSONRenderer(),
            ],
            context_class=dict,
            logger_factory=structlog.stdlib.LoggerFactory(),
            cache_logger_on_first_use=True,
        )

    logging.getLogger("sync_engine").setLevel(level)
    _configured_level = level


def get_logger(name: str):
    """Return a structlog logger bound to a module name."""
    if _configured_level is None:
        configure_logging()
    return structlog.get_logger(name)
