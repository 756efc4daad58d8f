"""
Structured logging for the trends workspace.

Context bound with `structlog.contextvars` (the sync run number, for one) is
merged into every event logged while it is bound.
"""

import logging
import sys

import structlog
from structlog.typing import EventDict, FilteringBoundLogger, WrappedLogger

from trendsync.core.config import settings

SERVICE_NAME = "trendsync"

# Driver loggers that are chatty at DEBUG
QUIET_LOGGERS = {
    "uvicorn.access": logging.WARNING,
    "httpx": logging.WARNING,
    "sqlalchemy.engine": logging.WARNING,
    "aiosqlite": logging.WARNING,
    "asyncpg": logging.WARNING,
    "redis": logging.WARNING,
}


def add_service_name(
    logger: WrappedLogger, method_name: str, event_dict: EventDict
) -> EventDict:
    event_dict.setdefault("service", SERVICE_NAME)
    return event_dict


def log_level() -> int:
    """LOG_LEVEL if set, otherwise INFO in production and DEBUG elsewhere."""
    if settings.LOG_LEVEL:
        return logging.getLevelName(settings.LOG_LEVEL.upper())
    return logging.INFO if settings.ENVIRONMENT == "production" else logging.DEBUG


def setup_logging() -> None:
    """Configure structlog on top of the standard library logging module."""
    production = settings.ENVIRONMENT == "production"

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            add_service_name,
            structlog.processors.TimeStamper(fmt="iso", utc=True),
            structlog.processors.format_exc_info,
            (
                structlog.processors.JSONRenderer()
                if production
                else structlog.dev.ConsoleRenderer(colors=sys.stdout.isatty())
            ),
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    logging.basicConfig(format="%(message)s", stream=sys.stdout, level=log_level())

    for name, level in QUIET_LOGGERS.items():
        logging.getLogger(name).setLevel(level)


def get_logger(name: str) -> FilteringBoundLogger:
    return structlog.get_logger(name)
