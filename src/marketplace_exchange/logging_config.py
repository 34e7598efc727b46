"""Structured logging configuration using structlog.

JSON output in production, colored console output in development. Log
entries carry the request_id bound by the API middleware and any entity
ids bound by the services, so a single offer or transaction can be traced
from acceptance through completion.

Usage:
    from marketplace_exchange.logging_config import setup_logging, get_logger
    setup_logging(log_level="INFO", json_logs=False)
    logger = get_logger(__name__)
    logger.info("offer.created", offer_id="abc-123", amount="90.00")
"""

from __future__ import annotations

import logging
import sys
from typing import TYPE_CHECKING

import structlog

if TYPE_CHECKING:
    from marketplace_exchange.config import Settings

_NOISY_LOGGERS = (
    "uvicorn.access",
    "sqlalchemy.engine",
    "aiosqlite",
    "apscheduler.executors.default",
    "httpx",
    "httpcore",
)


def setup_logging(log_level: str = "DEBUG", json_logs: bool = False) -> None:
    """Configure structlog and route it through the stdlib root logger.

    Args:
        log_level: Standard Python log level name (DEBUG, INFO, WARNING...).
        json_logs: Emit JSON lines instead of colored console output.
    """
    shared_processors: list[structlog.types.Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.UnicodeDecoder(),
    ]

    if json_logs:
        renderer: structlog.types.Processor = structlog.processors.JSONRenderer()
    else:
        renderer = structlog.dev.ConsoleRenderer(colors=True)

    structlog.configure(
        processors=[
            *shared_processors,
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    formatter = structlog.stdlib.ProcessorFormatter(
        processors=[
            structlog.stdlib.ProcessorFormatter.remove_processors_meta,
            renderer,
        ],
    )

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(formatter)

    root_logger = logging.getLogger()
    root_logger.handlers.clear()
    root_logger.addHandler(handler)
    root_logger.setLevel(getattr(logging, log_level.upper(), logging.DEBUG))

    for noisy_logger in _NOISY_LOGGERS:
        logging.getLogger(noisy_logger).setLevel(logging.WARNING)


def setup_logging_from_settings(settings: Settings) -> None:
    """Apply the log level and renderer implied by the app settings."""
    setup_logging(
        log_level=settings.app_log_level,
        json_logs=not settings.is_development,
    )


def get_logger(name: str | None = None) -> structlog.stdlib.BoundLogger:
    """Get a structured logger bound to ``name``."""
    return structlog.get_logger(name)
