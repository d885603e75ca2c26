"""Structured logging helpers."""

from __future__ import annotations

import logging

import structlog


def configure_logging(level: int = logging.INFO, *, json: bool = True) -> None:
    """Route structlog and stdlib logging to stdout.

    JSON lines by default; ``json=False`` renders coloured console output for
    local development.
    """

    logging.basicConfig(
        level=level,
        format="%(message)s",
        handlers=[logging.StreamHandler()],
    )
    processors = [
        structlog.contextvars.merge_contextvars,
        structlog.processors.add_log_level,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        structlog.processors.StackInfoRenderer(),
    ]
    if json:
        processors += [structlog.processors.format_exc_info, structlog.processors.JSONRenderer()]
    else:
        processors.append(structlog.dev.ConsoleRenderer())
    structlog.configure(
        processors=processors,
        wrapper_class=structlog.make_filtering_bound_logger(level),
        logger_factory=structlog.PrintLoggerFactory(),
        cache_logger_on_first_use=True,
    )


logger = structlog.get_logger("lexplan")

__all__ = ["configure_logging", "logger"]
