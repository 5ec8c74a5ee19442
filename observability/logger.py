"""Structured logging setup using structlog."""

from __future__ import annotations

import logging
import sys

import structlog

# Chatty third-party loggers kept at WARNING so per-request noise stays out of the stream.
_QUIET_LOGGERS = ("httpx", "httpcore", "anthropic", "openai", "google", "urllib3")


def setup_logging(level: str = "INFO", fmt: str = "json") -> None:
    """Configure structlog (and the stdlib root logger it renders through)."""
    log_level = getattr(logging, level.upper(), logging.INFO)
    logging.basicConfig(
        format="%(message)s",
        stream=sys.stdout,
        level=log_level,
        force=True,
    )
    for name in _QUIET_LOGGERS:
        logging.getLogger(name).setLevel(max(log_level, logging.WARNING))

    processors: list = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.filter_by_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        structlog.processors.UnicodeDecoder(),
    ]

    if fmt == "json":
        processors.append(structlog.processors.JSONRenderer())
    else:
        processors.append(structlog.dev.ConsoleRenderer())

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )


def get_logger(name: str = __name__) -> structlog.stdlib.BoundLogger:
    return structlog.get_logger(name)


def bind_job(job: str, **extra: object) -> None:
    """Attach the running job name (and any extra keys) to every log line of this task."""
    structlog.contextvars.bind_contextvars(job=job, **extra)


def clear_job() -> None:
    structlog.contextvars.clear_contextvars()
