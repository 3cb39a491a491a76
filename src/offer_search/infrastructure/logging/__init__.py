"""Logging setup for the offer search service.

structlog renders both its own events and records from stdlib loggers
(``elastic_transport``, ``httpx``, ``uvicorn``), so one pipeline covers the
whole process.  Correlation ids live in :mod:`structlog.contextvars`: the
HTTP middleware binds one per request and the sync pool one per command.
"""
from __future__ import annotations

import logging
import sys
from typing import Any

import structlog

# Client libraries that log every request at INFO.
_QUIET_LOGGERS = ("uvicorn.access", "elastic_transport", "httpx", "httpcore", "redis")

_SHARED_PROCESSORS: list[Any] = [
    structlog.contextvars.merge_contextvars,
    structlog.stdlib.add_log_level,
    structlog.stdlib.add_logger_name,
    structlog.processors.TimeStamper(fmt="iso", utc=True),
    structlog.processors.StackInfoRenderer(),
]


def _handler(handler: logging.Handler, renderer: Any) -> logging.Handler:
    handler.setFormatter(
        structlog.stdlib.ProcessorFormatter(
            processors=[structlog.stdlib.ProcessorFormatter.remove_processors_meta, renderer],
            foreign_pre_chain=_SHARED_PROCESSORS,
        )
    )
    return handler


def setup_logging(level: str = "info", json_output: bool = False, log_file: str | None = None) -> None:
    """Configure structlog over stdlib logging.

    Args:
        level: ``debug``, ``info``, ``warning``, ``error`` or ``critical``.
        json_output: One JSON object per line instead of console output.
        log_file: Extra JSON-lines file next to stderr.
    """
    structlog.configure(
        processors=[*_SHARED_PROCESSORS, structlog.stdlib.ProcessorFormatter.wrap_for_formatter],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    console: Any = (
        structlog.processors.JSONRenderer()
        if json_output
        else structlog.dev.ConsoleRenderer(colors=sys.stderr.isatty())
    )
    handlers = [_handler(logging.StreamHandler(sys.stderr), console)]
    if log_file:
        handlers.append(_handler(logging.FileHandler(log_file, encoding="utf-8"), structlog.processors.JSONRenderer()))

    root = logging.getLogger()
    root.handlers.clear()
    root.setLevel(getattr(logging, level.upper(), logging.INFO))
    for handler in handlers:
        root.addHandler(handler)
    for name in _QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)

    structlog.get_logger(__name__).info("logging_configured", level=level, json_output=json_output)


def bind_request_id(request_id: str) -> None:
    """Start a fresh logging context carrying *request_id*."""
    structlog.contextvars.clear_contextvars()
    structlog.contextvars.bind_contextvars(request_id=request_id)


__all__ = ["bind_request_id", "setup_logging"]
