"""
Process-wide log setup for the nightly scheduler.

``setup_logging(service=...)`` is called once from
``services.engine.main``.  The jobs and main loop log key-value events
through ``get_logger``; the calendar, volatility, quote and database modules
use plain ``logging.getLogger(...)`` with %-style messages.  Both end up on
one stderr handler with the same renderer.

Environment:
    LOG_LEVEL   root level (default INFO)
    LOG_FORMAT  "console" (default) or "json" (one object per line)
"""

from __future__ import annotations

import logging
import os
import sys

import structlog

# yfinance and its sqlite tz cache log every request at INFO
_QUIET_LOGGERS = ("yfinance", "peewee")


def setup_logging(service: str = "expected-moves") -> None:
    level = getattr(logging, os.getenv("LOG_LEVEL", "INFO").upper(), logging.INFO)
    json_lines = os.getenv("LOG_FORMAT", "console").lower() == "json"

    pre_chain: list[structlog.types.Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.TimeStamper(fmt="iso", utc=True),
    ]
    renderer: structlog.types.Processor = (
        structlog.processors.JSONRenderer()
        if json_lines
        else structlog.dev.ConsoleRenderer(colors=sys.stderr.isatty())
    )

    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(
        structlog.stdlib.ProcessorFormatter(
            processors=[structlog.stdlib.ProcessorFormatter.remove_processors_meta, renderer],
            foreign_pre_chain=pre_chain,
        )
    )
    root = logging.getLogger()
    root.handlers.clear()
    root.addHandler(handler)
    root.setLevel(level)
    for name in _QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)

    structlog.configure(
        processors=[
            *pre_chain,
            structlog.processors.format_exc_info,
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )
    structlog.contextvars.clear_contextvars()
    structlog.contextvars.bind_contextvars(service=service)


def get_logger(name: str) -> structlog.stdlib.BoundLogger:
    """Structured logger for the service layer (``logger.info("event", k=v)``)."""
    return structlog.get_logger(name)
