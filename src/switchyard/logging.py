"""Structured logging for switchyard (structlog over stdlib logging)."""

from __future__ import annotations

import logging
import os
import sys
from typing import TextIO

import structlog

# httpx/httpcore log every request at INFO; keep them below our own events.
_NOISY_LOGGERS = ("httpx", "httpcore")


def configure_logging(
    level: str,
    json_output: bool | None = None,
    stream: TextIO | None = None,
) -> None:
    """Route structlog events through a single stderr handler.

    Args:
        level: Log level string (DEBUG, INFO, WARNING, ERROR, CRITICAL).
        json_output: Force JSON lines. If None, JSON is used when APP_ENV=prod.
        stream: Destination stream, stderr by default so stdout stays
            reserved for command output.
    """
    log_level = getattr(logging, level.upper(), logging.INFO)
    if json_output is None:
        json_output = os.environ.get("APP_ENV", "dev") == "prod"

    shared_processors: list[structlog.types.Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
    ]
    renderer: structlog.types.Processor
    if json_output:
        renderer = structlog.processors.JSONRenderer()
    else:
        renderer = structlog.dev.ConsoleRenderer(colors=False)

    structlog.configure(
        processors=[*shared_processors, structlog.stdlib.ProcessorFormatter.wrap_for_formatter],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    handler = logging.StreamHandler(stream or sys.stderr)
    handler.setFormatter(
        structlog.stdlib.ProcessorFormatter(
            processors=[structlog.stdlib.ProcessorFormatter.remove_processors_meta, renderer],
        )
    )
    root = logging.getLogger()
    root.handlers.clear()
    root.addHandler(handler)
    root.setLevel(log_level)
    for name in _NOISY_LOGGERS:
        logging.getLogger(name).setLevel(max(log_level, logging.WARNING))


def get_logger(name: str) -> structlog.stdlib.BoundLogger:
    return structlog.stdlib.get_logger(name)


def preview(text: str | None, limit: int = 200) -> str:
    """Truncate content for log previews."""
    if not text:
        return ""
    if len(text) <= limit:
        return text
    return text[:limit] + "..."


def bind_context(**kwargs: object) -> None:
    """Bind key-value pairs (provider_id, action) to every event of this run."""
    structlog.contextvars.bind_contextvars(**kwargs)


def clear_context() -> None:
    structlog.contextvars.clear_contextvars()
