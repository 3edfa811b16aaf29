"""Structured logging configuration — structlog over stdlib logging.

Modules log through ``structlog.get_logger(__name__)`` with snake_case
event names and key/value context. ``setup_logging`` routes those events
and any stdlib ``logging`` records through one processor chain and one
renderer:

* development (``json_output=False``): coloured console output
* production (``json_output=True``): one JSON object per line

The service binds the acting user into ``structlog.contextvars`` for the
duration of each operation, so every event logged underneath carries
``actor_id`` and ``role`` without passing them around.
"""

from __future__ import annotations

import logging
import sys
from typing import Any

import structlog

from achievements.policy.resolver import PolicyResolver


def setup_logging(
    level: str = "info",
    json_output: bool = False,
    log_file: str | None = None,
) -> None:
    """Configure structlog with stdlib logging integration.

    Args:
        level: ``debug``, ``info``, ``warning``, ``error`` or ``critical``.
        json_output: JSON lines instead of console rendering.
        log_file: Optional extra file sink. Always JSON.
    """
    log_level = getattr(logging, level.upper(), logging.INFO)

    shared_processors: list[Any] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.UnicodeDecoder(),
    ]

    if json_output:
        renderer: Any = structlog.processors.JSONRenderer()
    else:
        renderer = structlog.dev.ConsoleRenderer(colors=sys.stderr.isatty())

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
        foreign_pre_chain=shared_processors,
    )
    console_handler = logging.StreamHandler(sys.stderr)
    console_handler.setFormatter(formatter)
    handlers: list[logging.Handler] = [console_handler]

    if log_file:
        file_formatter = structlog.stdlib.ProcessorFormatter(
            processors=[
                structlog.stdlib.ProcessorFormatter.remove_processors_meta,
                structlog.processors.JSONRenderer(),
            ],
            foreign_pre_chain=shared_processors,
        )
        file_handler = logging.FileHandler(log_file, encoding="utf-8")
        file_handler.setFormatter(file_formatter)
        handlers.append(file_handler)

    root_logger = logging.getLogger()
    root_logger.handlers.clear()
    root_logger.setLevel(log_level)
    for handler in handlers:
        root_logger.addHandler(handler)

    structlog.get_logger(__name__).info(
        "logging_configured",
        level=level,
        json_output=json_output,
        log_file=log_file or "none",
    )


def setup_logging_from_policy(resolver: PolicyResolver, log_file: str | None = None) -> None:
    """Configure logging from the ``logging`` section of the workflow policy."""
    cfg = resolver.logging_config()
    setup_logging(
        level=cfg["level"],
        json_output=bool(cfg["json_output"]),
        log_file=log_file,
    )


__all__ = ["setup_logging", "setup_logging_from_policy"]
