# src/conduit/core/logging.py
"""Structured logging configuration for conduit.

Uses structlog for structured logging of task, node and branch events.

Architecture:
    Both structlog and stdlib logging are routed through one
    ProcessorFormatter, so a module calling logging.getLogger(__name__)
    renders exactly like one calling structlog.get_logger(). Task identity
    travels in structlog contextvars: the engine binds task_id once per
    run and every event emitted on that thread carries it.
"""

from __future__ import annotations

import logging
import sys
from collections.abc import Iterator
from contextlib import contextmanager
from typing import Any, TextIO

import structlog
from structlog.stdlib import ProcessorFormatter

# Vendor polling issues an HTTP request every few seconds per job, so
# connection-level chatter is held at WARNING even in DEBUG mode.
_NOISY_LOGGERS: tuple[str, ...] = (
    "httpx",
    "httpcore",
    "urllib3",
    "urllib3.connectionpool",
    "sqlalchemy.engine",
    "sqlalchemy.pool",
)

_VALID_LEVELS = frozenset({"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"})


def _drop_formatter_bookkeeping(
    logger: logging.Logger | None,
    method_name: str,
    event_dict: dict[str, Any],
) -> dict[str, Any]:
    """Strip the _record/_from_structlog keys ProcessorFormatter always adds."""
    del event_dict["_record"]
    del event_dict["_from_structlog"]
    return event_dict


def configure_logging(
    *,
    json_output: bool = False,
    level: str = "INFO",
    stream: TextIO | None = None,
) -> None:
    """Configure structlog and stdlib logging for conduit.

    Args:
        json_output: If True, output JSON lines. If False, human-readable console.
        level: Log level name (DEBUG, INFO, WARNING, ERROR, CRITICAL).
        stream: Where to write (default stdout; the CLI uses stderr so its
            own output stays parseable).

    Raises:
        ValueError: If level is not a known level name.
    """
    level_name = level.upper()
    if level_name not in _VALID_LEVELS:
        raise ValueError(f"Unknown log level '{level}'. Expected one of: {', '.join(sorted(_VALID_LEVELS))}")
    log_level = getattr(logging, level_name)

    shared_processors: list[Any] = [
        structlog.contextvars.merge_contextvars,
        structlog.processors.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.StackInfoRenderer(),
    ]

    output = stream if stream is not None else sys.stdout
    renderer: Any = structlog.processors.JSONRenderer() if json_output else structlog.dev.ConsoleRenderer(colors=output.isatty())
    final_processors: list[Any] = [_drop_formatter_bookkeeping]
    if json_output:
        final_processors.append(structlog.processors.format_exc_info)
    final_processors.append(renderer)

    structlog.configure(
        processors=[*shared_processors, ProcessorFormatter.wrap_for_formatter],
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        # Tests reconfigure logging; cached loggers would keep the old chain
        cache_logger_on_first_use=False,
    )

    handler = logging.StreamHandler(output)
    handler.setFormatter(
        ProcessorFormatter(
            processors=final_processors,
            foreign_pre_chain=shared_processors,
        )
    )

    root = logging.getLogger()
    root.handlers = [handler]
    root.setLevel(log_level)

    # Never make noisy loggers less restrictive than the root level
    noisy_level = max(log_level, logging.WARNING)
    for logger_name in _NOISY_LOGGERS:
        logging.getLogger(logger_name).setLevel(noisy_level)


def get_logger(name: str) -> structlog.stdlib.BoundLogger:
    """Get a bound logger for a module (typically __name__)."""
    logger: structlog.stdlib.BoundLogger = structlog.get_logger(name)
    return logger


@contextmanager
def bound_task_context(**values: Any) -> Iterator[None]:
    """Bind key/values (task_id, feature_id) to every event on this thread.

    Branch threads do not inherit contextvars from the thread that spawned
    them, so walkers re-bind the task id when they start.
    """
    with structlog.contextvars.bound_contextvars(**values):
        yield
