"""
Structured logging for Cadence (structlog).

Library modules log events, not sentences::

    logger = get_logger(__name__)
    logger.info("task_dispatched", task="reports:daily", background=True)

Only the CLI configures logging; library code just asks for a logger.
Rendered lines go to stderr so stdout stays free for command output such
as ``cadence schedule list --json``.

Processor chain:
    ::

        TimeStamper(iso, utc)          (optional)
        merge_contextvars              log_context() / bind_context() values
        add_log_level, add_logger_name
        StackInfoRenderer, set_exc_info
        ServiceStamp                   service="cadence"
            ↓
        JSONRenderer  |  ConsoleRenderer
"""

from __future__ import annotations

import logging
import sys
from collections.abc import Iterator
from contextlib import contextmanager
from typing import Any

import structlog
from structlog.types import EventDict, Processor, WrappedLogger

from cadence.core.settings import CadenceSettings


class ServiceStamp:
    """Processor that tags every event with the service name."""

    def __init__(self, service: str) -> None:
        self.service = service

    def __call__(self, logger: WrappedLogger, method_name: str, event_dict: EventDict) -> EventDict:
        event_dict.setdefault("service", self.service)
        return event_dict


def level_number(level: str) -> int:
    """Map ``"info"``/``"WARNING"``/... to the stdlib level number."""
    number = logging.getLevelName(level.upper())
    if not isinstance(number, int):
        raise ValueError(f"Unknown log level: {level!r}")
    return number


def configure_logging(
    level: str = "INFO",
    json_format: bool | None = None,
    service: str = "cadence",
    add_timestamp: bool = True,
) -> None:
    """Install the structlog processor chain.

    Args:
        level: Minimum level; lower events are dropped before rendering
        json_format: JSON lines when True, console when False, auto when None
            (JSON unless stderr is a terminal)
        service: Value of the ``service`` key on every event
        add_timestamp: Prefix events with an ISO-8601 UTC timestamp

    Raises:
        ValueError: If ``level`` is not a stdlib level name
    """
    threshold = level_number(level)
    if json_format is None:
        json_format = not sys.stderr.isatty()

    processors: list[Processor] = []
    if add_timestamp:
        processors.append(structlog.processors.TimeStamper(fmt="iso", utc=True))
    processors += [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.processors.StackInfoRenderer(),
        structlog.dev.set_exc_info,
        ServiceStamp(service),
    ]
    if json_format:
        processors += [structlog.processors.format_exc_info, structlog.processors.JSONRenderer()]
    else:
        processors.append(structlog.dev.ConsoleRenderer(colors=sys.stderr.isatty()))

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.make_filtering_bound_logger(threshold),
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )
    logging.basicConfig(format="%(message)s", stream=sys.stderr, level=threshold)


def configure_from_settings(
    settings: CadenceSettings,
    *,
    level: str | None = None,
    json_format: bool | None = None,
) -> None:
    """Configure from ``CADENCE_LOG_LEVEL``/``CADENCE_LOG_FORMAT``; explicit arguments win."""
    if json_format is None:
        json_format = settings.log_format == "json"
    configure_logging(level=level or settings.log_level, json_format=json_format)


def get_logger(name: str | None = None) -> Any:
    """Return a structlog logger, usually ``get_logger(__name__)``."""
    return structlog.get_logger(name)


def bind_context(**values: Any) -> None:
    """Bind values to all later events on this thread until cleared."""
    structlog.contextvars.bind_contextvars(**values)


def clear_context() -> None:
    structlog.contextvars.clear_contextvars()


@contextmanager
def log_context(**values: Any) -> Iterator[None]:
    """Bind values for the duration of the block.

    Example:
        with log_context(task="reports:daily"):
            logger.info("task_started")
    """
    with structlog.contextvars.bound_contextvars(**values):
        yield


__all__ = [
    "ServiceStamp",
    "bind_context",
    "clear_context",
    "configure_from_settings",
    "configure_logging",
    "get_logger",
    "level_number",
    "log_context",
]
