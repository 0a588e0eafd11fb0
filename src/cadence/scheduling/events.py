"""Run event recorders - the logging collaborator of the dispatcher.

The dispatcher reports every run transition as a :class:`RunEvent`
(``skipped``, ``started``, ``succeeded``, ``failed``).  Recorders decide
where those go; the default writes structured log lines.
"""

from __future__ import annotations

from collections.abc import Iterable
from typing import Protocol, runtime_checkable

from cadence.core.logging import get_logger
from cadence.scheduling.models import RunEvent, RunPhase

logger = get_logger(__name__)


@runtime_checkable
class EventRecorder(Protocol):
    def record(self, event: RunEvent) -> None: ...


class LoggingEventRecorder:
    """Emit each run event as a structlog entry.

    ``failed`` events log at error level, everything else at info.
    """

    def __init__(self, log=None) -> None:
        self._log = log or logger

    def record(self, event: RunEvent) -> None:
        payload = event.to_dict()
        name = f"task_{event.phase.value}"
        if event.phase is RunPhase.FAILED:
            self._log.error(name, **payload)
        else:
            self._log.info(name, **payload)


class CompositeEventRecorder:
    """Fan an event out to several recorders; one failing recorder does not
    stop the others."""

    def __init__(self, recorders: Iterable[EventRecorder]) -> None:
        self.recorders = list(recorders)

    def record(self, event: RunEvent) -> None:
        for recorder in self.recorders:
            try:
                recorder.record(event)
            except Exception:
                logger.exception("event_recorder_failed", recorder=type(recorder).__name__)
