"""Run models: execution results, run states and run events.

Models for one dispatched run of a task: the captured ``ExecutionResult``,
the per-run state machine, and the ``RunEvent`` handed to the logging
collaborator.

Run lifecycle::

    PENDING ──(lock check)──► SKIPPED                       (terminal)
       │
       └──► RUNNING ──► SUCCEEDED ──► RELEASED              (terminal)
                   └──► FAILED    ──► RELEASED
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Any

from cadence.core.errors import InvalidRunTransition
from cadence.core.timestamps import to_iso8601

# ---------------------------------------------------------------------------
# Execution result
# ---------------------------------------------------------------------------


class ExitStatus(str, Enum):
    SUCCESS = "success"
    NON_ZERO = "non_zero"
    EXCEPTION = "exception"


@dataclass(frozen=True)
class ExecutionResult:
    """Outcome of running one task action; produced once per run."""

    task_name: str
    started_at: datetime
    finished_at: datetime
    status: ExitStatus
    exit_code: int | None = 0
    stdout: str = ""
    stderr: str = ""
    error: str | None = None

    @property
    def succeeded(self) -> bool:
        return self.status is ExitStatus.SUCCESS

    @property
    def duration_seconds(self) -> float:
        return (self.finished_at - self.started_at).total_seconds()

    def to_dict(self) -> dict[str, Any]:
        return {
            "task_name": self.task_name,
            "started_at": to_iso8601(self.started_at),
            "finished_at": to_iso8601(self.finished_at),
            "status": self.status.value,
            "exit_code": self.exit_code,
            "duration_seconds": self.duration_seconds,
            "error": self.error,
        }


# ---------------------------------------------------------------------------
# Run state machine
# ---------------------------------------------------------------------------


class RunState(str, Enum):
    """Lifecycle of one run.

    ``RELEASED`` follows ``SUCCEEDED`` or ``FAILED`` once the overlap lock is
    let go.  Dispatch outcomes report the state before it.
    """

    PENDING = "pending"
    SKIPPED = "skipped"
    RUNNING = "running"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    RELEASED = "released"


_ALLOWED: dict[RunState, set[RunState]] = {
    RunState.PENDING: {RunState.SKIPPED, RunState.RUNNING},
    RunState.RUNNING: {RunState.SUCCEEDED, RunState.FAILED},
    RunState.SUCCEEDED: {RunState.RELEASED},
    RunState.FAILED: {RunState.RELEASED},
    RunState.SKIPPED: set(),
    RunState.RELEASED: set(),
}


def advance(current: RunState, new: RunState) -> RunState:
    """Validate a run state transition and return the new state."""
    if new not in _ALLOWED[current]:
        raise InvalidRunTransition(current.value, new.value)
    return new


# ---------------------------------------------------------------------------
# Run events
# ---------------------------------------------------------------------------


class RunPhase(str, Enum):
    SKIPPED = "skipped"
    STARTED = "started"
    SUCCEEDED = "succeeded"
    FAILED = "failed"


@dataclass(frozen=True)
class RunEvent:
    """One entry for the logging collaborator."""

    task_name: str
    phase: RunPhase
    at: datetime
    started_at: datetime | None = None
    finished_at: datetime | None = None
    reason: str | None = None
    error: str | None = None

    def to_dict(self) -> dict[str, Any]:
        result: dict[str, Any] = {
            "task": self.task_name,
            "phase": self.phase.value,
            "at": to_iso8601(self.at),
        }
        if self.started_at is not None:
            result["started_at"] = to_iso8601(self.started_at)
        if self.finished_at is not None:
            result["finished_at"] = to_iso8601(self.finished_at)
        if self.reason is not None:
            result["reason"] = self.reason
        if self.error is not None:
            result["error"] = self.error
        return result
