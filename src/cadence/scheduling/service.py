"""Scheduler service - the evaluation tick.

Manifesto:
    The SchedulerService combines the registry (what is due), the dispatcher
    (how it runs) and a backend (when to look) into one scheduler.  The
    whole of a tick is ``run_due(now)``: evaluate, dispatch in registration
    order, isolate failures.  Calling it twice for the same minute with no
    due task does nothing observable, which makes it safe to drive from
    system cron, a loop, or a test.

Tags:
    cadence, scheduling, orchestrator, beat-as-poller, service

┌──────────────────────────────────────────────────────────────────────────────┐
│  SchedulerService                                                             │
│                                                                               │
│   backend ──tick──► run_due(now)                                              │
│                       for definition in registry.due_tasks(now):             │
│                           dispatcher.dispatch(definition)                     │
│                           (an unexpected error is logged and counted;         │
│                            the next task still runs)                          │
│                                                                               │
│   trigger(name)   run one task now, ignoring its frequency                    │
│   health()        backend + registry + lock summary                           │
└──────────────────────────────────────────────────────────────────────────────┘
"""

from __future__ import annotations

import threading
from collections.abc import Callable
from concurrent.futures import Future
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from cadence.core.errors import CadenceError, ErrorCategory, LockStoreUnavailable, is_retryable
from cadence.core.logging import get_logger
from cadence.core.timestamps import to_iso8601, utc_now
from cadence.scheduling.dispatcher import DispatchOutcome, ExecutionDispatcher
from cadence.scheduling.models import ExecutionResult, RunState
from cadence.scheduling.protocol import SchedulerBackend
from cadence.scheduling.registry import TaskRegistry
from cadence.scheduling.thread_backend import ThreadSchedulerBackend

logger = get_logger(__name__)


@dataclass
class SchedulerStats:
    """Counters for the scheduler service."""

    tick_count: int = 0
    tasks_dispatched: int = 0
    tasks_skipped: int = 0
    tasks_failed: int = 0
    last_tick: datetime | None = None
    last_error: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "tick_count": self.tick_count,
            "tasks_dispatched": self.tasks_dispatched,
            "tasks_skipped": self.tasks_skipped,
            "tasks_failed": self.tasks_failed,
            "last_tick": to_iso8601(self.last_tick),
            "last_error": self.last_error,
        }


@dataclass
class SchedulerHealth:
    """Health status for the scheduler service."""

    healthy: bool
    backend: dict[str, Any]
    tasks_registered: int = 0
    active_locks: int | None = None
    maintenance: bool = False
    stats: SchedulerStats = field(default_factory=SchedulerStats)

    def to_dict(self) -> dict[str, Any]:
        return {
            "healthy": self.healthy,
            "backend": self.backend,
            "tasks_registered": self.tasks_registered,
            "active_locks": self.active_locks,
            "maintenance": self.maintenance,
            "stats": self.stats.to_dict(),
        }


class SchedulerService:
    """Evaluate and dispatch due tasks, once per tick.

    Example:
        >>> registry = TaskRegistry()
        >>> registry.command("emails:send").every_five_minutes().register()
        >>> service = SchedulerService(registry, ExecutionDispatcher(commands=commands))
        >>> service.run_due()          # one tick, e.g. from system cron
        >>> service.start()            # or a minute-aligned background loop
    """

    def __init__(
        self,
        registry: TaskRegistry,
        dispatcher: ExecutionDispatcher,
        backend: SchedulerBackend | None = None,
        *,
        clock: Callable[[], datetime] = utc_now,
        interval_seconds: float = 60.0,
    ) -> None:
        self.registry = registry
        self.dispatcher = dispatcher
        self.backend = backend or ThreadSchedulerBackend(clock=clock)
        self.clock = clock
        self.interval = interval_seconds

        self._stats = SchedulerStats()
        self._stats_lock = threading.Lock()
        self._running = False

    # === Lifecycle ===

    def start(self) -> None:
        if self._running:
            logger.warning("scheduler_already_running")
            return
        logger.info(
            "scheduler_starting",
            backend=self.backend.name,
            interval_seconds=self.interval,
            tasks=len(self.registry),
        )
        self.backend.start(self._tick, self.interval)
        self._running = True

    def stop(self, wait: bool = True) -> None:
        """Stop ticking and drain background runs."""
        if not self._running:
            return
        self.backend.stop()
        self.dispatcher.shutdown(wait=wait)
        self._running = False
        logger.info("scheduler_stopped")

    @property
    def is_running(self) -> bool:
        return self._running

    # === Tick ===

    def _tick(self) -> None:
        self.run_due()

    def run_due(self, now: datetime | None = None) -> list[DispatchOutcome]:
        """Dispatch every task due at ``now`` (default: the clock).

        Returns the outcomes in registration order.  Background runs come
        back ``RUNNING`` with a future; their failures are counted when the
        future completes.
        """
        now = now or self.clock()
        with self._stats_lock:
            self._stats.tick_count += 1
            self._stats.last_tick = now

        outcomes: list[DispatchOutcome] = []
        for definition in self.registry.due_tasks(now):
            try:
                outcome = self.dispatcher.dispatch(definition)
            except Exception as exc:
                logger.exception("dispatch_failed", task=definition.name, retryable=is_retryable(exc))
                error = (
                    exc
                    if isinstance(exc, CadenceError)
                    else CadenceError(str(exc), category=ErrorCategory.SCHEDULING, cause=exc)
                )
                outcome = DispatchOutcome(definition.name, RunState.FAILED, error=error)
            self._count(outcome)
            outcomes.append(outcome)

        if outcomes:
            logger.debug("tick_completed", at=now.isoformat(), dispatched=len(outcomes))
        return outcomes

    def trigger(self, name: str) -> DispatchOutcome:
        """Run one task now regardless of its frequency.

        Raises:
            KeyError: If no task has that name
        """
        definition = self.registry.get(name)
        if definition is None:
            raise KeyError(f"Task not found: {name}")
        logger.info("task_triggered", task=name)
        outcome = self.dispatcher.dispatch(definition)
        self._count(outcome)
        return outcome

    def _count(self, outcome: DispatchOutcome) -> None:
        with self._stats_lock:
            if outcome.state is RunState.SKIPPED:
                self._stats.tasks_skipped += 1
                return
            self._stats.tasks_dispatched += 1
            if outcome.state is RunState.FAILED:
                self._stats.tasks_failed += 1
                self._stats.last_error = outcome.error.message if outcome.error else None
        if outcome.future is not None:
            outcome.future.add_done_callback(self._count_background)

    def _count_background(self, future: Future[ExecutionResult]) -> None:
        if future.cancelled():
            return
        exc = future.exception()
        result = None if exc is not None else future.result()
        if exc is None and result is not None and result.succeeded:
            return
        with self._stats_lock:
            self._stats.tasks_failed += 1
            self._stats.last_error = str(exc) if exc is not None else result.error

    # === Health & Stats ===

    def health(self) -> dict[str, Any]:
        backend_health = self.backend.health()
        try:
            active_locks: int | None = len(self.dispatcher.lock_manager.list_active_locks())
        except LockStoreUnavailable as exc:
            logger.warning("lock_store_unavailable", error=exc.message)
            active_locks = None

        return SchedulerHealth(
            healthy=self._running and bool(backend_health.get("healthy", False)) and active_locks is not None,
            backend=backend_health,
            tasks_registered=len(self.registry),
            active_locks=active_locks,
            maintenance=self.registry.maintenance.is_active(),
            stats=self.get_stats(),
        ).to_dict()

    def get_stats(self) -> SchedulerStats:
        with self._stats_lock:
            return SchedulerStats(**vars(self._stats))

    def reset_stats(self) -> None:
        with self._stats_lock:
            self._stats = SchedulerStats()


__all__ = ["SchedulerHealth", "SchedulerService", "SchedulerStats"]
