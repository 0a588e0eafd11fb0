"""Execution dispatcher - runs one due task under its policies.

Manifesto:
    Evaluating *whether* a task is due and *running* it are separate
    concerns.  The dispatcher owns the run: the overlap lock, the hooks, the
    inline or background handoff, output routing and the event stream.  A
    failing run never escapes as an exception; it comes back as a
    :class:`DispatchOutcome` in the ``FAILED`` state.

Tags:
    cadence, scheduling, dispatch, thread-pool, overlap-prevention, hooks

    dispatch(definition)
        │
        ├── without_overlapping?  try_acquire ── False ──────► SKIPPED ("overlapping")
        │                              └── LockStoreUnavailable ► SKIPPED (fail-safe)
        ├── before hook ── raises ──► release lock ──────────► FAILED (HookFailure)
        │
        ├── inline      → _run() on the caller ─────────────► SUCCEEDED | FAILED
        └── background  → ThreadPoolExecutor.submit(_run) ──► RUNNING + Future

    _run(): started event → action.execute → release lock (finally) → after hook
            → on_success / on_failure → route output → succeeded/failed event (finally)

    Recorder, hook and routing failures are logged and never change the
    result or leave the lock held.
"""

from __future__ import annotations

import threading
from collections.abc import Callable
from concurrent.futures import Future, ThreadPoolExecutor
from dataclasses import dataclass
from datetime import datetime

from cadence.core.errors import ActionFailure, CadenceError, HookFailure, LockStoreUnavailable, is_retryable
from cadence.core.logging import get_logger, log_context
from cadence.core.timestamps import utc_now
from cadence.scheduling.actions import CommandRegistry, exception_result
from cadence.scheduling.definition import TaskDefinition
from cadence.scheduling.events import EventRecorder, LoggingEventRecorder
from cadence.scheduling.lock_manager import LockManager, MemoryLockStore
from cadence.scheduling.models import ExecutionResult, RunEvent, RunPhase, RunState, advance
from cadence.scheduling.output import OutputRouter

logger = get_logger(__name__)

SKIP_OVERLAPPING = "overlapping"
SKIP_LOCK_STORE_UNAVAILABLE = "lock store unavailable"


@dataclass
class DispatchOutcome:
    """What happened when a task was dispatched.

    ``state`` is ``SKIPPED``, ``RUNNING`` (background, see ``future``),
    ``SUCCEEDED`` or ``FAILED``.  ``RELEASED`` is never reported: it is
    implied for a ``SUCCEEDED`` or ``FAILED`` outcome, and for a background
    run once ``future`` is done, since the lock is let go before completion.
    """

    task_name: str
    state: RunState
    result: ExecutionResult | None = None
    future: Future[ExecutionResult] | None = None
    error: CadenceError | None = None
    reason: str | None = None

    @property
    def skipped(self) -> bool:
        return self.state is RunState.SKIPPED

    @property
    def failed(self) -> bool:
        return self.state is RunState.FAILED

    def wait(self, timeout: float | None = None) -> ExecutionResult | None:
        """Block until a background run finishes; returns the result."""
        if self.future is not None:
            return self.future.result(timeout=timeout)
        return self.result


class ExecutionDispatcher:
    """Run task definitions inline or on a worker pool.

    Example:
        >>> dispatcher = ExecutionDispatcher(LockManager(MemoryLockStore()))
        >>> outcome = dispatcher.dispatch(definition)
        >>> outcome.state
        <RunState.SUCCEEDED: 'succeeded'>
    """

    def __init__(
        self,
        lock_manager: LockManager | None = None,
        recorder: EventRecorder | None = None,
        output_router: OutputRouter | None = None,
        commands: CommandRegistry | None = None,
        *,
        max_workers: int = 4,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self.clock = clock
        self.lock_manager = lock_manager or LockManager(MemoryLockStore(), clock=clock)
        self.recorder = recorder or LoggingEventRecorder()
        self.output_router = output_router or OutputRouter()
        self.commands = commands if commands is not None else CommandRegistry()
        self.max_workers = max_workers

        self._pool: ThreadPoolExecutor | None = None
        self._pool_lock = threading.Lock()

    # === Dispatch ===

    def dispatch(self, definition: TaskDefinition) -> DispatchOutcome:
        """Run ``definition`` once, honouring its overlap and background policy."""
        name = definition.name
        state = RunState.PENDING

        if definition.without_overlapping:
            try:
                acquired = self.lock_manager.try_acquire(name, definition.max_runtime)
            except LockStoreUnavailable as exc:
                logger.error(
                    "lock_store_unavailable", task=name, error=exc.message, retryable=is_retryable(exc)
                )
                self._record(name, RunPhase.SKIPPED, reason=SKIP_LOCK_STORE_UNAVAILABLE, error=exc.message)
                return DispatchOutcome(
                    name, advance(state, RunState.SKIPPED), error=exc, reason=SKIP_LOCK_STORE_UNAVAILABLE
                )
            if not acquired:
                self._record(name, RunPhase.SKIPPED, reason=SKIP_OVERLAPPING)
                return DispatchOutcome(name, advance(state, RunState.SKIPPED), reason=SKIP_OVERLAPPING)

        state = advance(state, RunState.RUNNING)

        if definition.before is not None:
            try:
                definition.before()
            except Exception as exc:
                failure = HookFailure(f"before hook failed: {exc}", cause=exc).with_context(
                    task_name=name, phase="before"
                )
                logger.error("before_hook_failed", task=name, error=str(exc))
                self._release(definition)
                self._record(name, RunPhase.FAILED, reason="before hook failed", error=failure.message)
                return DispatchOutcome(name, advance(state, RunState.FAILED), error=failure)

        if not definition.run_in_background:
            result = self._run(definition)
            return self._outcome(definition, result)

        try:
            future = self._executor().submit(self._run, definition)
        except RuntimeError as exc:
            # interpreter shutting down
            logger.error("background_submit_failed", task=name, error=str(exc))
            self._release(definition)
            failure = CadenceError(f"Cannot start background run: {exc}", cause=exc)
            self._record(name, RunPhase.FAILED, reason="submit failed", error=failure.message)
            return DispatchOutcome(name, advance(state, RunState.FAILED), error=failure)

        logger.debug("task_backgrounded", task=name)
        return DispatchOutcome(name, state, future=future)

    # === Run ===

    def _run(self, definition: TaskDefinition) -> ExecutionResult:
        """Execute the action and complete the run; safe on any thread.

        The lock is released before any completion work, so neither hooks,
        routing nor the recorder can leave it held.  Once this returns the
        run has reached ``RELEASED``.
        """
        name = definition.name
        started_at = self.clock()

        try:
            self._record(name, RunPhase.STARTED, started_at=started_at)
            with log_context(task=name):
                result = definition.action.execute(name, self.commands)
        except Exception as exc:
            result = exception_result(name, started_at, exc)
        finally:
            self._release(definition)

        try:
            self._call_hook(definition, "after", definition.after)
            if result.succeeded:
                self._call_hook(definition, "on_success", definition.on_success, result)
            else:
                self._call_hook(definition, "on_failure", definition.on_failure, result)
            self.output_router.route(definition, result)
        finally:
            self._record(
                name,
                RunPhase.SUCCEEDED if result.succeeded else RunPhase.FAILED,
                started_at=result.started_at,
                finished_at=result.finished_at,
                error=result.error,
            )
        return result

    def _outcome(self, definition: TaskDefinition, result: ExecutionResult) -> DispatchOutcome:
        if result.succeeded:
            return DispatchOutcome(definition.name, advance(RunState.RUNNING, RunState.SUCCEEDED), result=result)
        failure = ActionFailure(result.error or "action failed").with_context(task_name=definition.name)
        return DispatchOutcome(
            definition.name, advance(RunState.RUNNING, RunState.FAILED), result=result, error=failure
        )

    def _release(self, definition: TaskDefinition) -> None:
        if not definition.without_overlapping:
            return
        try:
            self.lock_manager.release(definition.name)
        except LockStoreUnavailable as exc:
            # the record expires after max_runtime
            logger.error("lock_release_failed", task=definition.name, error=exc.message)

    def _call_hook(self, definition: TaskDefinition, label: str, hook, *args) -> None:
        if hook is None:
            return
        try:
            hook(*args)
        except Exception:
            logger.exception("hook_failed", task=definition.name, hook=label)

    def _record(self, task_name: str, phase: RunPhase, **fields) -> None:
        try:
            self.recorder.record(RunEvent(task_name=task_name, phase=phase, at=self.clock(), **fields))
        except Exception:
            logger.exception("event_record_failed", task=task_name, phase=phase.value)

    # === Pool ===

    def _executor(self) -> ThreadPoolExecutor:
        with self._pool_lock:
            if self._pool is None:
                self._pool = ThreadPoolExecutor(max_workers=self.max_workers, thread_name_prefix="cadence-task")
            return self._pool

    def shutdown(self, wait: bool = True) -> None:
        """Stop accepting background runs; wait for running ones when ``wait``."""
        with self._pool_lock:
            pool, self._pool = self._pool, None
        if pool is not None:
            pool.shutdown(wait=wait)

    def __enter__(self) -> ExecutionDispatcher:
        return self

    def __exit__(self, *exc_info) -> None:
        self.shutdown(wait=True)


__all__ = [
    "DispatchOutcome",
    "ExecutionDispatcher",
    "SKIP_LOCK_STORE_UNAVAILABLE",
    "SKIP_OVERLAPPING",
]
