"""Periodic task scheduling for Cadence.

Manifesto:
    Cron-style scheduling inside an application needs more than a loop with
    ``time.sleep()``.  It needs a registry of tasks whose due-times are a pure
    function of "now", an overlap lock so a slow run is never doubled, and a
    dispatcher that keeps one failing task from taking the rest of the tick
    down with it.

┌──────────────────────────────────────────────────────────────────────────────┐
│  CADENCE SCHEDULER                                                            │
│                                                                               │
│  Quick Start:                                                                 │
│   registry = TaskRegistry(timezone="UTC")                                     │
│   registry.command("emails:send").every_five_minutes().register()            │
│   registry.call(prune).daily_at("3:00").without_overlapping().register()     │
│                                                                               │
│   service = create_scheduler(registry, commands)                              │
│   service.run_due()        # one tick (system cron: * * * * *)                │
│   service.start()          # or the minute-aligned thread backend             │
│                                                                               │
│  Modules:                                                                     │
│   frequency.py      FrequencyRule variants, is_due(), TimeWindow, DayFilter  │
│   definition.py     TaskDefinition (frozen) + Schedule fluent builder        │
│   registry.py       TaskRegistry.due_tasks(now)                               │
│   lock_manager.py   LockManager over Memory/SQLite lock stores                │
│   actions.py        CommandAction, CallableAction, ShellAction               │
│   dispatcher.py     ExecutionDispatcher (locks, hooks, background pool)      │
│   output.py         OutputRouter (file + mail sinks)                          │
│   events.py         RunEvent recorders (structlog)                            │
│   service.py        SchedulerService (run_due, trigger, health)               │
│   thread_backend.py ThreadSchedulerBackend                                    │
└──────────────────────────────────────────────────────────────────────────────┘

Guardrails:
    ❌ Module-level registries or implicit global schedules
    ✅ An explicit ``TaskRegistry`` passed to the service
    ❌ Running a without-overlapping task when the lock store is down
    ✅ Skip the run and log ``lock_store_unavailable``
"""

from __future__ import annotations

from datetime import timedelta

from cadence.core.settings import CadenceSettings, get_settings
from cadence.scheduling.actions import (
    Action,
    CallableAction,
    CommandAction,
    CommandRegistry,
    ShellAction,
    shell,
)
from cadence.scheduling.definition import Schedule, TaskDefinition
from cadence.scheduling.dispatcher import DispatchOutcome, ExecutionDispatcher
from cadence.scheduling.events import CompositeEventRecorder, EventRecorder, LoggingEventRecorder
from cadence.scheduling.frequency import (
    CronExpression,
    DailyAt,
    DayFilter,
    EveryMinutes,
    FrequencyRule,
    MonthlyOn,
    TimeWindow,
    WeeklyOn,
    is_due,
)
from cadence.scheduling.lock_manager import LockManager, LockStore, MemoryLockStore, SQLiteLockStore
from cadence.scheduling.maintenance import FileMaintenanceMode, MaintenanceMode, StaticMaintenanceMode
from cadence.scheduling.models import ExecutionResult, ExitStatus, RunEvent, RunPhase, RunState
from cadence.scheduling.output import MailOutputSink, OutputRouter, SMTPMailSender
from cadence.scheduling.protocol import BackendHealth, SchedulerBackend
from cadence.scheduling.registry import TaskRegistry
from cadence.scheduling.service import SchedulerHealth, SchedulerService, SchedulerStats
from cadence.scheduling.thread_backend import ThreadSchedulerBackend

__all__ = [
    # Frequency
    "FrequencyRule",
    "EveryMinutes",
    "DailyAt",
    "WeeklyOn",
    "MonthlyOn",
    "CronExpression",
    "TimeWindow",
    "DayFilter",
    "is_due",
    # Definitions
    "TaskDefinition",
    "Schedule",
    "TaskRegistry",
    # Actions
    "Action",
    "CommandAction",
    "CallableAction",
    "ShellAction",
    "CommandRegistry",
    "shell",
    # Locks
    "LockStore",
    "MemoryLockStore",
    "SQLiteLockStore",
    "LockManager",
    # Execution
    "ExecutionDispatcher",
    "DispatchOutcome",
    "ExecutionResult",
    "ExitStatus",
    "RunState",
    "RunEvent",
    "RunPhase",
    "EventRecorder",
    "LoggingEventRecorder",
    "CompositeEventRecorder",
    "OutputRouter",
    "MailOutputSink",
    "SMTPMailSender",
    # Maintenance
    "MaintenanceMode",
    "FileMaintenanceMode",
    "StaticMaintenanceMode",
    # Service
    "SchedulerBackend",
    "BackendHealth",
    "ThreadSchedulerBackend",
    "SchedulerService",
    "SchedulerStats",
    "SchedulerHealth",
    # Factories
    "create_registry",
    "create_lock_store",
    "create_scheduler",
]


def create_registry(settings: CadenceSettings | None = None, *, unique_names: bool = False) -> TaskRegistry:
    """Registry in the configured timezone, watching the maintenance file."""
    settings = settings or get_settings()
    maintenance = FileMaintenanceMode(settings.maintenance_file) if settings.maintenance_file else None
    return TaskRegistry(settings.tzinfo, maintenance, unique_names=unique_names)


def create_lock_store(settings: CadenceSettings | None = None) -> LockStore:
    settings = settings or get_settings()
    if settings.lock_backend == "sqlite":
        return SQLiteLockStore(settings.lock_database)
    return MemoryLockStore()


def create_scheduler(
    registry: TaskRegistry,
    commands: CommandRegistry | None = None,
    *,
    settings: CadenceSettings | None = None,
    recorder: EventRecorder | None = None,
    lock_store: LockStore | None = None,
) -> SchedulerService:
    """Wire a complete scheduler service from settings.

    Example:
        >>> service = create_scheduler(registry, commands)
        >>> service.run_due()
    """
    settings = settings or get_settings()
    lock_manager = LockManager(
        lock_store or create_lock_store(settings),
        default_max_runtime=timedelta(seconds=settings.lock_max_runtime_seconds),
    )
    mail_sink = MailOutputSink(SMTPMailSender.from_settings(settings)) if settings.mail_configured else None
    dispatcher = ExecutionDispatcher(
        lock_manager,
        recorder or LoggingEventRecorder(),
        OutputRouter(mail_sink=mail_sink),
        commands,
        max_workers=settings.max_workers,
    )
    return SchedulerService(registry, dispatcher, interval_seconds=settings.tick_interval_seconds)
