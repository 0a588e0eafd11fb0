"""Task registry and due-time evaluator.

The registry owns the ordered set of :class:`TaskDefinition` objects and
answers one question: which tasks are due at a given minute?

- One registry per scheduler; it is an explicit object, never a global.
- Re-registering a name replaces the previous definition and keeps its
  position.  ``unique_names=True`` turns that into ``DuplicateTaskError``.
- ``due_tasks(now)`` converts ``now`` to the reference timezone, truncates it
  to the minute and yields matches in registration order.  The result is a
  pure function of ``now``, the definitions and the maintenance check.
"""

from __future__ import annotations

from collections.abc import Callable, Iterator
from datetime import datetime, tzinfo
from typing import Any
from zoneinfo import ZoneInfo

from cadence.core.errors import DuplicateTaskError
from cadence.core.logging import get_logger
from cadence.core.timestamps import truncate_to_minute
from cadence.scheduling.actions import CallableAction, CommandAction, ShellAction
from cadence.scheduling.definition import Schedule, TaskDefinition
from cadence.scheduling.maintenance import MaintenanceMode, StaticMaintenanceMode

logger = get_logger(__name__)


class TaskRegistry:
    """Ordered collection of task definitions.

    Example:
        >>> registry = TaskRegistry(timezone="Europe/Amsterdam")
        >>> registry.command("emails:send").every_five_minutes().register()
        >>> registry.call(prune_sessions).daily_at("3:00").without_overlapping().register()
        >>> [t.name for t in registry.due_tasks(now)]
    """

    def __init__(
        self,
        timezone: str | tzinfo = "UTC",
        maintenance: MaintenanceMode | None = None,
        *,
        unique_names: bool = False,
    ) -> None:
        self.timezone = ZoneInfo(timezone) if isinstance(timezone, str) else timezone
        self.maintenance = maintenance or StaticMaintenanceMode(False)
        self.unique_names = unique_names
        self._tasks: dict[str, TaskDefinition] = {}

    # -- registration --------------------------------------------------------

    def register(self, definition: TaskDefinition) -> TaskDefinition:
        if definition.name in self._tasks:
            if self.unique_names:
                raise DuplicateTaskError(definition.name)
            logger.debug("task_replaced", task=definition.name)
        self._tasks[definition.name] = definition
        logger.debug("task_registered", task=definition.name, frequency=definition.expression)
        return definition

    def unregister(self, name: str) -> bool:
        return self._tasks.pop(name, None) is not None

    def command(self, command: str, *args: str) -> Schedule:
        """Schedule a named command from the command registry."""
        name = " ".join([command, *args])
        return Schedule(CommandAction(command, tuple(args)), name, registry=self)

    def call(self, func: Callable[..., Any], *args: Any, name: str | None = None, **kwargs: Any) -> Schedule:
        """Schedule an in-process callable."""
        if name is None:
            name = f"{func.__module__}.{getattr(func, '__qualname__', repr(func))}"
        return Schedule(CallableAction(func, tuple(args), dict(kwargs)), name, registry=self)

    def exec(
        self, command: str | list[str], *, name: str | None = None, timeout_seconds: float | None = None
    ) -> Schedule:
        """Schedule an external process."""
        if isinstance(command, str):
            action = ShellAction(command, timeout_seconds)
        else:
            action = ShellAction(tuple(command), timeout_seconds)
        return Schedule(action, name or action.describe(), registry=self)

    # -- lookup --------------------------------------------------------------

    def get(self, name: str) -> TaskDefinition | None:
        return self._tasks.get(name)

    def __contains__(self, name: object) -> bool:
        return name in self._tasks

    def __iter__(self) -> Iterator[TaskDefinition]:
        return iter(list(self._tasks.values()))

    def __len__(self) -> int:
        return len(self._tasks)

    # -- evaluation ----------------------------------------------------------

    def reference_minute(self, now: datetime) -> datetime:
        """``now`` in the reference timezone, truncated to the minute."""
        return truncate_to_minute(now, self.timezone)

    def due_tasks(self, now: datetime) -> Iterator[TaskDefinition]:
        """Yield the tasks due at ``now`` in registration order.

        Evaluation runs over a snapshot, so registering while iterating does
        not affect the current pass.
        """
        moment = self.reference_minute(now)
        maintenance_active = self.maintenance.is_active()
        for definition in list(self._tasks.values()):
            if definition.is_due_at(moment, maintenance_active):
                yield definition


__all__ = ["TaskRegistry"]
