"""Task definitions and the fluent ``Schedule`` builder.

A :class:`TaskDefinition` is frozen: everything the evaluator and the
dispatcher need is fixed when the task is registered.  Definitions are
usually built through a :class:`Schedule`, obtained from a registry::

    registry.command("reports:generate", "--daily") \\
        .daily_at("8:00") \\
        .weekdays() \\
        .without_overlapping() \\
        .email_output_on_failure("ops@example.com") \\
        .register()

The builder is mutable; ``build()`` / ``register()`` validate it and produce
the immutable definition.  A builder without a frequency raises
``InvalidFrequencyExpression``.
"""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime, time, timedelta
from pathlib import Path
from typing import TYPE_CHECKING, Any

from cadence.core.errors import InvalidFrequencyExpression
from cadence.scheduling import frequency as freq
from cadence.scheduling.actions import Action
from cadence.scheduling.frequency import DayFilter, FrequencyRule, TimeWindow
from cadence.scheduling.models import ExecutionResult

if TYPE_CHECKING:
    from cadence.scheduling.registry import TaskRegistry

Hook = Callable[[], object]
ResultHook = Callable[[ExecutionResult], object]


@dataclass(frozen=True)
class TaskDefinition:
    """One registered periodic task.

    ``max_runtime`` is the lock TTL used by ``without_overlapping``; None
    means the lock manager's default (24 hours unless configured).
    """

    name: str
    action: Action
    frequency: FrequencyRule
    window: TimeWindow | None = None
    days: DayFilter = DayFilter.ANY
    without_overlapping: bool = False
    run_in_background: bool = False
    even_in_maintenance_mode: bool = False
    max_runtime: timedelta | None = None
    output_path: Path | None = None
    append_output: bool = True
    email_to: tuple[str, ...] = ()
    email_only_on_failure: bool = False
    before: Hook | None = field(default=None, compare=False)
    after: Hook | None = field(default=None, compare=False)
    on_success: ResultHook | None = field(default=None, compare=False)
    on_failure: ResultHook | None = field(default=None, compare=False)
    description: str | None = None

    def __post_init__(self) -> None:
        if not self.name:
            raise ValueError("Task name must not be empty")
        if self.max_runtime is not None and self.max_runtime <= timedelta(0):
            raise ValueError(f"max_runtime must be positive, got {self.max_runtime}")

    @property
    def expression(self) -> str | None:
        """Cron equivalent of the frequency, when one exists."""
        return freq.to_cron(self.frequency)

    def is_due_at(self, moment: datetime, maintenance_active: bool = False) -> bool:
        """Evaluate this definition at a minute already in the reference timezone."""
        if maintenance_active and not self.even_in_maintenance_mode:
            return False
        if not freq.is_due(self.frequency, moment):
            return False
        if self.window is not None and not self.window.contains(moment):
            return False
        return self.days.matches(moment)

    def summary(self) -> dict[str, Any]:
        """Listing row for ``cadence schedule list``."""
        return {
            "name": self.name,
            "action": self.action.describe(),
            "frequency": freq.describe(self.frequency),
            "expression": self.expression,
            "window": (
                None
                if self.window is None
                else f"{'not ' if self.window.inverted else ''}"
                f"{self.window.start:%H:%M}-{self.window.end:%H:%M}"
            ),
            "days": self.days.value,
            "without_overlapping": self.without_overlapping,
            "run_in_background": self.run_in_background,
            "even_in_maintenance_mode": self.even_in_maintenance_mode,
            "description": self.description,
        }


class Schedule:
    """Mutable builder producing a :class:`TaskDefinition`."""

    def __init__(self, action: Action, name: str, registry: TaskRegistry | None = None) -> None:
        self._registry = registry
        self._fields: dict[str, Any] = {"name": name, "action": action}
        self._frequency: FrequencyRule | None = None

    # -- frequency -----------------------------------------------------------

    def frequency(self, rule: FrequencyRule) -> Schedule:
        self._frequency = rule
        return self

    def cron(self, expression: str) -> Schedule:
        return self.frequency(freq.cron(expression))

    def every_minute(self) -> Schedule:
        return self.frequency(freq.every_minute())

    def every_minutes(self, minutes: int) -> Schedule:
        return self.frequency(freq.EveryMinutes(minutes))

    def every_five_minutes(self) -> Schedule:
        return self.frequency(freq.every_five_minutes())

    def every_ten_minutes(self) -> Schedule:
        return self.frequency(freq.every_ten_minutes())

    def every_fifteen_minutes(self) -> Schedule:
        return self.frequency(freq.every_fifteen_minutes())

    def every_thirty_minutes(self) -> Schedule:
        return self.frequency(freq.every_thirty_minutes())

    def hourly(self) -> Schedule:
        return self.frequency(freq.hourly())

    def hourly_at(self, minute: int) -> Schedule:
        return self.frequency(freq.hourly_at(minute))

    def daily(self) -> Schedule:
        return self.frequency(freq.daily())

    def daily_at(self, at: str | time) -> Schedule:
        return self.frequency(freq.daily_at(at))

    def twice_daily(self, first: int = 1, second: int = 13) -> Schedule:
        return self.frequency(freq.twice_daily(first, second))

    def weekly(self) -> Schedule:
        return self.frequency(freq.weekly())

    def weekly_on(self, weekday: int, at: str | time = "0:00") -> Schedule:
        return self.frequency(freq.weekly_on(weekday, at))

    def monthly(self) -> Schedule:
        return self.frequency(freq.monthly())

    def monthly_on(self, day: int = 1, at: str | time = "0:00") -> Schedule:
        return self.frequency(freq.monthly_on(day, at))

    def quarterly(self) -> Schedule:
        return self.frequency(freq.quarterly())

    def yearly(self) -> Schedule:
        return self.frequency(freq.yearly())

    # -- constraints ---------------------------------------------------------

    def between(self, start: str | time, end: str | time) -> Schedule:
        self._fields["window"] = TimeWindow.between(start, end)
        return self

    def unless_between(self, start: str | time, end: str | time) -> Schedule:
        self._fields["window"] = TimeWindow.between(start, end, inverted=True)
        return self

    def weekdays(self) -> Schedule:
        self._fields["days"] = DayFilter.WEEKDAYS
        return self

    def weekends(self) -> Schedule:
        self._fields["days"] = DayFilter.WEEKENDS
        return self

    # -- execution policy ----------------------------------------------------

    def without_overlapping(self, max_runtime: timedelta | int | None = None) -> Schedule:
        """Skip runs while a previous one holds the lock.

        ``max_runtime`` is the lock TTL, as a timedelta or in minutes.
        """
        self._fields["without_overlapping"] = True
        if isinstance(max_runtime, int):
            max_runtime = timedelta(minutes=max_runtime)
        if max_runtime is not None:
            self._fields["max_runtime"] = max_runtime
        return self

    def run_in_background(self) -> Schedule:
        self._fields["run_in_background"] = True
        return self

    def even_in_maintenance_mode(self) -> Schedule:
        self._fields["even_in_maintenance_mode"] = True
        return self

    # -- output --------------------------------------------------------------

    def send_output_to(self, path: str | Path) -> Schedule:
        self._fields["output_path"] = Path(path)
        self._fields["append_output"] = False
        return self

    def append_output_to(self, path: str | Path) -> Schedule:
        self._fields["output_path"] = Path(path)
        self._fields["append_output"] = True
        return self

    def email_output_to(self, *addresses: str) -> Schedule:
        if not addresses:
            raise ValueError("At least one address is required")
        self._fields["email_to"] = tuple(addresses)
        self._fields["email_only_on_failure"] = False
        return self

    def email_output_on_failure(self, *addresses: str) -> Schedule:
        self.email_output_to(*addresses)
        self._fields["email_only_on_failure"] = True
        return self

    # -- hooks ---------------------------------------------------------------

    def before(self, hook: Hook) -> Schedule:
        self._fields["before"] = hook
        return self

    def after(self, hook: Hook) -> Schedule:
        self._fields["after"] = hook
        return self

    def on_success(self, hook: ResultHook) -> Schedule:
        self._fields["on_success"] = hook
        return self

    def on_failure(self, hook: ResultHook) -> Schedule:
        self._fields["on_failure"] = hook
        return self

    # -- metadata ------------------------------------------------------------

    def name(self, name: str) -> Schedule:
        self._fields["name"] = name
        return self

    def description(self, text: str) -> Schedule:
        self._fields["description"] = text
        return self

    # -- terminal ------------------------------------------------------------

    def build(self) -> TaskDefinition:
        if self._frequency is None:
            raise InvalidFrequencyExpression(f"Task {self._fields['name']!r} has no frequency")
        return TaskDefinition(frequency=self._frequency, **self._fields)

    def register(self) -> TaskDefinition:
        if self._registry is None:
            raise RuntimeError("Schedule is not bound to a registry; use build()")
        definition = self.build()
        self._registry.register(definition)
        return definition


__all__ = ["TaskDefinition", "Schedule", "Hook", "ResultHook"]
