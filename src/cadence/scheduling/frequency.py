"""Frequency rules and due-time predicates.

Manifesto:
    A task fires on exactly one frequency rule.  Rules are a closed set of
    frozen dataclasses (a tagged variant) evaluated by one pure function,
    :func:`is_due`, so the evaluator never depends on method chains or
    mutable state.  Invalid rules fail loudly when they are built, which is
    registration time.

┌──────────────────────────────────────────────────────────────────────────────┐
│  FREQUENCY RULES                                                             │
│                                                                               │
│   EveryMinutes(5)          minute-of-day % 5 == 0      (== "*/5 * * * *")     │
│   DailyAt(8, 0)            08:00 every day                                    │
│   WeeklyOn(1, 1, 0)        Monday 01:00 (0=Sunday ... 6=Saturday)             │
│   MonthlyOn(4, 15, 0)      4th of the month at 15:00                          │
│   CronExpression("...")    five-field cron, matched with croniter             │
│                                                                               │
│   Constraints (AND-ed with the rule):                                         │
│   TimeWindow("8:00", "17:00")     inclusive, may wrap midnight                │
│   DayFilter.WEEKDAYS / WEEKENDS                                               │
└──────────────────────────────────────────────────────────────────────────────┘

Cron syntax accepted by :class:`CronExpression`: five whitespace-separated
fields (minute 0-59, hour 0-23, day-of-month 1-31, month 1-12,
day-of-week 0-7 with 0 and 7 both Sunday); each field is ``*``, a literal,
a comma list, or ``*/N``.  Ranges, names and the non-standard ``L W # ?``
tokens are rejected.

All predicates take a timezone-aware moment already truncated to the minute
in the reference timezone (see ``TaskRegistry.due_tasks``).
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from datetime import datetime, time
from enum import Enum

from croniter import croniter

from cadence.core.errors import InvalidFrequencyExpression

MINUTES_PER_DAY = 24 * 60

# (name, low, high) per cron field
_CRON_FIELDS = (
    ("minute", 0, 59),
    ("hour", 0, 23),
    ("day-of-month", 1, 31),
    ("month", 1, 12),
    ("day-of-week", 0, 7),
)

_TOKEN = re.compile(r"^(?:\*|\d+|\*/\d+)$")
_TIME = re.compile(r"^(\d{1,2}):(\d{2})$")

_WEEKDAY_NAMES = ("Sunday", "Monday", "Tuesday", "Wednesday", "Thursday", "Friday", "Saturday")


# =============================================================================
# PARSING HELPERS
# =============================================================================


def parse_time(value: str | time) -> time:
    """Parse ``"H:MM"`` / ``"HH:MM"`` (24h) into a :class:`datetime.time`.

    Raises:
        InvalidFrequencyExpression: If the value is not a valid time of day
    """
    if isinstance(value, time):
        return value.replace(second=0, microsecond=0)
    match = _TIME.match(value.strip())
    if not match:
        raise InvalidFrequencyExpression(f"Invalid time of day: {value!r}", expression=value)
    hour, minute = int(match.group(1)), int(match.group(2))
    if hour > 23 or minute > 59:
        raise InvalidFrequencyExpression(f"Time of day out of range: {value!r}", expression=value)
    return time(hour, minute)


def _check_range(label: str, value: int, low: int, high: int) -> None:
    if not low <= value <= high:
        raise InvalidFrequencyExpression(f"{label} must be between {low} and {high}, got {value}")


def parse_cron(expression: str) -> str:
    """Validate a five-field cron expression and return its normalized form.

    Normalization collapses whitespace and maps day-of-week ``7`` to ``0``.

    Raises:
        InvalidFrequencyExpression: On any syntax or range violation
    """
    if not isinstance(expression, str):
        raise InvalidFrequencyExpression(f"Cron expression must be a string, got {type(expression).__name__}")

    parts = expression.split()
    if len(parts) != 5:
        raise InvalidFrequencyExpression(
            f"Cron expression must have 5 fields, got {len(parts)}: {expression!r}",
            expression=expression,
        )

    normalized: list[str] = []
    for part, (name, low, high) in zip(parts, _CRON_FIELDS):
        tokens = part.split(",")
        out: list[str] = []
        for token in tokens:
            if not _TOKEN.match(token):
                raise InvalidFrequencyExpression(
                    f"Invalid {name} field {part!r} in {expression!r}", expression=expression
                )
            if token == "*":
                out.append(token)
            elif token.startswith("*/"):
                step = int(token[2:])
                if not 1 <= step <= high:
                    raise InvalidFrequencyExpression(
                        f"Step in {name} field must be between 1 and {high}: {expression!r}",
                        expression=expression,
                    )
                out.append(f"*/{step}")
            else:
                value = int(token)
                if not low <= value <= high:
                    raise InvalidFrequencyExpression(
                        f"{name} value {value} out of range {low}-{high}: {expression!r}",
                        expression=expression,
                    )
                if name == "day-of-week" and value == 7:
                    value = 0
                out.append(str(value))
        if "*" in out and len(out) > 1:
            raise InvalidFrequencyExpression(
                f"'*' cannot be combined in a list ({name}): {expression!r}", expression=expression
            )
        normalized.append(",".join(out))

    result = " ".join(normalized)
    if not croniter.is_valid(result):
        raise InvalidFrequencyExpression(f"Invalid cron expression: {expression!r}", expression=expression)
    return result


# =============================================================================
# FREQUENCY RULES
# =============================================================================


@dataclass(frozen=True)
class EveryMinutes:
    """Fire every ``minutes`` minutes, aligned to midnight of the reference day."""

    minutes: int

    def __post_init__(self) -> None:
        _check_range("Interval minutes", self.minutes, 1, MINUTES_PER_DAY)


@dataclass(frozen=True)
class DailyAt:
    hour: int = 0
    minute: int = 0

    def __post_init__(self) -> None:
        _check_range("Hour", self.hour, 0, 23)
        _check_range("Minute", self.minute, 0, 59)


@dataclass(frozen=True)
class WeeklyOn:
    """Fire once a week; ``weekday`` uses cron numbering (0 or 7 = Sunday)."""

    weekday: int = 0
    hour: int = 0
    minute: int = 0

    def __post_init__(self) -> None:
        _check_range("Weekday", self.weekday, 0, 7)
        _check_range("Hour", self.hour, 0, 23)
        _check_range("Minute", self.minute, 0, 59)


@dataclass(frozen=True)
class MonthlyOn:
    """Fire once a month; months without ``day`` are skipped."""

    day: int = 1
    hour: int = 0
    minute: int = 0

    def __post_init__(self) -> None:
        _check_range("Day of month", self.day, 1, 31)
        _check_range("Hour", self.hour, 0, 23)
        _check_range("Minute", self.minute, 0, 59)


@dataclass(frozen=True)
class CronExpression:
    expression: str
    normalized: str = field(init=False, repr=False, compare=False)

    def __post_init__(self) -> None:
        object.__setattr__(self, "normalized", parse_cron(self.expression))


FrequencyRule = EveryMinutes | DailyAt | WeeklyOn | MonthlyOn | CronExpression


def is_due(rule: FrequencyRule, moment: datetime) -> bool:
    """Return True if ``rule`` fires at ``moment`` (minute granularity)."""
    if isinstance(rule, EveryMinutes):
        return (moment.hour * 60 + moment.minute) % rule.minutes == 0
    if isinstance(rule, DailyAt):
        return (moment.hour, moment.minute) == (rule.hour, rule.minute)
    if isinstance(rule, WeeklyOn):
        return (
            moment.isoweekday() % 7 == rule.weekday % 7
            and (moment.hour, moment.minute) == (rule.hour, rule.minute)
        )
    if isinstance(rule, MonthlyOn):
        return moment.day == rule.day and (moment.hour, moment.minute) == (rule.hour, rule.minute)
    if isinstance(rule, CronExpression):
        return croniter.match(rule.normalized, moment)
    raise TypeError(f"Unknown frequency rule: {rule!r}")


def to_cron(rule: FrequencyRule) -> str | None:
    """Equivalent cron expression, or None when cron cannot express the rule."""
    if isinstance(rule, EveryMinutes):
        if rule.minutes == 1:
            return "* * * * *"
        if 60 % rule.minutes == 0:
            return f"*/{rule.minutes} * * * *"
        if rule.minutes % 60 == 0 and 24 % (rule.minutes // 60) == 0:
            return f"0 */{rule.minutes // 60} * * *" if rule.minutes < MINUTES_PER_DAY else "0 0 * * *"
        return None
    if isinstance(rule, DailyAt):
        return f"{rule.minute} {rule.hour} * * *"
    if isinstance(rule, WeeklyOn):
        return f"{rule.minute} {rule.hour} * * {rule.weekday % 7}"
    if isinstance(rule, MonthlyOn):
        return f"{rule.minute} {rule.hour} {rule.day} * *"
    if isinstance(rule, CronExpression):
        return rule.normalized
    raise TypeError(f"Unknown frequency rule: {rule!r}")


def describe(rule: FrequencyRule) -> str:
    """Human-readable label for listings."""
    if isinstance(rule, EveryMinutes):
        if rule.minutes == 1:
            return "every minute"
        return f"every {rule.minutes} minutes"
    if isinstance(rule, DailyAt):
        return f"daily at {rule.hour:02d}:{rule.minute:02d}"
    if isinstance(rule, WeeklyOn):
        return f"weekly on {_WEEKDAY_NAMES[rule.weekday % 7]} at {rule.hour:02d}:{rule.minute:02d}"
    if isinstance(rule, MonthlyOn):
        return f"monthly on day {rule.day} at {rule.hour:02d}:{rule.minute:02d}"
    if isinstance(rule, CronExpression):
        return f"cron {rule.normalized}"
    raise TypeError(f"Unknown frequency rule: {rule!r}")


# =============================================================================
# CONVENIENCE CONSTRUCTORS
# =============================================================================


def every_minute() -> EveryMinutes:
    return EveryMinutes(1)


def every_five_minutes() -> EveryMinutes:
    return EveryMinutes(5)


def every_ten_minutes() -> EveryMinutes:
    return EveryMinutes(10)


def every_fifteen_minutes() -> EveryMinutes:
    return EveryMinutes(15)


def every_thirty_minutes() -> EveryMinutes:
    return EveryMinutes(30)


def hourly() -> EveryMinutes:
    return EveryMinutes(60)


def hourly_at(minute: int) -> CronExpression:
    _check_range("Minute", minute, 0, 59)
    return CronExpression(f"{minute} * * * *")


def daily() -> DailyAt:
    return DailyAt(0, 0)


def daily_at(at: str | time) -> DailyAt:
    t = parse_time(at)
    return DailyAt(t.hour, t.minute)


def twice_daily(first: int = 1, second: int = 13, minute: int = 0) -> CronExpression:
    _check_range("Hour", first, 0, 23)
    _check_range("Hour", second, 0, 23)
    _check_range("Minute", minute, 0, 59)
    return CronExpression(f"{minute} {first},{second} * * *")


def weekly() -> WeeklyOn:
    return WeeklyOn(0, 0, 0)


def weekly_on(weekday: int, at: str | time = "0:00") -> WeeklyOn:
    t = parse_time(at)
    return WeeklyOn(weekday, t.hour, t.minute)


def monthly() -> MonthlyOn:
    return MonthlyOn(1, 0, 0)


def monthly_on(day: int = 1, at: str | time = "0:00") -> MonthlyOn:
    t = parse_time(at)
    return MonthlyOn(day, t.hour, t.minute)


def quarterly() -> CronExpression:
    return CronExpression("0 0 1 1,4,7,10 *")


def yearly() -> CronExpression:
    return CronExpression("0 0 1 1 *")


def cron(expression: str) -> CronExpression:
    return CronExpression(expression)


# =============================================================================
# CONSTRAINTS
# =============================================================================


@dataclass(frozen=True)
class TimeWindow:
    """Restrict a task to a time-of-day window.

    Both ends are inclusive.  A window whose start is after its end wraps
    past midnight (``22:00``-``02:00``).  ``inverted`` turns the window into
    an exclusion ("unless between").
    """

    start: time
    end: time
    inverted: bool = False

    @classmethod
    def between(cls, start: str | time, end: str | time, *, inverted: bool = False) -> TimeWindow:
        return cls(parse_time(start), parse_time(end), inverted)

    def contains(self, moment: datetime) -> bool:
        t = time(moment.hour, moment.minute)
        if self.start <= self.end:
            inside = self.start <= t <= self.end
        else:
            inside = t >= self.start or t <= self.end
        return not inside if self.inverted else inside


class DayFilter(str, Enum):
    """Weekday/weekend restriction."""

    ANY = "any"
    WEEKDAYS = "weekdays"
    WEEKENDS = "weekends"

    def matches(self, moment: datetime) -> bool:
        if self is DayFilter.WEEKDAYS:
            return moment.weekday() < 5
        if self is DayFilter.WEEKENDS:
            return moment.weekday() >= 5
        return True


__all__ = [
    "FrequencyRule",
    "EveryMinutes",
    "DailyAt",
    "WeeklyOn",
    "MonthlyOn",
    "CronExpression",
    "TimeWindow",
    "DayFilter",
    "is_due",
    "to_cron",
    "describe",
    "parse_cron",
    "parse_time",
    "every_minute",
    "every_five_minutes",
    "every_ten_minutes",
    "every_fifteen_minutes",
    "every_thirty_minutes",
    "hourly",
    "hourly_at",
    "daily",
    "daily_at",
    "twice_daily",
    "weekly",
    "weekly_on",
    "monthly",
    "monthly_on",
    "quarterly",
    "yearly",
    "cron",
]
