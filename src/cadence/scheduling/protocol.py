"""Scheduler backend protocol.

┌──────────────────────────────────────────────────────────────────────────────┐
│  SCHEDULER BACKEND PROTOCOL                                                   │
│                                                                               │
│  Backends decide WHEN a tick happens; SchedulerService decides WHAT happens  │
│  on a tick (evaluate due tasks, dispatch them).                               │
│                                                                               │
│   ┌─────────────────┐     tick()      ┌──────────────────────┐               │
│   │ Thread backend  │ ──────────────► │ SchedulerService     │               │
│   │ (minute-aligned)│                 │   run_due(now)       │               │
│   └─────────────────┘                 └──────────────────────┘               │
│                                                                               │
│   ┌─────────────────┐     run_due()                                           │
│   │ system cron     │ ──────────────►  `cadence schedule run` (one tick)     │
│   └─────────────────┘                                                         │
└──────────────────────────────────────────────────────────────────────────────┘
"""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Protocol, runtime_checkable

from cadence.core.timestamps import to_iso8601

TickCallback = Callable[[], object]


@runtime_checkable
class SchedulerBackend(Protocol):
    """Timing-only contract: call ``tick_callback`` on a schedule.

    Example (custom backend):
        >>> class ManualBackend:
        ...     name = "manual"
        ...     def start(self, tick_callback, interval_seconds=60.0):
        ...         self.tick = tick_callback
        ...     def stop(self):
        ...         pass
        ...     def health(self):
        ...         return {"healthy": True, "backend": self.name}
    """

    name: str

    def start(self, tick_callback: TickCallback, interval_seconds: float = 60.0) -> None:
        """Begin calling ``tick_callback``; must not block."""
        ...

    def stop(self) -> None:
        """Stop ticking, waiting briefly for an in-flight tick."""
        ...

    def health(self) -> dict[str, Any]:
        """At least ``healthy``, ``backend``, ``tick_count`` and ``last_tick``."""
        ...


@dataclass
class BackendHealth:
    """Structured backend health response."""

    healthy: bool
    backend: str
    tick_count: int = 0
    last_tick: datetime | None = None
    extra: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {
            "healthy": self.healthy,
            "backend": self.backend,
            "tick_count": self.tick_count,
            "last_tick": to_iso8601(self.last_tick),
            **self.extra,
        }
