"""Threading-based scheduler backend (the default).

┌──────────────────────────────────────────────────────────────────────────────┐
│  THREAD BACKEND                                                               │
│                                                                               │
│   start()                                                                     │
│     └── daemon thread:                                                        │
│           while not stop_event.wait(delay_until_next_tick()):                 │
│               tick_count += 1; last_tick = now()                              │
│               tick_callback()          (exceptions logged, loop continues)    │
│                                                                               │
│   stop()                                                                      │
│     └── stop_event.set(); thread.join(timeout)                                │
│                                                                               │
│   align_to_minute=True  → wake just after each wall-clock minute boundary    │
│   align_to_minute=False → wake every interval_seconds                         │
└──────────────────────────────────────────────────────────────────────────────┘
"""

from __future__ import annotations

import threading
from collections.abc import Callable
from datetime import datetime
from typing import Any

from cadence.core.logging import get_logger
from cadence.core.timestamps import utc_now
from cadence.scheduling.protocol import BackendHealth, TickCallback

logger = get_logger(__name__)

# wake slightly after the boundary so "now" truncates to the new minute
_ALIGN_SLACK_SECONDS = 0.05


def seconds_until_next_minute(now: datetime) -> float:
    elapsed = now.second + now.microsecond / 1_000_000
    return 60.0 - elapsed + _ALIGN_SLACK_SECONDS


class ThreadSchedulerBackend:
    """Daemon-thread ticker.

    Example:
        >>> backend = ThreadSchedulerBackend(align_to_minute=False)
        >>> backend.start(lambda: print("tick"), interval_seconds=5.0)
        >>> backend.stop()
    """

    name = "thread"

    def __init__(
        self,
        *,
        align_to_minute: bool = True,
        join_timeout: float = 5.0,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self.align_to_minute = align_to_minute
        self.join_timeout = join_timeout
        self.clock = clock
        self._stop_event = threading.Event()
        self._thread: threading.Thread | None = None
        self._tick_count = 0
        self._last_tick: datetime | None = None
        self._interval: float = 60.0
        self._started = False
        self._lock = threading.Lock()

    def _next_delay(self) -> float:
        if self.align_to_minute:
            return seconds_until_next_minute(self.clock())
        return self._interval

    def start(self, tick_callback: TickCallback, interval_seconds: float = 60.0) -> None:
        if self._started:
            logger.warning("backend_already_started", backend=self.name)
            return

        self._interval = interval_seconds
        self._stop_event.clear()

        def _loop() -> None:
            logger.info(
                "backend_started",
                backend=self.name,
                interval_seconds=interval_seconds,
                align_to_minute=self.align_to_minute,
            )
            while not self._stop_event.wait(self._next_delay()):
                with self._lock:
                    self._tick_count += 1
                    self._last_tick = self.clock()
                try:
                    tick_callback()
                except Exception:
                    logger.exception("tick_failed", backend=self.name)
            logger.info("backend_stopped", backend=self.name)

        self._thread = threading.Thread(target=_loop, daemon=True, name="cadence-scheduler")
        self._thread.start()
        self._started = True

    def stop(self) -> None:
        if not self._started:
            return

        self._stop_event.set()
        if self._thread:
            self._thread.join(timeout=self.join_timeout)
            if self._thread.is_alive():
                logger.warning("backend_thread_still_running", backend=self.name)

        self._started = False

    def health(self) -> dict[str, Any]:
        return self.get_health().to_dict()

    def get_health(self) -> BackendHealth:
        return BackendHealth(
            healthy=self.is_running,
            backend=self.name,
            tick_count=self._tick_count,
            last_tick=self._last_tick,
            extra={"interval_seconds": self._interval, "align_to_minute": self.align_to_minute},
        )

    @property
    def is_running(self) -> bool:
        return self._started and self._thread is not None and self._thread.is_alive()

    @property
    def tick_count(self) -> int:
        return self._tick_count

    @property
    def last_tick(self) -> datetime | None:
        return self._last_tick
