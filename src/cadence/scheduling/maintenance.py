"""Maintenance-mode checks.

While maintenance mode is active, only tasks flagged
``even_in_maintenance_mode`` are due.  The default check watches a marker
file: ``touch /srv/app/down`` to enter maintenance, ``rm`` it to leave.
"""

from __future__ import annotations

from pathlib import Path
from typing import Protocol, runtime_checkable


@runtime_checkable
class MaintenanceMode(Protocol):
    def is_active(self) -> bool: ...


class FileMaintenanceMode:
    """Active while ``path`` exists."""

    def __init__(self, path: str | Path) -> None:
        self.path = Path(path)

    def is_active(self) -> bool:
        return self.path.exists()

    def __repr__(self) -> str:
        return f"FileMaintenanceMode({str(self.path)!r})"


class StaticMaintenanceMode:
    """Programmatic toggle."""

    def __init__(self, active: bool = False) -> None:
        self.active = active

    def is_active(self) -> bool:
        return self.active
