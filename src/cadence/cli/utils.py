"""
CLI utility helpers - schedule loading and output formatting.
"""

from __future__ import annotations

import importlib
import json
from collections.abc import Iterable
from typing import Any

import typer
from rich.console import Console
from rich.table import Table

from cadence.core.errors import ConfigError
from cadence.core.settings import CadenceSettings
from cadence.scheduling import CommandRegistry, TaskRegistry, create_registry

console = Console()
err_console = Console(stderr=True)


# ── Schedule module loading ──────────────────────────────────────────────


def resolve_schedule_function(path: str):
    """Import ``package.module:function`` and return the function."""
    module_name, sep, attr = path.partition(":")
    if not sep or not module_name or not attr:
        raise ConfigError(f"Schedule module must look like 'package.module:function', got {path!r}")
    try:
        module = importlib.import_module(module_name)
    except ImportError as exc:
        raise ConfigError(f"Cannot import schedule module {module_name!r}: {exc}", cause=exc) from exc
    func = getattr(module, attr, None)
    if not callable(func):
        raise ConfigError(f"{module_name!r} has no callable {attr!r}")
    return func


def load_schedule(
    path: str | None, settings: CadenceSettings
) -> tuple[TaskRegistry, CommandRegistry]:
    """Build a registry and command registry populated by the schedule module.

    Raises:
        ConfigError: If no module is configured or it cannot be loaded
    """
    path = path or settings.schedule_module
    if not path:
        raise ConfigError("No schedule module; pass --schedule or set CADENCE_SCHEDULE_MODULE")
    register = resolve_schedule_function(path)
    registry = create_registry(settings)
    commands = CommandRegistry()
    register(registry, commands)
    return registry, commands


def fail(message: str, code: int = 1) -> typer.Exit:
    err_console.print(f"[bold red]Error[/bold red]: {message}")
    return typer.Exit(code=code)


# ── Output helpers ───────────────────────────────────────────────────────


def print_json(payload: Any) -> None:
    typer.echo(json.dumps(payload, indent=2, default=str))


def print_table(rows: Iterable[dict[str, Any]], columns: list[tuple[str, str]], *, title: str = "") -> None:
    """Render dict rows as a Rich table; ``columns`` is ``(key, header)``."""
    rows = list(rows)
    if not rows:
        console.print("[dim]No items.[/dim]")
        return
    table = Table(title=title or None, show_lines=False, pad_edge=False)
    for _, header in columns:
        table.add_column(header, overflow="fold")
    for row in rows:
        table.add_row(*("" if row.get(key) is None else str(row.get(key)) for key, _ in columns))
    console.print(table)
