"""Task actions - what a scheduled task actually runs.

Three kinds of action, all returning an :class:`ExecutionResult` and never
raising (an action error is an ``ActionFailure`` recorded in the result):

    CommandAction("reports:generate", ["--daily"])
        A named command resolved in a :class:`CommandRegistry`.  Commands
        receive their arguments plus dedicated stdout/stderr streams, so
        output capture stays per-run even on background threads.

    CallableAction(func, args, kwargs)
        An in-process callable.  A non-zero int return is NON_ZERO, a str
        return becomes stdout, an exception is EXCEPTION with its traceback
        captured in stderr.

    ShellAction("node /srv/script.js", timeout_seconds=300)
        An external process with captured stdout/stderr.  On timeout the
        process group is killed and the run ends with exit code 124.
"""

from __future__ import annotations

import io
import os
import shlex
import signal
import subprocess
import traceback
from collections.abc import Callable, Iterator, Sequence
from dataclasses import dataclass, field, replace
from datetime import datetime
from typing import Any, Protocol, TextIO

from cadence.core.logging import get_logger
from cadence.core.timestamps import utc_now
from cadence.scheduling.models import ExecutionResult, ExitStatus

logger = get_logger(__name__)

TIMEOUT_EXIT_CODE = 124

Command = Callable[[list[str], TextIO, TextIO], int | None]


class CommandRegistry:
    """Named commands available to ``CommandAction``.

    Example:
        >>> commands = CommandRegistry()
        >>> @commands.command("inspire")
        ... def inspire(args, out, err):
        ...     out.write("Simplicity is the ultimate sophistication.\\n")
    """

    def __init__(self) -> None:
        self._commands: dict[str, Command] = {}

    def register(self, name: str, handler: Command) -> None:
        if not name:
            raise ValueError("Command name must not be empty")
        self._commands[name] = handler

    def command(self, name: str) -> Callable[[Command], Command]:
        """Decorator form of :meth:`register`."""

        def decorator(handler: Command) -> Command:
            self.register(name, handler)
            return handler

        return decorator

    def get(self, name: str) -> Command | None:
        return self._commands.get(name)

    def __contains__(self, name: object) -> bool:
        return name in self._commands

    def __iter__(self) -> Iterator[str]:
        return iter(self._commands)

    def __len__(self) -> int:
        return len(self._commands)


class Action(Protocol):
    """Anything the dispatcher can execute."""

    def execute(self, task_name: str, commands: CommandRegistry) -> ExecutionResult: ...

    def describe(self) -> str: ...


def exception_result(
    task_name: str, started_at: datetime, exc: BaseException, stdout: str = "", stderr: str = ""
) -> ExecutionResult:
    trace = "".join(traceback.format_exception(type(exc), exc, exc.__traceback__))
    return ExecutionResult(
        task_name=task_name,
        started_at=started_at,
        finished_at=utc_now(),
        status=ExitStatus.EXCEPTION,
        exit_code=None,
        stdout=stdout,
        stderr=stderr + trace,
        error=f"{type(exc).__name__}: {exc}",
    )


def _exit_result(task_name: str, started_at: datetime, code: int, stdout: str, stderr: str) -> ExecutionResult:
    return ExecutionResult(
        task_name=task_name,
        started_at=started_at,
        finished_at=utc_now(),
        status=ExitStatus.SUCCESS if code == 0 else ExitStatus.NON_ZERO,
        exit_code=code,
        stdout=stdout,
        stderr=stderr,
        error=None if code == 0 else f"exited with code {code}",
    )


@dataclass(frozen=True)
class CommandAction:
    name: str
    args: tuple[str, ...] = ()

    def execute(self, task_name: str, commands: CommandRegistry) -> ExecutionResult:
        started_at = utc_now()
        handler = commands.get(self.name)
        if handler is None:
            return exception_result(task_name, started_at, LookupError(f"Unknown command: {self.name}"))

        out, err = io.StringIO(), io.StringIO()
        try:
            code = handler(list(self.args), out, err)
        except Exception as exc:
            return exception_result(task_name, started_at, exc, out.getvalue(), err.getvalue())
        return _exit_result(task_name, started_at, int(code or 0), out.getvalue(), err.getvalue())

    def describe(self) -> str:
        return " ".join([self.name, *self.args])


@dataclass(frozen=True)
class CallableAction:
    func: Callable[..., Any]
    args: tuple[Any, ...] = ()
    kwargs: dict[str, Any] = field(default_factory=dict, hash=False)

    def execute(self, task_name: str, commands: CommandRegistry) -> ExecutionResult:
        started_at = utc_now()
        try:
            value = self.func(*self.args, **self.kwargs)
        except Exception as exc:
            return exception_result(task_name, started_at, exc)

        if isinstance(value, bool) or value is None:
            return _exit_result(task_name, started_at, 0, "", "")
        if isinstance(value, int):
            return _exit_result(task_name, started_at, value, "", "")
        if isinstance(value, str):
            return _exit_result(task_name, started_at, 0, value, "")
        return _exit_result(task_name, started_at, 0, repr(value), "")

    def describe(self) -> str:
        return getattr(self.func, "__qualname__", None) or repr(self.func)


@dataclass(frozen=True)
class ShellAction:
    command: str | tuple[str, ...]
    timeout_seconds: float | None = None
    cwd: str | None = None

    def _argv(self) -> list[str]:
        if isinstance(self.command, str):
            return shlex.split(self.command)
        return list(self.command)

    def execute(self, task_name: str, commands: CommandRegistry) -> ExecutionResult:
        started_at = utc_now()
        try:
            proc = subprocess.Popen(
                self._argv(),
                stdout=subprocess.PIPE,
                stderr=subprocess.PIPE,
                encoding="utf-8",
                errors="replace",
                cwd=self.cwd,
                start_new_session=os.name != "nt",
            )
        except (OSError, ValueError) as exc:
            return exception_result(task_name, started_at, exc)

        try:
            out, err = proc.communicate(timeout=self.timeout_seconds)
        except subprocess.TimeoutExpired:
            self._kill(proc)
            out, err = proc.communicate()
            logger.warning("shell_action_timeout", task=task_name, timeout=self.timeout_seconds)
            result = _exit_result(task_name, started_at, TIMEOUT_EXIT_CODE, out, err)
            return replace(result, error=f"timed out after {self.timeout_seconds}s")
        return _exit_result(task_name, started_at, proc.returncode, out, err)

    @staticmethod
    def _kill(proc: subprocess.Popen) -> None:
        if os.name != "nt":
            try:
                os.killpg(os.getpgid(proc.pid), signal.SIGKILL)
                return
            except ProcessLookupError:
                return
        proc.kill()

    def describe(self) -> str:
        if isinstance(self.command, str):
            return self.command
        return shlex.join(self.command)


def shell(command: str | Sequence[str], timeout_seconds: float | None = None) -> ShellAction:
    """Build a :class:`ShellAction` from a string or argv sequence."""
    if isinstance(command, str):
        return ShellAction(command, timeout_seconds)
    return ShellAction(tuple(command), timeout_seconds)


__all__ = [
    "Action",
    "CallableAction",
    "Command",
    "CommandAction",
    "CommandRegistry",
    "ShellAction",
    "TIMEOUT_EXIT_CODE",
    "exception_result",
    "shell",
]
