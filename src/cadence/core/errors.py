"""
Structured error types for the Cadence scheduler.

Every error raised by Cadence extends :class:`CadenceError` and carries a
category, a retryable flag, structured context and an optional chained
cause, so the logging collaborator can render failures without parsing
messages.

Manifesto:
    - **Typed Error Hierarchy:** One type per failure the scheduler reasons about
    - **Explicit Retry Semantics:** Each error knows if it's retryable
    - **Rich Context:** Errors carry the task name and phase for logging
    - **Error Chaining:** Preserve original exceptions while adding context

Architecture:
    ::

        ┌─────────────────────────────────────────────────────────────────┐
        │                       CadenceError                               │
        │  (category, retryable, context, cause)                          │
        ├─────────────────────────────────────────────────────────────────┤
        │                                                                  │
        │  InvalidFrequencyExpression   DuplicateTaskError                 │
        │  (VALIDATION, registration)   (VALIDATION, registration)         │
        │                                                                  │
        │  LockStoreUnavailable         HookFailure      ActionFailure     │
        │  (STORAGE, run time, skip)    (EXECUTION)      (EXECUTION)       │
        │                                                                  │
        │  ConfigError                  InvalidRunTransition               │
        │  (CONFIG)                     (INTERNAL)                         │
        └─────────────────────────────────────────────────────────────────┘

Propagation:
    Only ``InvalidFrequencyExpression`` (and ``DuplicateTaskError`` under the
    unique-names policy) reach the caller, at registration time.  Run-time
    errors are isolated per task and surface through the event recorder.

Examples:
    >>> error = LockStoreUnavailable("database is locked")
    >>> error.retryable
    True
    >>> error.with_context(task_name="reports:daily").context.task_name
    'reports:daily'
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any


class ErrorCategory(str, Enum):
    """Standard error categories for classification and routing."""

    CONFIG = "CONFIG"  # Missing or invalid settings, bad schedule module
    VALIDATION = "VALIDATION"  # Bad frequency rule, duplicate registration
    STORAGE = "STORAGE"  # Lock store unreachable
    EXECUTION = "EXECUTION"  # Hooks and actions
    SCHEDULING = "SCHEDULING"  # Evaluator/dispatcher errors
    INTERNAL = "INTERNAL"  # Bugs, unexpected state


@dataclass
class ErrorContext:
    """Structured metadata attached to an error.

    Attributes:
        task_name: Task the error belongs to
        phase: Run phase when the error happened (lock, before, action, after)
        expression: Offending frequency expression, if any
        metadata: Additional key-value pairs
    """

    task_name: str | None = None
    phase: str | None = None
    expression: str | None = None
    metadata: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for logging."""
        result = {}
        for key in ["task_name", "phase", "expression"]:
            value = getattr(self, key)
            if value is not None:
                result[key] = value
        if self.metadata:
            result.update(self.metadata)
        return result


class CadenceError(Exception):
    """
    Base exception for all Cadence errors.

    Subclasses set ``default_category`` and ``default_retryable`` to give
    sensible defaults for their domain; both can be overridden per instance.

    Examples:
        >>> error = CadenceError("Something went wrong")
        >>> error.category
        <ErrorCategory.INTERNAL: 'INTERNAL'>
        >>> error.to_dict()["retryable"]
        False
    """

    default_category: ErrorCategory = ErrorCategory.INTERNAL
    default_retryable: bool = False

    def __init__(
        self,
        message: str,
        *,
        category: ErrorCategory | None = None,
        retryable: bool | None = None,
        context: ErrorContext | None = None,
        cause: BaseException | None = None,
    ):
        super().__init__(message)
        self.message = message
        self.category = category or self.default_category
        self.retryable = retryable if retryable is not None else self.default_retryable
        self.context = context or ErrorContext()
        self.cause = cause

        if cause is not None:
            self.__cause__ = cause

    def with_context(self, **kwargs: Any) -> CadenceError:
        """
        Add context to this error (fluent API).

        Usage:
            raise HookFailure("before hook raised").with_context(
                task_name="emails:send", phase="before"
            )
        """
        for key, value in kwargs.items():
            if key != "metadata" and hasattr(self.context, key):
                setattr(self.context, key, value)
            else:
                self.context.metadata[key] = value
        return self

    def to_dict(self) -> dict[str, Any]:
        """Convert error to dictionary for logging/serialization."""
        result = {
            "error_type": self.__class__.__name__,
            "message": self.message,
            "category": self.category.value,
            "retryable": self.retryable,
        }
        context_dict = self.context.to_dict()
        if context_dict:
            result["context"] = context_dict
        if self.cause is not None:
            result["cause"] = str(self.cause)
        return result

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}({self.message!r}, category={self.category.value})"


# =============================================================================
# REGISTRATION ERRORS
# =============================================================================


class InvalidFrequencyExpression(CadenceError):
    """A frequency rule or cron expression could not be parsed or is out of range.

    Raised synchronously at registration; the task never enters the registry.
    """

    default_category = ErrorCategory.VALIDATION
    default_retryable = False

    def __init__(self, message: str, *, expression: str | None = None, **kwargs: Any):
        super().__init__(message, **kwargs)
        self.expression = expression
        if expression is not None:
            self.context.expression = expression


class DuplicateTaskError(CadenceError):
    """A task name is already registered and the registry forbids replacement."""

    default_category = ErrorCategory.VALIDATION
    default_retryable = False

    def __init__(self, name: str):
        self.task_name = name
        super().__init__(f"Task already registered: {name}", context=ErrorContext(task_name=name))


class ConfigError(CadenceError):
    """Invalid configuration, such as an unloadable schedule module."""

    default_category = ErrorCategory.CONFIG
    default_retryable = False


# =============================================================================
# RUN-TIME ERRORS
# =============================================================================


class LockStoreUnavailable(CadenceError):
    """The lock store could not be reached.

    The dispatcher skips the run instead of executing without the
    overlap guarantee.
    """

    default_category = ErrorCategory.STORAGE
    default_retryable = True


class HookFailure(CadenceError):
    """A pre-execution hook raised; the main action was never started."""

    default_category = ErrorCategory.EXECUTION
    default_retryable = False


class ActionFailure(CadenceError):
    """The task action raised or exited non-zero.

    Recorded in the ExecutionResult and event stream, never raised out of
    the evaluator.
    """

    default_category = ErrorCategory.EXECUTION
    default_retryable = False


class InvalidRunTransition(CadenceError):
    """A run attempted an illegal state transition."""

    default_category = ErrorCategory.INTERNAL
    default_retryable = False

    def __init__(self, current: str, new: str):
        self.current = current
        self.new = new
        super().__init__(f"Invalid run state transition: {current} -> {new}")


# =============================================================================
# UTILITY FUNCTIONS
# =============================================================================


def is_retryable(error: BaseException) -> bool:
    """Check if an error is retryable."""
    if isinstance(error, CadenceError):
        return error.retryable
    return isinstance(error, (ConnectionError, TimeoutError))


__all__ = [
    "ErrorCategory",
    "ErrorContext",
    "CadenceError",
    "InvalidFrequencyExpression",
    "DuplicateTaskError",
    "ConfigError",
    "LockStoreUnavailable",
    "HookFailure",
    "ActionFailure",
    "InvalidRunTransition",
    "is_retryable",
]
