"""Cadence core -- errors, logging, settings and time helpers.

Architecture::

    errors.py        Structured error hierarchy (CadenceError and friends)
    logging.py       structlog configuration and logger factory
    settings.py      pydantic-settings configuration (CADENCE_* env vars)
    timestamps.py    UTC and minute-granularity helpers (stdlib-only)
"""

from cadence.core.errors import (
    ActionFailure,
    CadenceError,
    ConfigError,
    DuplicateTaskError,
    ErrorCategory,
    ErrorContext,
    HookFailure,
    InvalidFrequencyExpression,
    InvalidRunTransition,
    LockStoreUnavailable,
)
from cadence.core.timestamps import truncate_to_minute, utc_now

__all__ = [
    "ActionFailure",
    "CadenceError",
    "ConfigError",
    "DuplicateTaskError",
    "ErrorCategory",
    "ErrorContext",
    "HookFailure",
    "InvalidFrequencyExpression",
    "InvalidRunTransition",
    "LockStoreUnavailable",
    "truncate_to_minute",
    "utc_now",
]
