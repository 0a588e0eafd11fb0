"""
UTC and minute-granularity timestamp helpers (stdlib-only).

The scheduler evaluates frequency rules at minute granularity, so every
"now" that reaches the evaluator is first converted to the reference
timezone and truncated to the minute.
"""

from datetime import UTC, datetime, tzinfo


def utc_now() -> datetime:
    """Get current UTC datetime."""
    return datetime.now(UTC)


def truncate_to_minute(moment: datetime, tz: tzinfo | None = None) -> datetime:
    """Convert ``moment`` to ``tz`` (when given) and drop seconds.

    Naive datetimes are assumed to be UTC.
    """
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=UTC)
    if tz is not None:
        moment = moment.astimezone(tz)
    return moment.replace(second=0, microsecond=0)


def to_iso8601(dt: datetime | None) -> str | None:
    """Convert datetime to ISO 8601 string."""
    if dt is None:
        return None
    return dt.isoformat()
