"""Datetime helpers: lax backend timestamps -> timezone-aware datetimes."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pendulum


def parse_timestamp(value: str | datetime | None, default_tz: str = "UTC") -> datetime | None:
    """Parse a best-effort backend timestamp.

    Backend metadata is optional and loosely formatted, so anything that does
    not parse yields None instead of an error.  Naive values get default_tz.
    """
    if value is None:
        return None
    if isinstance(value, datetime):
        if value.tzinfo is None:
            value = value.replace(tzinfo=pendulum.timezone(default_tz))  # type: ignore[arg-type]
        return value

    value_str = value.strip()
    if not value_str:
        return None
    try:
        parsed = pendulum.parse(value_str, tz=default_tz, strict=False)
    except ValueError:
        return None
    if not isinstance(parsed, pendulum.DateTime):
        # pendulum.parse returns Date for date-only strings
        if not isinstance(parsed, pendulum.Date):
            return None
        parsed = pendulum.datetime(parsed.year, parsed.month, parsed.day, tz=default_tz)
    return parsed


def now_utc() -> datetime:
    """Return the current UTC datetime."""
    return datetime.now(timezone.utc)


def is_recent(value: datetime | None, days: int, now: datetime | None = None) -> bool:
    """Return True if value lies within the last ``days`` days."""
    if value is None:
        return False
    reference = now or now_utc()
    return value > reference - timedelta(days=days)


def format_iso(dt: datetime | None) -> str | None:
    """Format datetime as ISO 8601 for JSON serialization."""
    if dt is None:
        return None
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.isoformat()
