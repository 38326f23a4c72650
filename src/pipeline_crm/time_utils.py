"""Time helpers for UTC storage and ISO-8601 text timestamps."""

from __future__ import annotations

from datetime import date, datetime, timezone


def utc_now() -> datetime:
    """Return the current time as an aware UTC datetime."""
    return datetime.now(timezone.utc)


def to_utc(value: datetime) -> datetime:
    """Convert a datetime to UTC, treating naive values as UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def to_iso(value: datetime) -> str:
    """Render a datetime as ISO-8601 text in UTC."""
    return to_utc(value).isoformat(timespec="microseconds")


def parse_iso(value: str) -> datetime:
    """Parse ISO-8601 text into an aware UTC datetime."""
    text = value.strip()
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    return to_utc(datetime.fromisoformat(text))


def parse_due(value: str | date | datetime | None) -> date | None:
    """Return the calendar date for a task due value.

    Free-form text such as "next Friday" has no calendar date and yields None.
    """
    if value is None:
        return None
    if isinstance(value, datetime):
        return to_utc(value).date()
    if isinstance(value, date):
        return value
    if not isinstance(value, str):
        return None
    text = value.strip()
    if not text:
        return None
    try:
        if len(text) == 10:
            return date.fromisoformat(text)
        return parse_iso(text).date()
    except ValueError:
        return None
