"""Schedule interval vocabulary and the due check."""

from __future__ import annotations

from datetime import datetime, timedelta, tzinfo

from pipeline_crm.models import Schedule
from pipeline_crm.time_utils import to_utc

INTERVALS = ("hourly", "daily", "weekdays", "weekly")

INTERVAL_DURATIONS: dict[str, timedelta] = {
    "hourly": timedelta(hours=1),
    "daily": timedelta(days=1),
    "weekdays": timedelta(days=1),
    "weekly": timedelta(days=7),
}

_SATURDAY = 5


def is_valid_interval(value: str) -> bool:
    return value in INTERVALS


def is_due(schedule: Schedule, now: datetime, *, tz: tzinfo | None = None) -> bool:
    """Return True when an enabled schedule's interval has elapsed.

    ``weekdays`` schedules are never due on Saturday or Sunday in ``tz``,
    which defaults to the machine's local timezone.
    """
    if not schedule.enabled:
        return False
    now = to_utc(now)
    if schedule.interval == "weekdays" and now.astimezone(tz).weekday() >= _SATURDAY:
        return False
    if schedule.last_run_at is None:
        return True
    return now - to_utc(schedule.last_run_at) >= INTERVAL_DURATIONS[schedule.interval]
