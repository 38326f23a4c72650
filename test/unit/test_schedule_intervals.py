"""Unit tests for schedule due checks."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest

from pipeline_crm.models import Schedule
from pipeline_crm.scheduler.intervals import INTERVAL_DURATIONS, is_due, is_valid_interval

WEDNESDAY = datetime(2026, 3, 4, 9, 0, tzinfo=timezone.utc)
SATURDAY = datetime(2026, 3, 7, 9, 0, tzinfo=timezone.utc)
SUNDAY = datetime(2026, 3, 8, 9, 0, tzinfo=timezone.utc)
EASTERN = timezone(timedelta(hours=-5))


def _schedule(interval: str, last_run_at=None, enabled: bool = True) -> Schedule:
    return Schedule(agent_name="digest", interval=interval, enabled=enabled, last_run_at=last_run_at)


def test_interval_vocabulary() -> None:
    assert all(is_valid_interval(name) for name in ("hourly", "daily", "weekdays", "weekly"))
    assert not is_valid_interval("monthly")
    assert INTERVAL_DURATIONS["weekly"] == timedelta(days=7)


def test_never_run_schedule_is_due() -> None:
    assert is_due(_schedule("weekly"), WEDNESDAY)


def test_disabled_schedule_is_never_due() -> None:
    assert not is_due(_schedule("hourly", enabled=False), WEDNESDAY)


def test_hourly_due_after_ninety_minutes_not_thirty() -> None:
    assert not is_due(_schedule("hourly", WEDNESDAY - timedelta(minutes=30)), WEDNESDAY)
    assert is_due(_schedule("hourly", WEDNESDAY - timedelta(minutes=90)), WEDNESDAY)


@pytest.mark.parametrize("now", [SATURDAY, SUNDAY])
def test_weekdays_schedule_skips_weekend(now) -> None:
    assert not is_due(_schedule("weekdays"), now, tz=timezone.utc)
    assert not is_due(_schedule("weekdays", now - timedelta(days=3)), now, tz=timezone.utc)


def test_weekdays_schedule_due_midweek() -> None:
    assert is_due(_schedule("weekdays", WEDNESDAY - timedelta(hours=24)), WEDNESDAY, tz=timezone.utc)
    assert not is_due(
        _schedule("weekdays", WEDNESDAY - timedelta(hours=23)), WEDNESDAY, tz=timezone.utc
    )


def test_weekdays_uses_local_calendar_day() -> None:
    """Friday evening in UTC-5 is already Saturday in UTC."""
    friday_evening = datetime(2026, 3, 7, 2, 0, tzinfo=timezone.utc)
    saturday_morning = datetime(2026, 3, 7, 14, 0, tzinfo=timezone.utc)

    assert is_due(_schedule("weekdays"), friday_evening, tz=EASTERN)
    assert not is_due(_schedule("weekdays"), friday_evening, tz=timezone.utc)
    assert not is_due(_schedule("weekdays"), saturday_morning, tz=EASTERN)


def test_daily_and_weekly_boundaries() -> None:
    assert is_due(_schedule("daily", WEDNESDAY - timedelta(days=1)), WEDNESDAY)
    assert not is_due(_schedule("weekly", WEDNESDAY - timedelta(days=6)), WEDNESDAY)
    assert is_due(_schedule("weekly", WEDNESDAY - timedelta(days=7)), WEDNESDAY)
