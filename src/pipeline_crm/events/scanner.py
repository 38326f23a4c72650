"""Time-based event scanner for stale contacts and overdue tasks."""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Callable

from pipeline_crm.domain.store import DomainStore
from pipeline_crm.events.store import EventStore
from pipeline_crm.time_utils import to_iso, utc_now

logger = logging.getLogger(__name__)

CONTACT_STALE = "contact_stale"
TASK_OVERDUE = "task_overdue"
DEFAULT_STALE_DAYS = 14


class TimeEventScanner:
    """Emit deduplicated events for conditions that arise from elapsed time.

    An entity already represented by an unprocessed event of the same type is
    skipped, so repeated scans emit nothing new until that event is consumed.
    """

    def __init__(
        self,
        events: EventStore,
        domain: DomainStore,
        *,
        stale_days: int = DEFAULT_STALE_DAYS,
        now_provider: Callable[[], datetime] | None = None,
    ) -> None:
        self._events = events
        self._domain = domain
        self._stale_days = stale_days
        self._now_provider = now_provider or utc_now

    def scan(self) -> int:
        """Emit events for every newly qualifying entity and return the count."""
        now = self._now_provider()
        emitted = 0

        for contact in self._domain.list_stale_contacts(self._stale_days, now=now):
            if self._events.find_unprocessed(CONTACT_STALE, contact.id) is not None:
                continue
            self._events.emit(
                CONTACT_STALE,
                "contact",
                contact.id,
                {"name": contact.name, "last_updated": to_iso(contact.updated_at)},
            )
            emitted += 1

        for task in self._domain.list_overdue_tasks(today=now.date()):
            if self._events.find_unprocessed(TASK_OVERDUE, task.id) is not None:
                continue
            self._events.emit(
                TASK_OVERDUE,
                "task",
                task.id,
                {"title": task.title, "due": task.due},
            )
            emitted += 1

        if emitted:
            logger.info("Time scan emitted %s event(s)", emitted)
        return emitted
