"""Drain unprocessed events into a list of agent triggers."""

from __future__ import annotations

import logging
from dataclasses import dataclass

from pipeline_crm.events.store import EventStore

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class TriggerResult:
    """One hook matched by one event."""

    event_id: int
    event_type: str
    agent_name: str
    status: str = "triggered"


class EventProcessor:
    """Resolve hooks for unprocessed events and consume each event once."""

    def __init__(self, events: EventStore) -> None:
        self._events = events

    def process(self) -> list[TriggerResult]:
        """Return one trigger per matching hook; does not run any agent.

        Events without hooks are consumed, not retried. Deduplication across
        events is left to the caller.
        """
        results: list[TriggerResult] = []
        for event in self._events.unprocessed():
            hooks = self._events.hooks_for(event.event_type)
            for hook in hooks:
                results.append(
                    TriggerResult(
                        event_id=event.id,
                        event_type=event.event_type,
                        agent_name=hook.agent_name,
                    )
                )
            self._events.mark_processed(event.id)
            if not hooks:
                logger.debug("Event %s (%s) has no hooks", event.id, event.event_type)
        return results
