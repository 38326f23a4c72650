"""Durable event queue and event-to-agent hook registry."""

from __future__ import annotations

import logging
from typing import Any, Callable, Mapping

from sqlalchemy import select, update
from sqlalchemy.orm import Session

from pipeline_crm.errors import NotFoundError
from pipeline_crm.models import Event, EventHook
from pipeline_crm.services.database import run_in_session

logger = logging.getLogger(__name__)


class EventStore:
    """Repository for events and the hooks that route them to agents."""

    def __init__(self, session_factory: Callable[[], Session]) -> None:
        """Initialize the store with a SQLAlchemy session factory."""
        self._session_factory = session_factory

    def emit(
        self,
        event_type: str,
        entity_type: str,
        entity_id: int,
        payload: Mapping[str, Any] | None = None,
    ) -> Event:
        """Append a new unprocessed event."""

        def handler(session: Session) -> Event:
            event = Event(
                event_type=event_type,
                entity_type=entity_type,
                entity_id=entity_id,
                payload=dict(payload or {}),
                processed=False,
            )
            session.add(event)
            session.flush()
            return event

        event = run_in_session(self._session_factory, handler)
        logger.debug(
            "Event emitted: id=%s type=%s entity=%s:%s",
            event.id,
            event_type,
            entity_type,
            entity_id,
        )
        return event

    def unprocessed(self) -> list[Event]:
        """Return unprocessed events in creation order."""

        def handler(session: Session) -> list[Event]:
            query = select(Event).where(Event.processed.is_(False)).order_by(Event.id)
            return list(session.scalars(query))

        return run_in_session(self._session_factory, handler)

    def find_unprocessed(self, event_type: str, entity_id: int) -> Event | None:
        """Return an unprocessed event for the (event_type, entity_id) pair, if any."""

        def handler(session: Session) -> Event | None:
            query = (
                select(Event)
                .where(
                    Event.event_type == event_type,
                    Event.entity_id == entity_id,
                    Event.processed.is_(False),
                )
                .limit(1)
            )
            return session.scalars(query).first()

        return run_in_session(self._session_factory, handler)

    def mark_processed(self, event_id: int) -> bool:
        """Flip the processed flag; returns False when it was already set."""

        def handler(session: Session) -> bool:
            result = session.execute(
                update(Event)
                .where(Event.id == event_id, Event.processed.is_(False))
                .values(processed=True)
            )
            return result.rowcount > 0

        return run_in_session(self._session_factory, handler)

    def get(self, event_id: int) -> Event:
        """Fetch an event by id."""

        def handler(session: Session) -> Event:
            event = session.get(Event, event_id)
            if event is None:
                raise NotFoundError("event", event_id)
            return event

        return run_in_session(self._session_factory, handler)

    def list_events(self, *, limit: int = 50, include_processed: bool = True) -> list[Event]:
        """Return the newest events."""

        def handler(session: Session) -> list[Event]:
            query = select(Event)
            if not include_processed:
                query = query.where(Event.processed.is_(False))
            return list(session.scalars(query.order_by(Event.id.desc()).limit(limit)))

        return run_in_session(self._session_factory, handler)

    def hooks_for(self, event_type: str) -> list[EventHook]:
        """Return enabled hooks registered for an event type."""

        def handler(session: Session) -> list[EventHook]:
            query = (
                select(EventHook)
                .where(EventHook.event_type == event_type, EventHook.enabled.is_(True))
                .order_by(EventHook.id)
            )
            return list(session.scalars(query))

        return run_in_session(self._session_factory, handler)

    def add_hook(self, event_type: str, agent_name: str) -> EventHook:
        """Register a hook routing an event type to an agent."""

        def handler(session: Session) -> EventHook:
            hook = EventHook(event_type=event_type, agent_name=agent_name, enabled=True)
            session.add(hook)
            session.flush()
            return hook

        hook = run_in_session(self._session_factory, handler)
        logger.info("Hook added: %s -> %s", event_type, agent_name)
        return hook

    def remove_hook(self, event_type: str, agent_name: str) -> None:
        """Delete the hook for the exact event type and agent pair."""

        def handler(session: Session) -> None:
            hook = session.scalars(
                select(EventHook)
                .where(EventHook.event_type == event_type, EventHook.agent_name == agent_name)
                .order_by(EventHook.id)
                .limit(1)
            ).first()
            if hook is None:
                raise NotFoundError(
                    "hook",
                    f"{event_type}->{agent_name}",
                    f'No hook found for event "{event_type}" → agent "{agent_name}"',
                )
            session.delete(hook)

        run_in_session(self._session_factory, handler)
        logger.info("Hook removed: %s -> %s", event_type, agent_name)

    def list_hooks(self) -> list[EventHook]:
        """Return all hooks, enabled or not."""

        def handler(session: Session) -> list[EventHook]:
            return list(session.scalars(select(EventHook).order_by(EventHook.id)))

        return run_in_session(self._session_factory, handler)
