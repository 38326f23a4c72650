"""Domain store for CRM entities read and mutated by agent actions."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import date, datetime, timedelta
from typing import Any, Callable, Sequence

from sqlalchemy import or_, select
from sqlalchemy.orm import Session

from pipeline_crm.errors import NotFoundError, ValidationError
from pipeline_crm.events.store import EventStore
from pipeline_crm.models import Contact, Deal, Edge, Interaction, Organization, Task, to_dict
from pipeline_crm.services.database import run_in_session
from pipeline_crm.time_utils import parse_due, utc_now

logger = logging.getLogger(__name__)

DEFAULT_STAGES = ("lead", "qualified", "proposal", "negotiation", "closed_won", "closed_lost")


@dataclass(frozen=True)
class InteractionInput:
    """Input payload for logging an interaction."""

    type: str
    contact_id: int | None = None
    deal_id: int | None = None
    direction: str | None = None
    subject: str | None = None
    body: str | None = None
    message_id: str | None = None


class DomainStore:
    """Simple reads and writes over contacts, deals, tasks, interactions, and edges."""

    def __init__(
        self,
        session_factory: Callable[[], Session],
        *,
        stages: Sequence[str] = DEFAULT_STAGES,
        events: EventStore | None = None,
        now_provider: Callable[[], datetime] | None = None,
    ) -> None:
        """Initialize the store; ``events`` receives mutation events when given."""
        self._session_factory = session_factory
        self._stages = tuple(stages)
        self._events = events
        self._now_provider = now_provider or utc_now

    @property
    def stages(self) -> tuple[str, ...]:
        """Return the configured pipeline stages."""
        return self._stages

    def _execute(self, handler):
        """Execute repository work inside a managed session."""
        return run_in_session(self._session_factory, handler)

    def _emit(self, event_type: str, entity_type: str, entity_id: int, payload: dict[str, Any]) -> None:
        """Forward a mutation event to the event store when one is attached."""
        if self._events is None:
            return
        self._events.emit(event_type, entity_type, entity_id, payload)

    # Writes

    def create_organization(self, name: str, *, domain: str | None = None, industry: str | None = None) -> Organization:
        """Create an organization."""

        def handler(session: Session) -> Organization:
            timestamp = self._now_provider()
            org = Organization(
                name=name,
                domain=domain,
                industry=industry,
                created_at=timestamp,
                updated_at=timestamp,
            )
            session.add(org)
            session.flush()
            return org

        return self._execute(handler)

    def create_contact(
        self,
        name: str,
        *,
        email: str | None = None,
        org_id: int | None = None,
        role: str | None = None,
        warmth: str = "cold",
        tags: list[str] | None = None,
        updated_at: datetime | None = None,
    ) -> Contact:
        """Create a contact."""

        def handler(session: Session) -> Contact:
            timestamp = self._now_provider()
            contact = Contact(
                name=name,
                email=email,
                org_id=org_id,
                role=role,
                warmth=warmth,
                tags=list(tags or []),
                created_at=timestamp,
                updated_at=updated_at or timestamp,
            )
            session.add(contact)
            session.flush()
            return contact

        return self._execute(handler)

    def create_deal(
        self,
        title: str,
        *,
        contact_id: int | None = None,
        org_id: int | None = None,
        value: int | None = None,
        stage: str | None = None,
        priority: str = "medium",
    ) -> Deal:
        """Create a deal in the first pipeline stage unless one is given."""
        stage = stage or self._stages[0]
        self._require_stage(stage)

        def handler(session: Session) -> Deal:
            timestamp = self._now_provider()
            deal = Deal(
                title=title,
                contact_id=contact_id,
                org_id=org_id,
                value=value,
                stage=stage,
                priority=priority,
                created_at=timestamp,
                updated_at=timestamp,
            )
            session.add(deal)
            session.flush()
            return deal

        return self._execute(handler)

    def create_task(
        self,
        title: str,
        *,
        contact_id: int | None = None,
        deal_id: int | None = None,
        due: str | None = None,
    ) -> Task:
        """Create an open task."""

        def handler(session: Session) -> Task:
            timestamp = self._now_provider()
            task = Task(
                title=title,
                contact_id=contact_id,
                deal_id=deal_id,
                due=due,
                completed=False,
                created_at=timestamp,
                updated_at=timestamp,
            )
            session.add(task)
            session.flush()
            return task

        task = self._execute(handler)
        self._emit("task_created", "task", task.id, {"title": task.title, "due": task.due})
        return task

    def complete_task(self, task_id: int) -> Task:
        """Mark a task completed."""

        def handler(session: Session) -> Task:
            task = _fetch(session, Task, task_id, "task")
            timestamp = self._now_provider()
            task.completed = True
            task.completed_at = timestamp
            task.updated_at = timestamp
            return task

        task = self._execute(handler)
        self._emit("task_completed", "task", task.id, {"title": task.title})
        return task

    def move_deal(self, deal_id: int, stage: str) -> Deal:
        """Move a deal to another pipeline stage."""
        self._require_stage(stage)

        def handler(session: Session) -> tuple[Deal, str]:
            deal = _fetch(session, Deal, deal_id, "deal")
            previous = deal.stage
            deal.stage = stage
            deal.updated_at = self._now_provider()
            return deal, previous

        deal, previous = self._execute(handler)
        self._emit(
            "deal_stage_changed",
            "deal",
            deal.id,
            {"title": deal.title, "from_stage": previous, "to_stage": stage},
        )
        return deal

    def update_contact_warmth(self, contact_id: int, warmth: str) -> Contact:
        """Set a contact's warmth and touch it."""

        def handler(session: Session) -> Contact:
            contact = _fetch(session, Contact, contact_id, "contact")
            contact.warmth = warmth
            contact.updated_at = self._now_provider()
            return contact

        contact = self._execute(handler)
        self._emit("contact_warmth_changed", "contact", contact.id, {"warmth": warmth})
        return contact

    def update_deal_priority(self, deal_id: int, priority: str) -> Deal:
        """Set a deal's priority."""

        def handler(session: Session) -> Deal:
            deal = _fetch(session, Deal, deal_id, "deal")
            deal.priority = priority
            deal.updated_at = self._now_provider()
            return deal

        return self._execute(handler)

    def touch_contact(self, contact_id: int) -> None:
        """Bump a contact's updated_at so it is no longer considered stale."""

        def handler(session: Session) -> None:
            contact = session.get(Contact, contact_id)
            if contact is not None:
                contact.updated_at = self._now_provider()

        self._execute(handler)

    def log_interaction(self, payload: InteractionInput) -> Interaction:
        """Record an interaction."""

        def handler(session: Session) -> Interaction:
            timestamp = self._now_provider()
            interaction = Interaction(
                contact_id=payload.contact_id,
                deal_id=payload.deal_id,
                type=payload.type,
                direction=payload.direction,
                subject=payload.subject,
                body=payload.body,
                message_id=payload.message_id,
                occurred_at=timestamp,
                created_at=timestamp,
            )
            session.add(interaction)
            session.flush()
            return interaction

        interaction = self._execute(handler)
        if interaction.contact_id is not None:
            self._emit(
                "interaction_logged",
                "contact",
                interaction.contact_id,
                {"interaction_id": interaction.id, "type": interaction.type},
            )
        return interaction

    def create_edge(
        self,
        from_type: str,
        from_id: int,
        to_type: str,
        to_id: int,
        relation: str,
    ) -> Edge:
        """Create a relationship edge between two entities."""

        def handler(session: Session) -> Edge:
            edge = Edge(
                from_type=from_type,
                from_id=from_id,
                to_type=to_type,
                to_id=to_id,
                relation=relation,
                created_at=self._now_provider(),
            )
            session.add(edge)
            session.flush()
            return edge

        return self._execute(handler)

    # Reads

    def get_contact(self, contact_id: int) -> Contact | None:
        """Fetch a contact by id."""
        return self._execute(lambda session: session.get(Contact, contact_id))

    def get_deal(self, deal_id: int) -> Deal | None:
        """Fetch a deal by id."""
        return self._execute(lambda session: session.get(Deal, deal_id))

    def get_task(self, task_id: int) -> Task | None:
        """Fetch a task by id."""
        return self._execute(lambda session: session.get(Task, task_id))

    def list_stale_contacts(self, days: int, *, now: datetime | None = None) -> list[Contact]:
        """Return contacts whose last update is at least ``days`` old."""
        cutoff = (now or self._now_provider()) - timedelta(days=days)

        def handler(session: Session) -> list[Contact]:
            query = select(Contact).where(Contact.updated_at <= cutoff).order_by(Contact.id)
            return list(session.scalars(query))

        return self._execute(handler)

    def list_overdue_tasks(self, *, today: date | None = None) -> list[Task]:
        """Return open tasks whose due date is before today.

        Tasks whose ``due`` is not a calendar date are never overdue.
        """
        today = today or self._now_provider().date()
        overdue = []
        for task in self.list_tasks():
            due = parse_due(task.due)
            if due is None:
                if task.due:
                    logger.debug("Task %s due %r is not a date; skipping", task.id, task.due)
                continue
            if due < today:
                overdue.append(task)
        return overdue

    def list_tasks(
        self,
        *,
        contact_id: int | None = None,
        deal_id: int | None = None,
        include_completed: bool = False,
    ) -> list[Task]:
        """Return tasks filtered by contact or deal."""

        def handler(session: Session) -> list[Task]:
            query = select(Task)
            if not include_completed:
                query = query.where(Task.completed.is_(False))
            if contact_id is not None:
                query = query.where(Task.contact_id == contact_id)
            if deal_id is not None:
                query = query.where(Task.deal_id == deal_id)
            return list(session.scalars(query.order_by(Task.id)))

        return self._execute(handler)

    def search_contacts(self, query: str | None = None, *, warmth: str | None = None) -> list[Contact]:
        """Return contacts whose name or email contains the query."""

        def handler(session: Session) -> list[Contact]:
            statement = select(Contact)
            if query:
                pattern = f"%{query.lower()}%"
                statement = statement.where(
                    or_(Contact.name.ilike(pattern), Contact.email.ilike(pattern))
                )
            if warmth:
                statement = statement.where(Contact.warmth == warmth)
            return list(session.scalars(statement.order_by(Contact.id)))

        return self._execute(handler)

    def list_deals(self, *, stage: str | None = None, priority: str | None = None) -> list[Deal]:
        """Return deals filtered by stage or priority."""

        def handler(session: Session) -> list[Deal]:
            query = select(Deal)
            if stage:
                query = query.where(Deal.stage == stage)
            if priority:
                query = query.where(Deal.priority == priority)
            return list(session.scalars(query.order_by(Deal.id)))

        return self._execute(handler)

    def get_contact_with_history(self, contact_id: int) -> dict[str, Any] | None:
        """Return a contact with its interactions, deals, and open tasks."""

        def handler(session: Session) -> dict[str, Any] | None:
            contact = session.get(Contact, contact_id)
            if contact is None:
                return None
            interactions = session.scalars(
                select(Interaction)
                .where(Interaction.contact_id == contact_id)
                .order_by(Interaction.occurred_at.desc())
            )
            deals = session.scalars(select(Deal).where(Deal.contact_id == contact_id))
            tasks = session.scalars(select(Task).where(Task.contact_id == contact_id))
            organization = session.get(Organization, contact.org_id) if contact.org_id else None
            return {
                **to_dict(contact),
                "organization": to_dict(organization) if organization else None,
                "interactions": [to_dict(row) for row in interactions],
                "deals": [to_dict(row) for row in deals],
                "tasks": [to_dict(row) for row in tasks],
            }

        return self._execute(handler)

    def get_deal_detail(self, deal_id: int) -> dict[str, Any] | None:
        """Return a deal with its contact, interactions, and tasks."""

        def handler(session: Session) -> dict[str, Any] | None:
            deal = session.get(Deal, deal_id)
            if deal is None:
                return None
            contact = session.get(Contact, deal.contact_id) if deal.contact_id else None
            interactions = session.scalars(
                select(Interaction)
                .where(Interaction.deal_id == deal_id)
                .order_by(Interaction.occurred_at.desc())
            )
            tasks = session.scalars(select(Task).where(Task.deal_id == deal_id))
            return {
                **to_dict(deal),
                "contact": to_dict(contact) if contact else None,
                "interactions": [to_dict(row) for row in interactions],
                "tasks": [to_dict(row) for row in tasks],
            }

        return self._execute(handler)

    def _require_stage(self, stage: str) -> None:
        """Raise when the stage is not part of the configured pipeline."""
        if stage not in self._stages:
            raise ValidationError(
                f'Invalid stage "{stage}". Valid stages: {", ".join(self._stages)}'
            )


def _fetch(session: Session, model, entity_id: int, kind: str):
    """Return a row or raise when missing."""
    row = session.get(model, entity_id)
    if row is None:
        raise NotFoundError(kind, entity_id)
    return row
