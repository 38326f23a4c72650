"""Agent memory: what agents proposed and how humans resolved it."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Callable

from sqlalchemy import select
from sqlalchemy.orm import Session

from pipeline_crm.errors import NotFoundError, ValidationError
from pipeline_crm.models import AgentMemory
from pipeline_crm.services.database import run_in_session

logger = logging.getLogger(__name__)

OUTCOMES = ("pending", "approved", "rejected")
DEFAULT_RECALL_LIMIT = 50


@dataclass(frozen=True)
class MemoryInput:
    """Input payload for a new memory row."""

    agent_name: str
    run_id: str
    action_type: str
    payload: dict[str, Any] = field(default_factory=dict)
    reasoning: str | None = None
    contact_id: int | None = None
    deal_id: int | None = None


class AgentMemoryStore:
    """Append-only record of agent proposals with a mutable outcome."""

    def __init__(self, session_factory: Callable[[], Session]) -> None:
        self._session_factory = session_factory

    def _execute(self, handler):
        return run_in_session(self._session_factory, handler)

    def record(self, payload: MemoryInput) -> AgentMemory:
        """Insert a memory row with a pending outcome."""

        def handler(session: Session) -> AgentMemory:
            memory = AgentMemory(
                agent_name=payload.agent_name,
                run_id=payload.run_id,
                contact_id=payload.contact_id,
                deal_id=payload.deal_id,
                action_type=payload.action_type,
                payload=dict(payload.payload),
                reasoning=payload.reasoning,
                outcome="pending",
            )
            session.add(memory)
            session.flush()
            return memory

        return self._execute(handler)

    def recall(
        self,
        *,
        agent_name: str | None = None,
        contact_id: int | None = None,
        deal_id: int | None = None,
        outcome: str | None = None,
        limit: int = DEFAULT_RECALL_LIMIT,
    ) -> list[AgentMemory]:
        """Return matching memories, newest first."""
        if outcome is not None and outcome not in OUTCOMES:
            raise ValidationError(f"Invalid outcome: {outcome}. Use: {', '.join(OUTCOMES)}")

        def handler(session: Session) -> list[AgentMemory]:
            query = select(AgentMemory)
            if agent_name:
                query = query.where(AgentMemory.agent_name == agent_name)
            if contact_id is not None:
                query = query.where(AgentMemory.contact_id == contact_id)
            if deal_id is not None:
                query = query.where(AgentMemory.deal_id == deal_id)
            if outcome:
                query = query.where(AgentMemory.outcome == outcome)
            query = query.order_by(AgentMemory.created_at.desc(), AgentMemory.id.desc())
            return list(session.scalars(query.limit(limit)))

        return self._execute(handler)

    def update_outcome(
        self,
        memory_id: int,
        outcome: str,
        *,
        human_feedback: str | None = None,
    ) -> AgentMemory:
        """Set the outcome, and feedback when given, on a memory row."""
        if outcome not in OUTCOMES:
            raise ValidationError(f"Invalid outcome: {outcome}. Use: {', '.join(OUTCOMES)}")

        def handler(session: Session) -> AgentMemory:
            memory = session.get(AgentMemory, memory_id)
            if memory is None:
                raise NotFoundError("memory", memory_id)
            memory.outcome = outcome
            if human_feedback is not None:
                memory.human_feedback = human_feedback
            return memory

        return self._execute(handler)
