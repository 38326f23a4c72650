"""Proposal side of the approval workflow: agents queue actions here."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Callable

from sqlalchemy.orm import Session

from pipeline_crm.memory.store import AgentMemoryStore, MemoryInput
from pipeline_crm.models import PendingAction
from pipeline_crm.services.database import run_in_session

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ProposalInput:
    """Input payload for an agent-proposed action."""

    action_type: str
    payload: dict[str, Any] = field(default_factory=dict)
    reasoning: str | None = None
    agent_name: str | None = None
    run_id: str | None = None


def _payload_id(payload: dict[str, Any], key: str) -> int | None:
    value = payload.get(key)
    try:
        return int(value) if value is not None else None
    except (TypeError, ValueError):
        return None


class ProposalService:
    """Create pending actions, recording agent memory first when attributed."""

    def __init__(
        self,
        session_factory: Callable[[], Session],
        memory: AgentMemoryStore,
    ) -> None:
        self._session_factory = session_factory
        self._memory = memory

    def propose(self, proposal: ProposalInput) -> PendingAction:
        """Queue an action for human review and return the pending row."""
        memory_id = None
        if proposal.agent_name and proposal.run_id:
            memory = self._memory.record(
                MemoryInput(
                    agent_name=proposal.agent_name,
                    run_id=proposal.run_id,
                    action_type=proposal.action_type,
                    payload=dict(proposal.payload),
                    reasoning=proposal.reasoning,
                    contact_id=_payload_id(proposal.payload, "contact_id"),
                    deal_id=_payload_id(proposal.payload, "deal_id"),
                )
            )
            memory_id = memory.id

        def handler(session: Session) -> PendingAction:
            action = PendingAction(
                action_type=proposal.action_type,
                payload=dict(proposal.payload),
                reasoning=proposal.reasoning,
                status="pending",
                agent_name=proposal.agent_name,
                run_id=proposal.run_id,
                memory_id=memory_id,
            )
            session.add(action)
            session.flush()
            return action

        action = run_in_session(self._session_factory, handler)
        logger.info(
            "Action proposed: id=%s type=%s agent=%s",
            action.id,
            action.action_type,
            proposal.agent_name or "-",
        )
        return action
