"""Local tool server exposing Domain Store reads, proposals, and memory recall."""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from typing import Any

from fastmcp import FastMCP

from pipeline_crm.approvals.proposals import ProposalInput, ProposalService
from pipeline_crm.domain.store import DomainStore
from pipeline_crm.memory.store import AgentMemoryStore
from pipeline_crm.models import to_dict

logger = logging.getLogger(__name__)

SERVER_NAME = "pipeline-crm"
DEFAULT_RECALL_LIMIT = 20


@dataclass(frozen=True)
class ToolContext:
    """Collaborators and run attribution bound into one tool server instance."""

    domain: DomainStore
    proposals: ProposalService
    memory: AgentMemoryStore
    agent_name: str | None = None
    run_id: str | None = None
    stale_days: int = 14


def _dump(value: Any) -> str:
    return json.dumps(value, indent=2, default=str)


def build_tool_server(context: ToolContext) -> FastMCP:
    """Create a FastMCP server whose tools read and propose against the CRM.

    Proposals are attributed to ``context.agent_name`` and ``context.run_id``;
    memory is recorded only when both are set.
    """
    mcp = FastMCP(SERVER_NAME, instructions="Pipeline CRM tools for agents")

    @mcp.tool
    def search_contacts(query: str = "", warmth: str = "") -> str:
        """
        Search contacts by name or email.

        Args:
            query: Substring to match against name or email (optional)
            warmth: Filter by warmth: cold, warm, or hot (optional)

        Returns:
            JSON array of contacts
        """
        contacts = context.domain.search_contacts(query or None, warmth=warmth or None)
        return _dump([to_dict(contact) for contact in contacts])

    @mcp.tool
    def get_stale_contacts(days: int = context.stale_days) -> str:
        """
        List contacts not updated in the given number of days.

        Args:
            days: Inactivity threshold in days

        Returns:
            JSON array of contacts
        """
        contacts = context.domain.list_stale_contacts(days)
        return _dump([to_dict(contact) for contact in contacts])

    @mcp.tool
    def get_contact_with_history(contact_id: int) -> str:
        """
        Get a contact with its organization, interactions, deals, and tasks.

        Args:
            contact_id: Contact id

        Returns:
            JSON object, or a not-found message
        """
        detail = context.domain.get_contact_with_history(contact_id)
        if detail is None:
            return f"Contact {contact_id} not found"
        return _dump(detail)

    @mcp.tool
    def list_deals(stage: str = "", priority: str = "") -> str:
        """
        List deals, optionally filtered.

        Args:
            stage: Pipeline stage (optional)
            priority: low, medium, or high (optional)

        Returns:
            JSON array of deals
        """
        deals = context.domain.list_deals(stage=stage or None, priority=priority or None)
        return _dump([to_dict(deal) for deal in deals])

    @mcp.tool
    def get_deal_detail(deal_id: int) -> str:
        """
        Get a deal with its contact, interactions, and tasks.

        Args:
            deal_id: Deal id

        Returns:
            JSON object, or a not-found message
        """
        detail = context.domain.get_deal_detail(deal_id)
        if detail is None:
            return f"Deal {deal_id} not found"
        return _dump(detail)

    @mcp.tool
    def list_tasks(overdue: bool = False, contact_id: int | None = None, deal_id: int | None = None) -> str:
        """
        List open tasks.

        Args:
            overdue: Only tasks past their due date
            contact_id: Filter by contact (optional)
            deal_id: Filter by deal (optional)

        Returns:
            JSON array of tasks
        """
        if overdue:
            tasks = context.domain.list_overdue_tasks()
            tasks = [
                task
                for task in tasks
                if (contact_id is None or task.contact_id == contact_id)
                and (deal_id is None or task.deal_id == deal_id)
            ]
        else:
            tasks = context.domain.list_tasks(contact_id=contact_id, deal_id=deal_id)
        return _dump([to_dict(task) for task in tasks])

    @mcp.tool
    def propose_action(action_type: str, payload: str, reasoning: str) -> str:
        """
        Propose a CRM mutation for human approval.

        Args:
            action_type: send_email, update_stage, create_task, log_note, create_edge,
                complete_task, update_warmth, or update_priority
            payload: JSON object string with the action fields
            reasoning: Why this action should be taken

        Returns:
            Confirmation with the pending action id
        """
        try:
            data = json.loads(payload) if payload else {}
        except json.JSONDecodeError as exc:
            return f"Error: payload is not valid JSON ({exc.msg})"
        if not isinstance(data, dict):
            return "Error: payload must be a JSON object"
        action = context.proposals.propose(
            ProposalInput(
                action_type=action_type,
                payload=data,
                reasoning=reasoning,
                agent_name=context.agent_name,
                run_id=context.run_id,
            )
        )
        return f"Action proposed (id: {action.id}). Run 'pipeline approve' to review."

    @mcp.tool
    def recall_memory(
        agent_name: str = "",
        contact_id: int | None = None,
        deal_id: int | None = None,
        outcome: str = "",
        limit: int = DEFAULT_RECALL_LIMIT,
    ) -> str:
        """
        Recall past proposals and how humans resolved them, newest first.

        Args:
            agent_name: Agent to recall for (defaults to the running agent)
            contact_id: Filter by contact (optional)
            deal_id: Filter by deal (optional)
            outcome: pending, approved, or rejected (optional)
            limit: Maximum rows to return

        Returns:
            JSON array of memory rows
        """
        memories = context.memory.recall(
            agent_name=agent_name or context.agent_name,
            contact_id=contact_id,
            deal_id=deal_id,
            outcome=outcome or None,
            limit=limit,
        )
        return _dump([to_dict(memory) for memory in memories])

    return mcp
