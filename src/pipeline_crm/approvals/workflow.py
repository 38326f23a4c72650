"""Human review of pending actions: approve, reject, or approve everything."""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Callable

from sqlalchemy import func, select, update
from sqlalchemy.orm import Session

from pipeline_crm.actions.registry import ActionRegistry
from pipeline_crm.errors import ActionExecutionError, ConflictError, NotFoundError
from pipeline_crm.memory.store import AgentMemoryStore
from pipeline_crm.models import PendingAction
from pipeline_crm.services.database import run_in_session
from pipeline_crm.time_utils import utc_now

logger = logging.getLogger(__name__)


class ApprovalWorkflow:
    """State machine moving pending actions to approved or rejected.

    A resolved action never changes again, and its linked memory row is
    updated to the same outcome. Approval executes the registered handler
    without calling its validator first.
    """

    def __init__(
        self,
        session_factory: Callable[[], Session],
        registry: ActionRegistry,
        memory: AgentMemoryStore,
        *,
        now_provider: Callable[[], datetime] | None = None,
    ) -> None:
        self._session_factory = session_factory
        self._registry = registry
        self._memory = memory
        self._now_provider = now_provider or utc_now

    def _execute(self, handler):
        return run_in_session(self._session_factory, handler)

    def list_pending(self) -> list[PendingAction]:
        """Return pending actions oldest first."""

        def handler(session: Session) -> list[PendingAction]:
            query = (
                select(PendingAction)
                .where(PendingAction.status == "pending")
                .order_by(PendingAction.id)
            )
            return list(session.scalars(query))

        return self._execute(handler)

    def count_pending(self) -> int:
        """Return the number of pending actions."""

        def handler(session: Session) -> int:
            query = (
                select(func.count())
                .select_from(PendingAction)
                .where(PendingAction.status == "pending")
            )
            return session.scalar(query) or 0

        return self._execute(handler)

    def get(self, action_id: int) -> PendingAction:
        """Fetch a pending action by id regardless of status."""

        def handler(session: Session) -> PendingAction:
            action = session.get(PendingAction, action_id)
            if action is None:
                raise NotFoundError("action", action_id, f"Action {action_id} not found")
            return action

        return self._execute(handler)

    def approve(self, action_id: int) -> str:
        """Execute a pending action and mark it approved; returns the handler result."""
        action = self._require_pending(action_id)
        payload = dict(action.payload or {})

        handler = self._registry.get(action.action_type)
        if handler is None:
            result = f"Unknown action type: {action.action_type}"
        else:
            try:
                result = handler.execute(payload)
            except Exception as exc:
                logger.warning("Action %s (%s) failed: %s", action.id, action.action_type, exc)
                raise ActionExecutionError(action.id, action.action_type, str(exc)) from exc

        self._resolve(action, "approved")
        if action.memory_id is not None:
            self._memory.update_outcome(action.memory_id, "approved")
        logger.info("Action approved: id=%s type=%s", action.id, action.action_type)
        return result

    def reject(self, action_id: int, reason: str | None = None) -> None:
        """Mark a pending action rejected and record the reason as feedback."""
        action = self._require_pending(action_id)
        self._resolve(action, "rejected")
        if action.memory_id is not None:
            self._memory.update_outcome(action.memory_id, "rejected", human_feedback=reason)
        logger.info("Action rejected: id=%s type=%s", action.id, action.action_type)

    def approve_all(self) -> list[str]:
        """Approve every pending action in id order.

        Each approval commits on its own; a failure propagates and leaves
        earlier approvals in place.
        """
        results: list[str] = []
        for action in self.list_pending():
            result = self.approve(action.id)
            results.append(f"#{action.id}: {result}")
        return results

    def _require_pending(self, action_id: int) -> PendingAction:
        action = self.get(action_id)
        if action.status != "pending":
            raise ConflictError(f"Action {action_id} is already {action.status}")
        return action

    def _resolve(self, action: PendingAction, status: str) -> None:
        """Flip pending to a terminal status; raises if another writer got there first."""
        timestamp = self._now_provider()

        def handler(session: Session) -> int:
            result = session.execute(
                update(PendingAction)
                .where(PendingAction.id == action.id, PendingAction.status == "pending")
                .values(status=status, resolved_at=timestamp)
            )
            return result.rowcount

        if not self._execute(handler):
            raise ConflictError(f"Action {action.id} is already resolved")
        action.status = status
        action.resolved_at = timestamp
