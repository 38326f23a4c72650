"""Action handler registry keyed by action type."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Callable, Mapping

logger = logging.getLogger(__name__)

Payload = Mapping[str, Any]


@dataclass(frozen=True)
class ActionHandler:
    """Validator and executor for one kind of CRM mutation.

    ``validate`` returns an error message or None; ``execute`` performs the
    mutation and returns a human-readable result.
    """

    label: str
    validate: Callable[[Payload], str | None]
    execute: Callable[[Payload], str]


class ActionRegistry:
    """Mapping from action type to handler, passed to whoever needs it."""

    def __init__(self) -> None:
        self._handlers: dict[str, ActionHandler] = {}

    def register(self, action_type: str, handler: ActionHandler) -> ActionHandler:
        """Add a handler, replacing any existing one for the same type."""
        if action_type in self._handlers:
            logger.debug("Replacing action handler: %s", action_type)
        self._handlers[action_type] = handler
        return handler

    def get(self, action_type: str) -> ActionHandler | None:
        """Return the handler for an action type, if registered."""
        return self._handlers.get(action_type)

    def list_types(self) -> list[str]:
        """Return registered action types in registration order."""
        return list(self._handlers)

    def __contains__(self, action_type: object) -> bool:
        return action_type in self._handlers
