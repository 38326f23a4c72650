"""Error types shared by the automation layer and the CLI."""

from __future__ import annotations


class PipelineError(Exception):
    """Base class for errors surfaced to the CLI operator."""


class NotFoundError(PipelineError, LookupError):
    """Raised when a schedule, hook, action, agent, or entity cannot be located."""

    def __init__(self, kind: str, identifier: object, message: str | None = None) -> None:
        """Initialize the error with the missing record kind and identifier."""
        super().__init__(message or f"{kind} not found: {identifier}")
        self.kind = kind
        self.identifier = identifier

    def __str__(self) -> str:
        """Return the message without LookupError's repr quoting."""
        return str(self.args[0])


class ConflictError(PipelineError, ValueError):
    """Raised for duplicate schedules or attempts to resolve a resolved action."""


class ValidationError(PipelineError, ValueError):
    """Raised when an input value is outside its allowed set."""


class ActionExecutionError(PipelineError, RuntimeError):
    """Raised when an action handler fails while executing an approved action."""

    def __init__(self, action_id: int, action_type: str, message: str) -> None:
        """Initialize the error with the failing action details."""
        super().__init__(f"Action {action_id} ({action_type}) failed: {message}")
        self.action_id = action_id
        self.action_type = action_type


class AgentRunError(PipelineError, RuntimeError):
    """Raised when an agent run cannot start or does not terminate."""


class EmailSendError(PipelineError):
    """Raised by email senders; recovered inside the send_email handler."""
