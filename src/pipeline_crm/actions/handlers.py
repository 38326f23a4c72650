"""Built-in action handlers executed when a human approves a proposal."""

from __future__ import annotations

import logging
from typing import Any

from pipeline_crm.actions.registry import ActionHandler, ActionRegistry, Payload
from pipeline_crm.domain.store import DomainStore, InteractionInput
from pipeline_crm.errors import EmailSendError
from pipeline_crm.services.email import EmailMessage, EmailSender

logger = logging.getLogger(__name__)

WARMTH_VALUES = ("cold", "warm", "hot")
PRIORITY_VALUES = ("low", "medium", "high")


def _optional_int(payload: Payload, key: str) -> int | None:
    """Return an integer id from the payload, tolerating string digits."""
    value: Any = payload.get(key)
    if value is None or value == "":
        return None
    return int(value)


def _require(payload: Payload, *keys: str) -> str | None:
    """Return a missing-field message when any key is absent or empty."""
    if all(payload.get(key) for key in keys):
        return None
    if len(keys) == 1:
        return f"Missing '{keys[0]}'"
    return "Missing " + " or ".join(f"'{key}'" for key in keys)


def _send_email(domain: DomainStore, sender: EmailSender):
    def validate(payload: Payload) -> str | None:
        if not payload.get("to"):
            return "Missing 'to' field"
        return None

    def execute(payload: Payload) -> str:
        to = str(payload["to"])
        subject = str(payload.get("subject") or "(no subject)")
        body = str(payload.get("body") or "")
        contact_id = _optional_int(payload, "contact_id")
        try:
            result = sender.send(EmailMessage(to=to, subject=subject, body=body))
        except EmailSendError as exc:
            logger.warning("send_email failed for %s: %s", to, exc)
            domain.log_interaction(
                InteractionInput(
                    type="note",
                    contact_id=contact_id,
                    body=(
                        f"[Email draft — sending failed] To: {to}, Subject: {subject}"
                        f"\n\n{body}\n\nError: {exc}"
                    ),
                )
            )
            return f"Email sending failed (logged as draft): {exc}"

        domain.log_interaction(
            InteractionInput(
                type="email",
                contact_id=contact_id,
                deal_id=_optional_int(payload, "deal_id"),
                direction="outbound",
                subject=subject,
                body=body,
                message_id=result.message_id,
            )
        )
        if contact_id is not None:
            domain.touch_contact(contact_id)
        return (
            f"Email sent via {result.provider} ({result.message_id}): "
            f"to={to}, subject={subject}"
        )

    return ActionHandler(label="Send an email", validate=validate, execute=execute)


def _update_stage(domain: DomainStore) -> ActionHandler:
    def execute(payload: Payload) -> str:
        deal_id = int(payload["deal_id"])
        stage = str(payload["stage"])
        domain.move_deal(deal_id, stage)
        return f"Moved deal {deal_id} to stage {stage}"

    return ActionHandler(
        label="Update a deal's stage",
        validate=lambda payload: _require(payload, "deal_id", "stage"),
        execute=execute,
    )


def _create_task(domain: DomainStore) -> ActionHandler:
    def execute(payload: Payload) -> str:
        task = domain.create_task(
            str(payload["title"]),
            contact_id=_optional_int(payload, "contact_id"),
            deal_id=_optional_int(payload, "deal_id"),
            due=payload.get("due"),
        )
        return f"Created task: {task.title} (id: {task.id})"

    return ActionHandler(
        label="Create a new task",
        validate=lambda payload: _require(payload, "title"),
        execute=execute,
    )


def _log_note(domain: DomainStore) -> ActionHandler:
    def execute(payload: Payload) -> str:
        interaction = domain.log_interaction(
            InteractionInput(
                type="note",
                contact_id=_optional_int(payload, "contact_id"),
                deal_id=_optional_int(payload, "deal_id"),
                body=str(payload["body"]),
            )
        )
        return f"Logged note (id: {interaction.id})"

    return ActionHandler(
        label="Log a note",
        validate=lambda payload: _require(payload, "body"),
        execute=execute,
    )


def _create_edge(domain: DomainStore) -> ActionHandler:
    def execute(payload: Payload) -> str:
        edge = domain.create_edge(
            str(payload["from_type"]),
            int(payload["from_id"]),
            str(payload["to_type"]),
            int(payload["to_id"]),
            str(payload.get("relation") or "related_to"),
        )
        return f"Created edge (id: {edge.id})"

    return ActionHandler(
        label="Create a relationship edge",
        validate=lambda payload: _require(payload, "from_type", "to_type"),
        execute=execute,
    )


def _complete_task(domain: DomainStore) -> ActionHandler:
    def execute(payload: Payload) -> str:
        task_id = int(payload["task_id"])
        domain.complete_task(task_id)
        return f"Completed task {task_id}"

    return ActionHandler(
        label="Mark a task as completed",
        validate=lambda payload: _require(payload, "task_id"),
        execute=execute,
    )


def _enum_validator(id_key: str, value_key: str, allowed: tuple[str, ...]):
    def validate(payload: Payload) -> str | None:
        missing = _require(payload, id_key, value_key)
        if missing:
            return missing
        if payload[value_key] not in allowed:
            return f"Invalid {value_key}: must be one of {', '.join(allowed)}"
        return None

    return validate


def _update_warmth(domain: DomainStore) -> ActionHandler:
    def execute(payload: Payload) -> str:
        contact_id = int(payload["contact_id"])
        warmth = str(payload["warmth"])
        domain.update_contact_warmth(contact_id, warmth)
        return f"Updated contact {contact_id} warmth to {warmth}"

    return ActionHandler(
        label="Update a contact's warmth",
        validate=_enum_validator("contact_id", "warmth", WARMTH_VALUES),
        execute=execute,
    )


def _update_priority(domain: DomainStore) -> ActionHandler:
    def execute(payload: Payload) -> str:
        deal_id = int(payload["deal_id"])
        priority = str(payload["priority"])
        domain.update_deal_priority(deal_id, priority)
        return f"Updated deal {deal_id} priority to {priority}"

    return ActionHandler(
        label="Update a deal's priority",
        validate=_enum_validator("deal_id", "priority", PRIORITY_VALUES),
        execute=execute,
    )


def build_default_registry(domain: DomainStore, email_sender: EmailSender) -> ActionRegistry:
    """Return a registry holding every built-in action handler."""
    registry = ActionRegistry()
    registry.register("send_email", _send_email(domain, email_sender))
    registry.register("update_stage", _update_stage(domain))
    registry.register("create_task", _create_task(domain))
    registry.register("log_note", _log_note(domain))
    registry.register("create_edge", _create_edge(domain))
    registry.register("complete_task", _complete_task(domain))
    registry.register("update_warmth", _update_warmth(domain))
    registry.register("update_priority", _update_priority(domain))
    return registry
