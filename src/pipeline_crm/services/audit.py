"""Capped audit log for CLI commands and agent tool calls."""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from typing import Callable, Iterable

from sqlalchemy import delete, func, select
from sqlalchemy.orm import Session

from pipeline_crm.models import AuditLogEntry
from pipeline_crm.services.database import run_in_session

logger = logging.getLogger(__name__)

DEFAULT_MAX_ROWS = 500
MAX_ARG_LENGTH = 200
MAX_ERROR_LENGTH = 500
SENSITIVE_FLAGS = frozenset({"--api-key", "--token", "--password", "--secret"})


@dataclass(frozen=True)
class AuditRecord:
    """Input payload for a single audit log entry."""

    actor: str
    command: str
    args: str | None = None
    result: str | None = None
    error: str | None = None
    duration_ms: int | None = None


def truncate(text: str, limit: int) -> str:
    """Shorten text to the limit, marking the cut with an ellipsis."""
    if len(text) <= limit:
        return text
    return text[:limit] + "…"


def sanitize_argv(argv: Iterable[str]) -> str:
    """Serialize CLI arguments with secrets redacted and long values truncated."""
    sanitized: list[str] = []
    redact_next = False
    for arg in argv:
        if redact_next:
            sanitized.append("[REDACTED]")
            redact_next = False
            continue
        flag, sep, _ = arg.partition("=")
        if sep and flag in SENSITIVE_FLAGS:
            sanitized.append(f"{flag}=[REDACTED]")
            continue
        if arg in SENSITIVE_FLAGS:
            sanitized.append(arg)
            redact_next = True
            continue
        sanitized.append(truncate(arg, MAX_ARG_LENGTH))
    return json.dumps(sanitized)


class AuditLog:
    """Write and query audit entries with failure isolation."""

    def __init__(
        self,
        session_factory: Callable[[], Session],
        *,
        max_rows: int = DEFAULT_MAX_ROWS,
    ) -> None:
        """Initialize the audit log with a session factory and row cap."""
        self._session_factory = session_factory
        self._max_rows = max_rows

    def write(self, record: AuditRecord) -> bool:
        """Persist an entry and prune past the cap; never raises."""
        try:
            run_in_session(self._session_factory, lambda session: self._insert(session, record))
        except Exception:
            logger.debug("Audit log write failed: %s", record.command, exc_info=True)
            return False
        return True

    def _insert(self, session: Session, record: AuditRecord) -> None:
        """Insert the entry and drop rows beyond the newest ``max_rows``."""
        session.add(
            AuditLogEntry(
                actor=record.actor,
                command=record.command,
                args=record.args,
                result=record.result,
                error=truncate(record.error, MAX_ERROR_LENGTH) if record.error else None,
                duration_ms=record.duration_ms,
            )
        )
        session.flush()
        count = session.scalar(select(func.count()).select_from(AuditLogEntry)) or 0
        if count > self._max_rows:
            keep = (
                select(AuditLogEntry.id)
                .order_by(AuditLogEntry.id.desc())
                .limit(self._max_rows)
            )
            session.execute(delete(AuditLogEntry).where(AuditLogEntry.id.not_in(keep)))

    def entries(
        self,
        *,
        actor: str | None = None,
        command: str | None = None,
        last: int = 20,
    ) -> list[AuditLogEntry]:
        """Return the newest entries, optionally filtered by substring."""

        def handler(session: Session) -> list[AuditLogEntry]:
            query = select(AuditLogEntry)
            if actor:
                query = query.where(AuditLogEntry.actor.contains(actor))
            if command:
                query = query.where(AuditLogEntry.command.contains(command))
            query = query.order_by(AuditLogEntry.id.desc()).limit(last)
            return list(session.scalars(query))

        return run_in_session(self._session_factory, handler)
