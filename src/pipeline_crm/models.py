"""Data models for the pipeline CRM store."""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import (
    JSON,
    Boolean,
    Column,
    Enum,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    TypeDecorator,
)
from sqlalchemy.orm import declarative_base

from pipeline_crm.time_utils import parse_iso, to_iso, utc_now

# SQLAlchemy base
Base = declarative_base()


class IsoDateTime(TypeDecorator):
    """Timestamp persisted as ISO-8601 text and read back as an aware UTC datetime."""

    impl = String(40)
    cache_ok = True

    def process_bind_param(self, value, dialect):
        """Serialize datetimes to ISO text; pass through pre-rendered strings."""
        if value is None:
            return None
        if isinstance(value, datetime):
            return to_iso(value)
        return to_iso(parse_iso(str(value)))

    def process_result_value(self, value, dialect):
        """Parse stored ISO text into a datetime."""
        if value is None:
            return None
        return parse_iso(value)


# Automation enums
ScheduleIntervalEnum = Enum(
    "hourly",
    "daily",
    "weekdays",
    "weekly",
    name="schedule_interval",
    native_enum=False,
    create_constraint=True,
)
ScheduleRunStatusEnum = Enum(
    "running",
    "completed",
    "failed",
    name="schedule_run_status",
    native_enum=False,
    create_constraint=True,
)
ActionStatusEnum = Enum(
    "pending",
    "approved",
    "rejected",
    name="action_status",
    native_enum=False,
    create_constraint=True,
)
MemoryOutcomeEnum = Enum(
    "pending",
    "approved",
    "rejected",
    name="memory_outcome",
    native_enum=False,
    create_constraint=True,
)


# Domain store models
class Organization(Base):
    """Company or group a contact belongs to."""

    __tablename__ = "organizations"

    id = Column(Integer, primary_key=True, autoincrement=True)
    name = Column(String(200), nullable=False, unique=True)
    domain = Column(String(200), nullable=True)
    industry = Column(String(200), nullable=True)
    created_at = Column(IsoDateTime(), nullable=False, default=utc_now)
    updated_at = Column(IsoDateTime(), nullable=False, default=utc_now)


class Contact(Base):
    """Person tracked in the CRM."""

    __tablename__ = "contacts"

    id = Column(Integer, primary_key=True, autoincrement=True)
    name = Column(String(200), nullable=False)
    email = Column(String(320), nullable=True, unique=True)
    org_id = Column(Integer, ForeignKey("organizations.id"), nullable=True)
    role = Column(String(200), nullable=True)
    warmth = Column(String(20), nullable=False, default="cold")
    tags = Column(JSON, nullable=False, default=list)
    created_at = Column(IsoDateTime(), nullable=False, default=utc_now)
    updated_at = Column(IsoDateTime(), nullable=False, default=utc_now)


class Deal(Base):
    """Opportunity moving through the pipeline stages."""

    __tablename__ = "deals"

    id = Column(Integer, primary_key=True, autoincrement=True)
    title = Column(String(300), nullable=False)
    contact_id = Column(Integer, ForeignKey("contacts.id"), nullable=True)
    org_id = Column(Integer, ForeignKey("organizations.id"), nullable=True)
    value = Column(Integer, nullable=True)
    currency = Column(String(10), nullable=False, default="USD")
    stage = Column(String(50), nullable=False, default="lead")
    priority = Column(String(20), nullable=False, default="medium")
    created_at = Column(IsoDateTime(), nullable=False, default=utc_now)
    updated_at = Column(IsoDateTime(), nullable=False, default=utc_now)


class Task(Base):
    """Follow-up task, optionally tied to a contact or deal."""

    __tablename__ = "tasks"

    id = Column(Integer, primary_key=True, autoincrement=True)
    title = Column(Text, nullable=False)
    contact_id = Column(Integer, ForeignKey("contacts.id"), nullable=True)
    deal_id = Column(Integer, ForeignKey("deals.id"), nullable=True)
    due = Column(String(40), nullable=True)
    completed = Column(Boolean, nullable=False, default=False)
    completed_at = Column(IsoDateTime(), nullable=True)
    created_at = Column(IsoDateTime(), nullable=False, default=utc_now)
    updated_at = Column(IsoDateTime(), nullable=False, default=utc_now)


class Interaction(Base):
    """Email, call, meeting, or note logged against a contact or deal."""

    __tablename__ = "interactions"

    id = Column(Integer, primary_key=True, autoincrement=True)
    contact_id = Column(Integer, ForeignKey("contacts.id"), nullable=True)
    deal_id = Column(Integer, ForeignKey("deals.id"), nullable=True)
    type = Column(String(20), nullable=False)
    direction = Column(String(20), nullable=True)
    subject = Column(Text, nullable=True)
    body = Column(Text, nullable=True)
    message_id = Column(String(300), nullable=True)
    occurred_at = Column(IsoDateTime(), nullable=False, default=utc_now)
    created_at = Column(IsoDateTime(), nullable=False, default=utc_now)


class Edge(Base):
    """Relationship between two entities."""

    __tablename__ = "edges"
    __table_args__ = (
        Index("idx_edges_from", "from_type", "from_id"),
        Index("idx_edges_to", "to_type", "to_id"),
    )

    id = Column(Integer, primary_key=True, autoincrement=True)
    from_type = Column(String(50), nullable=False)
    from_id = Column(Integer, nullable=False)
    to_type = Column(String(50), nullable=False)
    to_id = Column(Integer, nullable=False)
    relation = Column(String(100), nullable=False)
    created_at = Column(IsoDateTime(), nullable=False, default=utc_now)


# Automation models
class Event(Base):
    """Durable record that something happened or was detected."""

    __tablename__ = "events"
    __table_args__ = (
        Index("idx_events_dedupe", "event_type", "entity_id", "processed"),
        Index("idx_events_processed", "processed"),
    )

    id = Column(Integer, primary_key=True, autoincrement=True)
    event_type = Column(String(100), nullable=False)
    entity_type = Column(String(50), nullable=False)
    entity_id = Column(Integer, nullable=False)
    payload = Column(JSON, nullable=True)
    processed = Column(Boolean, nullable=False, default=False)
    created_at = Column(IsoDateTime(), nullable=False, default=utc_now)


class EventHook(Base):
    """Standing subscription from an event type to an agent."""

    __tablename__ = "event_hooks"
    __table_args__ = (Index("idx_event_hooks_type_enabled", "event_type", "enabled"),)

    id = Column(Integer, primary_key=True, autoincrement=True)
    event_type = Column(String(100), nullable=False)
    agent_name = Column(String(100), nullable=False)
    enabled = Column(Boolean, nullable=False, default=True)
    created_at = Column(IsoDateTime(), nullable=False, default=utc_now)


class Schedule(Base):
    """Fixed-cadence run of a single agent."""

    __tablename__ = "schedules"

    id = Column(Integer, primary_key=True, autoincrement=True)
    agent_name = Column(String(100), nullable=False, unique=True)
    interval = Column(ScheduleIntervalEnum, nullable=False)
    enabled = Column(Boolean, nullable=False, default=True)
    last_run_at = Column(IsoDateTime(), nullable=True)
    created_at = Column(IsoDateTime(), nullable=False, default=utc_now)


class ScheduleLog(Base):
    """Audit row for one scheduler invocation of an agent."""

    __tablename__ = "schedule_logs"

    id = Column(Integer, primary_key=True, autoincrement=True)
    # Plain integer: logs outlive removed schedules.
    schedule_id = Column(Integer, nullable=False)
    agent_name = Column(String(100), nullable=False)
    started_at = Column(IsoDateTime(), nullable=False)
    finished_at = Column(IsoDateTime(), nullable=True)
    status = Column(ScheduleRunStatusEnum, nullable=False, default="running")
    output = Column(Text, nullable=True)
    actions_proposed = Column(Integer, nullable=False, default=0)
    created_at = Column(IsoDateTime(), nullable=False, default=utc_now)


class PendingAction(Base):
    """Agent-proposed mutation awaiting a human decision."""

    __tablename__ = "pending_actions"
    __table_args__ = (Index("idx_pending_actions_status", "status"),)

    id = Column(Integer, primary_key=True, autoincrement=True)
    action_type = Column(String(100), nullable=False)
    payload = Column(JSON, nullable=True)
    reasoning = Column(Text, nullable=True)
    status = Column(ActionStatusEnum, nullable=False, default="pending")
    resolved_at = Column(IsoDateTime(), nullable=True)
    agent_name = Column(String(100), nullable=True)
    run_id = Column(String(64), nullable=True)
    memory_id = Column(Integer, ForeignKey("agent_memory.id"), nullable=True)
    created_at = Column(IsoDateTime(), nullable=False, default=utc_now)


class AgentMemory(Base):
    """What an agent proposed and how a human resolved it."""

    __tablename__ = "agent_memory"
    __table_args__ = (
        Index("idx_agent_memory_agent", "agent_name"),
        Index("idx_agent_memory_contact", "contact_id"),
        Index("idx_agent_memory_deal", "deal_id"),
        Index("idx_agent_memory_run", "run_id"),
    )

    id = Column(Integer, primary_key=True, autoincrement=True)
    agent_name = Column(String(100), nullable=False)
    run_id = Column(String(64), nullable=False)
    contact_id = Column(Integer, nullable=True)
    deal_id = Column(Integer, nullable=True)
    action_type = Column(String(100), nullable=False)
    payload = Column(JSON, nullable=True)
    reasoning = Column(Text, nullable=True)
    outcome = Column(MemoryOutcomeEnum, nullable=False, default="pending")
    human_feedback = Column(Text, nullable=True)
    created_at = Column(IsoDateTime(), nullable=False, default=utc_now)


class AuditLogEntry(Base):
    """Capped record of CLI commands and agent tool calls."""

    __tablename__ = "audit_log"
    __table_args__ = (
        Index("idx_audit_log_actor", "actor"),
        Index("idx_audit_log_created_at", "created_at"),
    )

    id = Column(Integer, primary_key=True, autoincrement=True)
    actor = Column(String(100), nullable=False)
    command = Column(String(200), nullable=False)
    args = Column(Text, nullable=True)
    result = Column(String(20), nullable=True)
    error = Column(Text, nullable=True)
    duration_ms = Column(Integer, nullable=True)
    created_at = Column(IsoDateTime(), nullable=False, default=utc_now)


def to_dict(row: Base) -> dict[str, object]:
    """Return a JSON-friendly mapping of a model's column values."""
    data: dict[str, object] = {}
    for column in row.__table__.columns:
        value = getattr(row, column.key)
        if isinstance(value, datetime):
            value = to_iso(value)
        data[column.key] = value
    return data
