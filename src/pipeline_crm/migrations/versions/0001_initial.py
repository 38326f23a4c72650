"""Initial pipeline CRM schema.

Revision ID: 0001_initial
Revises:
Create Date: 2026-01-01 00:00:00.000000

"""

from __future__ import annotations

from alembic import op
import sqlalchemy as sa

revision = "0001_initial"
down_revision = None
branch_labels = None
depends_on = None


def _timestamp(name: str, nullable: bool = False) -> sa.Column:
    """Return an ISO-8601 text timestamp column."""
    return sa.Column(name, sa.String(length=40), nullable=nullable)


def _enum(name: str, *values: str) -> sa.Enum:
    """Return a non-native enum type with a check constraint."""
    return sa.Enum(*values, name=name, native_enum=False, create_constraint=True)


def upgrade() -> None:
    """Create domain store and automation tables."""
    op.create_table(
        "organizations",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("name", sa.String(length=200), nullable=False, unique=True),
        sa.Column("domain", sa.String(length=200), nullable=True),
        sa.Column("industry", sa.String(length=200), nullable=True),
        _timestamp("created_at"),
        _timestamp("updated_at"),
    )
    op.create_table(
        "contacts",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("name", sa.String(length=200), nullable=False),
        sa.Column("email", sa.String(length=320), nullable=True, unique=True),
        sa.Column("org_id", sa.Integer(), sa.ForeignKey("organizations.id"), nullable=True),
        sa.Column("role", sa.String(length=200), nullable=True),
        sa.Column("warmth", sa.String(length=20), nullable=False),
        sa.Column("tags", sa.JSON(), nullable=False),
        _timestamp("created_at"),
        _timestamp("updated_at"),
    )
    op.create_table(
        "deals",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("title", sa.String(length=300), nullable=False),
        sa.Column("contact_id", sa.Integer(), sa.ForeignKey("contacts.id"), nullable=True),
        sa.Column("org_id", sa.Integer(), sa.ForeignKey("organizations.id"), nullable=True),
        sa.Column("value", sa.Integer(), nullable=True),
        sa.Column("currency", sa.String(length=10), nullable=False),
        sa.Column("stage", sa.String(length=50), nullable=False),
        sa.Column("priority", sa.String(length=20), nullable=False),
        _timestamp("created_at"),
        _timestamp("updated_at"),
    )
    op.create_table(
        "tasks",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("title", sa.Text(), nullable=False),
        sa.Column("contact_id", sa.Integer(), sa.ForeignKey("contacts.id"), nullable=True),
        sa.Column("deal_id", sa.Integer(), sa.ForeignKey("deals.id"), nullable=True),
        sa.Column("due", sa.String(length=40), nullable=True),
        sa.Column("completed", sa.Boolean(), nullable=False),
        _timestamp("completed_at", nullable=True),
        _timestamp("created_at"),
        _timestamp("updated_at"),
    )
    op.create_table(
        "interactions",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("contact_id", sa.Integer(), sa.ForeignKey("contacts.id"), nullable=True),
        sa.Column("deal_id", sa.Integer(), sa.ForeignKey("deals.id"), nullable=True),
        sa.Column("type", sa.String(length=20), nullable=False),
        sa.Column("direction", sa.String(length=20), nullable=True),
        sa.Column("subject", sa.Text(), nullable=True),
        sa.Column("body", sa.Text(), nullable=True),
        sa.Column("message_id", sa.String(length=300), nullable=True),
        _timestamp("occurred_at"),
        _timestamp("created_at"),
    )
    op.create_table(
        "edges",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("from_type", sa.String(length=50), nullable=False),
        sa.Column("from_id", sa.Integer(), nullable=False),
        sa.Column("to_type", sa.String(length=50), nullable=False),
        sa.Column("to_id", sa.Integer(), nullable=False),
        sa.Column("relation", sa.String(length=100), nullable=False),
        _timestamp("created_at"),
    )
    op.create_index("idx_edges_from", "edges", ["from_type", "from_id"])
    op.create_index("idx_edges_to", "edges", ["to_type", "to_id"])

    op.create_table(
        "events",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("event_type", sa.String(length=100), nullable=False),
        sa.Column("entity_type", sa.String(length=50), nullable=False),
        sa.Column("entity_id", sa.Integer(), nullable=False),
        sa.Column("payload", sa.JSON(), nullable=True),
        sa.Column("processed", sa.Boolean(), nullable=False),
        _timestamp("created_at"),
    )
    op.create_index("idx_events_dedupe", "events", ["event_type", "entity_id", "processed"])
    op.create_index("idx_events_processed", "events", ["processed"])
    op.create_table(
        "event_hooks",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("event_type", sa.String(length=100), nullable=False),
        sa.Column("agent_name", sa.String(length=100), nullable=False),
        sa.Column("enabled", sa.Boolean(), nullable=False),
        _timestamp("created_at"),
    )
    op.create_index("idx_event_hooks_type_enabled", "event_hooks", ["event_type", "enabled"])
    op.create_table(
        "schedules",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("agent_name", sa.String(length=100), nullable=False, unique=True),
        sa.Column(
            "interval",
            _enum("schedule_interval", "hourly", "daily", "weekdays", "weekly"),
            nullable=False,
        ),
        sa.Column("enabled", sa.Boolean(), nullable=False),
        _timestamp("last_run_at", nullable=True),
        _timestamp("created_at"),
    )
    op.create_table(
        "schedule_logs",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("schedule_id", sa.Integer(), nullable=False),
        sa.Column("agent_name", sa.String(length=100), nullable=False),
        _timestamp("started_at"),
        _timestamp("finished_at", nullable=True),
        sa.Column(
            "status",
            _enum("schedule_run_status", "running", "completed", "failed"),
            nullable=False,
        ),
        sa.Column("output", sa.Text(), nullable=True),
        sa.Column("actions_proposed", sa.Integer(), nullable=False),
        _timestamp("created_at"),
    )
    op.create_table(
        "agent_memory",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("agent_name", sa.String(length=100), nullable=False),
        sa.Column("run_id", sa.String(length=64), nullable=False),
        sa.Column("contact_id", sa.Integer(), nullable=True),
        sa.Column("deal_id", sa.Integer(), nullable=True),
        sa.Column("action_type", sa.String(length=100), nullable=False),
        sa.Column("payload", sa.JSON(), nullable=True),
        sa.Column("reasoning", sa.Text(), nullable=True),
        sa.Column(
            "outcome",
            _enum("memory_outcome", "pending", "approved", "rejected"),
            nullable=False,
        ),
        sa.Column("human_feedback", sa.Text(), nullable=True),
        _timestamp("created_at"),
    )
    op.create_index("idx_agent_memory_agent", "agent_memory", ["agent_name"])
    op.create_index("idx_agent_memory_contact", "agent_memory", ["contact_id"])
    op.create_index("idx_agent_memory_deal", "agent_memory", ["deal_id"])
    op.create_index("idx_agent_memory_run", "agent_memory", ["run_id"])
    op.create_table(
        "pending_actions",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("action_type", sa.String(length=100), nullable=False),
        sa.Column("payload", sa.JSON(), nullable=True),
        sa.Column("reasoning", sa.Text(), nullable=True),
        sa.Column(
            "status",
            _enum("action_status", "pending", "approved", "rejected"),
            nullable=False,
        ),
        _timestamp("resolved_at", nullable=True),
        sa.Column("agent_name", sa.String(length=100), nullable=True),
        sa.Column("run_id", sa.String(length=64), nullable=True),
        sa.Column("memory_id", sa.Integer(), sa.ForeignKey("agent_memory.id"), nullable=True),
        _timestamp("created_at"),
    )
    op.create_index("idx_pending_actions_status", "pending_actions", ["status"])
    op.create_table(
        "audit_log",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("actor", sa.String(length=100), nullable=False),
        sa.Column("command", sa.String(length=200), nullable=False),
        sa.Column("args", sa.Text(), nullable=True),
        sa.Column("result", sa.String(length=20), nullable=True),
        sa.Column("error", sa.Text(), nullable=True),
        sa.Column("duration_ms", sa.Integer(), nullable=True),
        _timestamp("created_at"),
    )
    op.create_index("idx_audit_log_actor", "audit_log", ["actor"])
    op.create_index("idx_audit_log_created_at", "audit_log", ["created_at"])


def downgrade() -> None:
    """Drop all pipeline CRM tables."""
    for table in (
        "audit_log",
        "pending_actions",
        "agent_memory",
        "schedule_logs",
        "schedules",
        "event_hooks",
        "events",
        "edges",
        "interactions",
        "tasks",
        "deals",
        "contacts",
        "organizations",
    ):
        op.drop_table(table)
