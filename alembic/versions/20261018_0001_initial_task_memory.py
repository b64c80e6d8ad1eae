"""Initial agent task, task event, and memory entry tables."""

from __future__ import annotations

import sqlalchemy as sa

from alembic import op

revision = "20261018_0001"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        "agent_tasks",
        sa.Column("task_id", sa.String(), nullable=False),
        sa.Column("agent_id", sa.String(), nullable=False),
        sa.Column("owner_id", sa.String(), nullable=False),
        sa.Column("status", sa.String(), nullable=False),
        sa.Column("payload_schema", sa.String(), nullable=False),
        sa.Column("payload_version", sa.Integer(), nullable=False, server_default="1"),
        sa.Column("input_json", sa.Text(), nullable=False),
        sa.Column("result_json", sa.Text(), nullable=True),
        sa.Column("error", sa.Text(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("started_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("completed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("task_id"),
    )
    op.create_index("ix_agent_tasks_agent_id", "agent_tasks", ["agent_id"], unique=False)
    op.create_index("ix_agent_tasks_owner_id", "agent_tasks", ["owner_id"], unique=False)
    op.create_index("ix_agent_tasks_status", "agent_tasks", ["status"], unique=False)
    op.create_index(
        "idx_agent_tasks_owner_status",
        "agent_tasks",
        ["owner_id", "status"],
        unique=False,
    )
    op.create_index(
        "idx_agent_tasks_agent_status_created",
        "agent_tasks",
        ["agent_id", "status", "created_at"],
        unique=False,
    )
    op.create_index(
        "idx_agent_tasks_status_started",
        "agent_tasks",
        ["status", "started_at"],
        unique=False,
    )

    op.create_table(
        "agent_task_events",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("task_id", sa.String(), nullable=False),
        sa.Column("event_type", sa.String(), nullable=False),
        sa.Column("status_from", sa.String(), nullable=True),
        sa.Column("status_to", sa.String(), nullable=True),
        sa.Column("details_json", sa.Text(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(["task_id"], ["agent_tasks.task_id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(
        "ix_agent_task_events_task_id",
        "agent_task_events",
        ["task_id"],
        unique=False,
    )
    op.create_index(
        "ix_agent_task_events_event_type",
        "agent_task_events",
        ["event_type"],
        unique=False,
    )
    op.create_index(
        "idx_agent_task_events_task_time",
        "agent_task_events",
        ["task_id", "created_at"],
        unique=False,
    )

    op.create_table(
        "memory_entries",
        sa.Column("key", sa.String(), nullable=False),
        sa.Column("data_json", sa.Text(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("key"),
    )
    op.create_index(
        "ix_memory_entries_updated_at",
        "memory_entries",
        ["updated_at"],
        unique=False,
    )


def downgrade() -> None:
    op.drop_index("ix_memory_entries_updated_at", table_name="memory_entries")
    op.drop_table("memory_entries")
    op.drop_index("idx_agent_task_events_task_time", table_name="agent_task_events")
    op.drop_index("ix_agent_task_events_event_type", table_name="agent_task_events")
    op.drop_index("ix_agent_task_events_task_id", table_name="agent_task_events")
    op.drop_table("agent_task_events")
    op.drop_index("idx_agent_tasks_status_started", table_name="agent_tasks")
    op.drop_index("idx_agent_tasks_agent_status_created", table_name="agent_tasks")
    op.drop_index("idx_agent_tasks_owner_status", table_name="agent_tasks")
    op.drop_index("ix_agent_tasks_status", table_name="agent_tasks")
    op.drop_index("ix_agent_tasks_owner_id", table_name="agent_tasks")
    op.drop_index("ix_agent_tasks_agent_id", table_name="agent_tasks")
    op.drop_table("agent_tasks")
