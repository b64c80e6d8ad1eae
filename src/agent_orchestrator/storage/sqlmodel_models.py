"""SQLModel ORM tables for task and memory storage."""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import Column, DateTime, ForeignKey, Index, Text
from sqlmodel import Field, SQLModel


class AgentTask(SQLModel, table=True):
    __tablename__ = "agent_tasks"  # type: ignore[bad-override]
    __table_args__ = (
        Index("idx_agent_tasks_owner_status", "owner_id", "status"),
        Index("idx_agent_tasks_agent_status_created", "agent_id", "status", "created_at"),
        Index("idx_agent_tasks_status_started", "status", "started_at"),
    )

    task_id: str = Field(primary_key=True)
    agent_id: str = Field(index=True)
    owner_id: str = Field(index=True)
    status: str = Field(index=True)
    payload_schema: str
    payload_version: int = Field(default=1)
    input_json: str = Field(sa_column=Column(Text, nullable=False))
    result_json: str | None = Field(default=None, sa_column=Column(Text))
    error: str | None = Field(default=None, sa_column=Column(Text))
    created_at: datetime = Field(sa_column=Column(DateTime(timezone=True), nullable=False))
    started_at: datetime | None = Field(default=None, sa_column=Column(DateTime(timezone=True)))
    completed_at: datetime | None = Field(
        default=None,
        sa_column=Column(DateTime(timezone=True)),
    )
    updated_at: datetime = Field(sa_column=Column(DateTime(timezone=True), nullable=False))


class AgentTaskEvent(SQLModel, table=True):
    __tablename__ = "agent_task_events"  # type: ignore[bad-override]
    __table_args__ = (Index("idx_agent_task_events_task_time", "task_id", "created_at"),)

    id: int | None = Field(default=None, primary_key=True)
    task_id: str = Field(
        sa_column=Column(
            ForeignKey("agent_tasks.task_id", ondelete="CASCADE"),
            nullable=False,
            index=True,
        ),
    )
    event_type: str = Field(index=True)
    status_from: str | None = Field(default=None)
    status_to: str | None = Field(default=None)
    details_json: str | None = Field(default=None, sa_column=Column(Text))
    created_at: datetime = Field(sa_column=Column(DateTime(timezone=True), nullable=False))


class MemoryEntry(SQLModel, table=True):
    __tablename__ = "memory_entries"  # type: ignore[bad-override]

    key: str = Field(primary_key=True)
    data_json: str = Field(sa_column=Column(Text, nullable=False))
    created_at: datetime = Field(sa_column=Column(DateTime(timezone=True), nullable=False))
    updated_at: datetime = Field(
        sa_column=Column(DateTime(timezone=True), nullable=False, index=True),
    )
