"""Domain models for agent tasks, lifecycle events, and memory entries."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any


class TaskStatus(str, Enum):
    """Durable task lifecycle states."""

    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"


ACTIVE_STATUSES = frozenset({TaskStatus.PENDING, TaskStatus.PROCESSING})
TERMINAL_STATUSES = frozenset({TaskStatus.COMPLETED, TaskStatus.FAILED})


class TaskEventType(str, Enum):
    """Lifecycle transitions published to observers."""

    CREATED = "created"
    STARTED = "started"
    PROGRESS = "progress"
    COMPLETED = "completed"
    FAILED = "failed"
    TIMED_OUT = "timed_out"


class FailureClass(str, Enum):
    """Normalized provider failure classes used by retry policy."""

    TIMEOUT = "timeout"
    PROVIDER_TRANSIENT = "provider_transient"
    PROVIDER_NON_RETRYABLE = "provider_non_retryable"
    BILLING_OR_QUOTA = "billing_or_quota"
    ACCESS_OR_AUTH = "access_or_auth"
    MODEL_NOT_AVAILABLE = "model_not_available"


@dataclass(slots=True)
class TaskCreate:
    """Input payload for creating a task."""

    agent_id: str
    owner_id: str
    input: dict[str, Any]
    task_id: str | None = None


@dataclass(slots=True)
class TaskView:
    """Snapshot of one task row."""

    task_id: str
    agent_id: str
    owner_id: str
    input: dict[str, Any]
    status: TaskStatus
    error: str | None
    result: dict[str, Any] | None
    created_at: datetime
    started_at: datetime | None
    completed_at: datetime | None
    updated_at: datetime

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    @property
    def duration_seconds(self) -> float | None:
        if self.started_at is None or self.completed_at is None:
            return None
        return (self.completed_at - self.started_at).total_seconds()


@dataclass(slots=True)
class TaskEventView:
    """Persisted lifecycle event entry for audit trail."""

    event_id: int
    task_id: str
    event_type: str
    status_from: TaskStatus | None
    status_to: TaskStatus | None
    created_at: datetime
    details: dict[str, Any] = field(default_factory=dict)


@dataclass(slots=True)
class TaskDetails:
    """Task with its event history."""

    task: TaskView
    events: list[TaskEventView]


@dataclass(slots=True, frozen=True)
class TaskEvent:
    """Event published to observers; carries the task snapshot at transition time."""

    event_type: TaskEventType
    task: TaskView
    timestamp: datetime
    progress_percent: int | None = None

    @property
    def task_id(self) -> str:
        return self.task.task_id

    @property
    def owner_id(self) -> str:
        return self.task.owner_id

    @property
    def agent_id(self) -> str:
        return self.task.agent_id

    @property
    def status(self) -> TaskStatus:
        return self.task.status

    def to_record(self) -> dict[str, object]:
        """Serialize as the observer-facing stream record."""

        return {
            "taskId": self.task_id,
            "ownerId": self.owner_id,
            "agentId": self.agent_id,
            "eventType": self.event_type.value,
            "status": self.status.value,
            "progressPercent": self.progress_percent,
            "timestamp": self.timestamp.isoformat(),
        }


@dataclass(slots=True)
class MemoryEntryView:
    """Stored memory document."""

    key: str
    data: dict[str, Any]
    created_at: datetime
    updated_at: datetime


@dataclass(slots=True)
class AgentResult:
    """Structured output of one agent invocation."""

    data: dict[str, Any]
    agent_id: str
    used_fallback: bool = False
    primary_failure_reason: str | None = None

    def to_document(self) -> dict[str, Any]:
        document: dict[str, Any] = dict(self.data)
        if self.used_fallback:
            document["usedFallback"] = True
            document["primaryFailureReason"] = self.primary_failure_reason
            document["servedBy"] = self.agent_id
        return document
