"""Persistent task store backed by SQLModel + SQLite."""

from __future__ import annotations

import json
from collections.abc import Iterable
from datetime import datetime
from pathlib import Path
from typing import Any
from uuid import uuid4

from sqlalchemy import delete as sa_delete
from sqlalchemy import update as sa_update
from sqlalchemy.exc import IntegrityError
from sqlmodel import Session, col, select

from agent_orchestrator.orchestrator.errors import DuplicateIdError
from agent_orchestrator.orchestrator.models import (
    ACTIVE_STATUSES,
    TERMINAL_STATUSES,
    TaskCreate,
    TaskDetails,
    TaskEventType,
    TaskEventView,
    TaskStatus,
    TaskView,
)
from agent_orchestrator.orchestrator.payloads import decode_payload, encode_payload
from agent_orchestrator.storage.alembic_runner import upgrade_head
from agent_orchestrator.storage.common import (
    build_sqlite_engine,
    optional_utc,
    to_db_datetime,
    to_utc_aware_datetime,
    utc_now,
)
from agent_orchestrator.storage.sqlmodel_models import AgentTask, AgentTaskEvent


class TaskRepository:
    """Task persistence facade.

    Every transition is a single-row compare-and-set on ``status``; a ``None``
    return means the row was missing or another writer moved it first.
    """

    def __init__(self, db_path: Path, *, sqlite_busy_timeout_ms: int = 5_000) -> None:
        self.db_path = db_path
        self.engine = build_sqlite_engine(
            db_path=db_path,
            busy_timeout_ms=sqlite_busy_timeout_ms,
        )

    def close(self) -> None:
        """Close underlying DB resources."""

        self.engine.dispose()

    def init_schema(self) -> None:
        """Run schema migrations."""

        upgrade_head(self.db_path)

    def create_task(self, payload: TaskCreate) -> TaskView:
        """Insert a pending task or raise ``DuplicateIdError``."""

        now = utc_now()
        task_id = payload.task_id or str(uuid4())
        tagged = encode_payload(payload.agent_id, payload.input)
        with Session(self.engine) as session:
            existing = session.exec(
                select(AgentTask.task_id).where(AgentTask.task_id == task_id),
            ).one_or_none()
            if existing is not None:
                raise DuplicateIdError(task_id)
            row = AgentTask(
                task_id=task_id,
                agent_id=payload.agent_id,
                owner_id=payload.owner_id,
                status=TaskStatus.PENDING.value,
                payload_schema=tagged.schema,
                payload_version=tagged.version,
                input_json=tagged.to_json(),
                created_at=now,
                updated_at=now,
            )
            session.add(row)
            try:
                session.flush()
            except IntegrityError as error:
                session.rollback()
                raise DuplicateIdError(task_id) from error
            self._add_event(
                session=session,
                task_id=task_id,
                event_type=TaskEventType.CREATED.value,
                status_from=None,
                status_to=TaskStatus.PENDING,
                details={"agent_id": payload.agent_id, "owner_id": payload.owner_id},
            )
            try:
                session.commit()
            except IntegrityError as error:
                session.rollback()
                raise DuplicateIdError(task_id) from error
            session.refresh(row)
            return _to_task_view(row)

    def get_task(self, task_id: str) -> TaskView | None:
        with Session(self.engine) as session:
            row = session.exec(
                select(AgentTask).where(AgentTask.task_id == task_id),
            ).one_or_none()
            return _to_task_view(row) if row is not None else None

    def mark_started(self, *, task_id: str) -> TaskView | None:
        """pending -> processing; returns the post-transition snapshot."""

        now = to_db_datetime(utc_now())
        with Session(self.engine) as session:
            result = session.exec(
                sa_update(AgentTask)
                .where(
                    col(AgentTask.task_id) == task_id,
                    col(AgentTask.status) == TaskStatus.PENDING.value,
                )
                .values(
                    status=TaskStatus.PROCESSING.value,
                    started_at=now,
                    updated_at=now,
                ),
            )
            if result.rowcount != 1:
                session.rollback()
                return None
            self._add_event(
                session=session,
                task_id=task_id,
                event_type=TaskEventType.STARTED.value,
                status_from=TaskStatus.PENDING,
                status_to=TaskStatus.PROCESSING,
                details={},
            )
            snapshot = _to_task_view(_reload(session, task_id))
            session.commit()
            return snapshot

    def mark_completed(self, *, task_id: str, result: dict[str, Any]) -> TaskView | None:
        """processing -> completed, storing the result and clearing any error."""

        with Session(self.engine) as session:
            row = session.exec(
                select(AgentTask).where(AgentTask.task_id == task_id),
            ).one_or_none()
            if row is None or row.status != TaskStatus.PROCESSING.value:
                return None
            tagged = encode_payload(row.agent_id, result)
            now = _not_before(utc_now(), row.started_at)
            update_result = session.exec(
                sa_update(AgentTask)
                .where(
                    col(AgentTask.task_id) == task_id,
                    col(AgentTask.status) == TaskStatus.PROCESSING.value,
                )
                .values(
                    status=TaskStatus.COMPLETED.value,
                    result_json=tagged.to_json(),
                    error=None,
                    completed_at=now,
                    updated_at=now,
                ),
            )
            if update_result.rowcount != 1:
                session.rollback()
                return None
            self._add_event(
                session=session,
                task_id=task_id,
                event_type=TaskEventType.COMPLETED.value,
                status_from=TaskStatus.PROCESSING,
                status_to=TaskStatus.COMPLETED,
                details={},
            )
            snapshot = _to_task_view(_reload(session, task_id))
            session.commit()
            return snapshot

    def mark_failed(
        self,
        *,
        task_id: str,
        error: str,
        event_type: TaskEventType = TaskEventType.FAILED,
        details: dict[str, object] | None = None,
    ) -> TaskView | None:
        """processing -> failed with a human-readable error.

        ``details`` is merged into the persisted event, for example a failure
        classification.
        """

        if event_type not in {TaskEventType.FAILED, TaskEventType.TIMED_OUT}:
            raise ValueError(f"Unsupported failure event type: {event_type}")

        with Session(self.engine) as session:
            row = session.exec(
                select(AgentTask).where(AgentTask.task_id == task_id),
            ).one_or_none()
            if row is None or row.status != TaskStatus.PROCESSING.value:
                return None
            now = _not_before(utc_now(), row.started_at)
            update_result = session.exec(
                sa_update(AgentTask)
                .where(
                    col(AgentTask.task_id) == task_id,
                    col(AgentTask.status) == TaskStatus.PROCESSING.value,
                )
                .values(
                    status=TaskStatus.FAILED.value,
                    error=error,
                    result_json=None,
                    completed_at=now,
                    updated_at=now,
                ),
            )
            if update_result.rowcount != 1:
                session.rollback()
                return None
            self._add_event(
                session=session,
                task_id=task_id,
                event_type=event_type.value,
                status_from=TaskStatus.PROCESSING,
                status_to=TaskStatus.FAILED,
                details={**(details or {}), "error": error},
            )
            snapshot = _to_task_view(_reload(session, task_id))
            session.commit()
            return snapshot

    def add_task_event(
        self,
        *,
        task_id: str,
        event_type: str,
        status_from: TaskStatus | None,
        status_to: TaskStatus | None,
        details: dict[str, object],
    ) -> None:
        """Append an audit event without changing task state."""

        with Session(self.engine) as session:
            self._add_event(
                session=session,
                task_id=task_id,
                event_type=event_type,
                status_from=status_from,
                status_to=status_to,
                details=details,
            )
            session.commit()

    def list_tasks(
        self,
        *,
        status: TaskStatus | None = None,
        owner_id: str | None = None,
        agent_id: str | None = None,
        limit: int = 50,
    ) -> list[TaskView]:
        """List recent tasks, newest first."""

        with Session(self.engine) as session:
            statement = select(AgentTask)
            if status is not None:
                statement = statement.where(AgentTask.status == status.value)
            if owner_id is not None:
                statement = statement.where(AgentTask.owner_id == owner_id)
            if agent_id is not None:
                statement = statement.where(AgentTask.agent_id == agent_id)
            statement = statement.order_by(col(AgentTask.created_at).desc()).limit(limit)
            rows = session.exec(statement).all()
        return [_to_task_view(row) for row in rows]

    def list_pending_oldest(self, *, limit: int = 50) -> list[TaskView]:
        """Pending tasks, oldest first, at most ``limit``."""

        with Session(self.engine) as session:
            rows = session.exec(
                select(AgentTask)
                .where(AgentTask.status == TaskStatus.PENDING.value)
                .order_by(col(AgentTask.created_at).asc(), col(AgentTask.task_id).asc())
                .limit(limit),
            ).all()
        return [_to_task_view(row) for row in rows]

    def list_active_for_owner(self, *, owner_id: str) -> list[TaskView]:
        with Session(self.engine) as session:
            rows = session.exec(
                select(AgentTask)
                .where(
                    AgentTask.owner_id == owner_id,
                    col(AgentTask.status).in_(_values(ACTIVE_STATUSES)),
                )
                .order_by(col(AgentTask.created_at).asc()),
            ).all()
        return [_to_task_view(row) for row in rows]

    def list_active_for_agent(self, *, agent_id: str) -> list[TaskView]:
        """Active tasks for one agent, oldest first."""

        with Session(self.engine) as session:
            rows = session.exec(
                select(AgentTask)
                .where(
                    AgentTask.agent_id == agent_id,
                    col(AgentTask.status).in_(_values(ACTIVE_STATUSES)),
                )
                .order_by(col(AgentTask.created_at).asc(), col(AgentTask.task_id).asc()),
            ).all()
        return [_to_task_view(row) for row in rows]

    def list_timed_out(self, *, started_before: datetime) -> list[TaskView]:
        """Processing tasks whose ``started_at`` precedes the cutoff."""

        with Session(self.engine) as session:
            rows = session.exec(
                select(AgentTask)
                .where(
                    AgentTask.status == TaskStatus.PROCESSING.value,
                    col(AgentTask.started_at) < to_db_datetime(started_before),
                )
                .order_by(col(AgentTask.started_at).asc()),
            ).all()
        return [_to_task_view(row) for row in rows]

    def delete_terminal_older_than(self, *, cutoff: datetime) -> int:
        """Delete completed/failed tasks created before the cutoff."""

        with Session(self.engine) as session:
            result = session.exec(
                sa_delete(AgentTask).where(
                    col(AgentTask.status).in_(_values(TERMINAL_STATUSES)),
                    col(AgentTask.created_at) < to_db_datetime(cutoff),
                ),
            )
            session.commit()
            return int(result.rowcount or 0)

    def list_tasks_for_metrics(
        self,
        *,
        statuses: Iterable[TaskStatus] | None = None,
        since: datetime | None = None,
    ) -> list[TaskView]:
        with Session(self.engine) as session:
            statement = select(AgentTask)
            if statuses is not None:
                statement = statement.where(col(AgentTask.status).in_(_values(statuses)))
            if since is not None:
                statement = statement.where(col(AgentTask.updated_at) >= to_db_datetime(since))
            rows = session.exec(statement).all()
        return [_to_task_view(row) for row in rows]

    def list_events_for_metrics(self, *, since: datetime) -> list[TaskEventView]:
        with Session(self.engine) as session:
            rows = session.exec(
                select(AgentTaskEvent)
                .where(col(AgentTaskEvent.created_at) >= to_db_datetime(since))
                .order_by(col(AgentTaskEvent.created_at).asc()),
            ).all()
        return [_to_event_view(row) for row in rows]

    def get_task_details(self, *, task_id: str) -> TaskDetails | None:
        """Return a task with its event history."""

        with Session(self.engine) as session:
            task = session.exec(
                select(AgentTask).where(AgentTask.task_id == task_id),
            ).one_or_none()
            if task is None:
                return None
            event_rows = session.exec(
                select(AgentTaskEvent)
                .where(AgentTaskEvent.task_id == task_id)
                .order_by(col(AgentTaskEvent.created_at).asc(), col(AgentTaskEvent.id).asc()),
            ).all()
            return TaskDetails(
                task=_to_task_view(task),
                events=[_to_event_view(row) for row in event_rows],
            )

    def _add_event(  # noqa: PLR0913
        self,
        *,
        session: Session,
        task_id: str,
        event_type: str,
        status_from: TaskStatus | None,
        status_to: TaskStatus | None,
        details: dict[str, object],
    ) -> None:
        session.add(
            AgentTaskEvent(
                task_id=task_id,
                event_type=event_type,
                status_from=status_from.value if status_from is not None else None,
                status_to=status_to.value if status_to is not None else None,
                details_json=json.dumps(details, ensure_ascii=False, sort_keys=True)
                if details
                else None,
                created_at=utc_now(),
            ),
        )


def _reload(session: Session, task_id: str) -> AgentTask:
    return session.exec(
        select(AgentTask)
        .where(AgentTask.task_id == task_id)
        .execution_options(populate_existing=True),
    ).one()


def _values(statuses: Iterable[TaskStatus]) -> list[str]:
    return [status.value for status in statuses]


def _not_before(now: datetime, started_at: datetime | None) -> datetime:
    current = to_db_datetime(now)
    if started_at is None:
        return current
    started = to_db_datetime(started_at)
    return max(current, started)


def _to_event_view(row: AgentTaskEvent) -> TaskEventView:
    details: dict[str, Any] = {}
    if row.details_json:
        parsed = json.loads(row.details_json)
        if isinstance(parsed, dict):
            details = parsed
    return TaskEventView(
        event_id=row.id or 0,
        task_id=row.task_id,
        event_type=row.event_type,
        status_from=TaskStatus(row.status_from) if row.status_from is not None else None,
        status_to=TaskStatus(row.status_to) if row.status_to is not None else None,
        created_at=to_utc_aware_datetime(row.created_at),
        details=details,
    )


def _to_task_view(row: AgentTask) -> TaskView:
    task_input = decode_payload(row.input_json, expected_schema=row.payload_schema).data
    result = (
        decode_payload(row.result_json, expected_schema=row.agent_id).data
        if row.result_json is not None
        else None
    )
    return TaskView(
        task_id=row.task_id,
        agent_id=row.agent_id,
        owner_id=row.owner_id,
        input=task_input,
        status=TaskStatus(row.status),
        error=row.error,
        result=result,
        created_at=to_utc_aware_datetime(row.created_at),
        started_at=optional_utc(row.started_at),
        completed_at=optional_utc(row.completed_at),
        updated_at=to_utc_aware_datetime(row.updated_at),
    )
