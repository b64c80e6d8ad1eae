"""Shared test fixtures."""

from __future__ import annotations

from collections.abc import Iterator
from dataclasses import replace
from datetime import datetime
from pathlib import Path

import pytest
from sqlalchemy import update as sa_update
from sqlmodel import Session, col

from agent_orchestrator.config import Settings
from agent_orchestrator.orchestrator.events import EventNotifier, RecordingObserver
from agent_orchestrator.orchestrator.lifecycle import TaskLifecycleManager
from agent_orchestrator.orchestrator.memory import MemoryRepository
from agent_orchestrator.orchestrator.models import AgentResult, TaskView
from agent_orchestrator.orchestrator.registry import CapabilityRegistry
from agent_orchestrator.orchestrator.repository import TaskRepository
from agent_orchestrator.storage.common import to_db_datetime
from agent_orchestrator.storage.sqlmodel_models import AgentTask, MemoryEntry


@pytest.fixture()
def db_path(tmp_path: Path) -> Path:
    return tmp_path / "orchestrator.db"


@pytest.fixture()
def task_repository(db_path: Path) -> Iterator[TaskRepository]:
    repository = TaskRepository(db_path)
    repository.init_schema()
    yield repository
    repository.close()


@pytest.fixture()
def memory_repository(db_path: Path, task_repository: TaskRepository) -> Iterator[MemoryRepository]:
    memory = MemoryRepository(db_path)
    yield memory
    memory.close()


@pytest.fixture()
def notifier() -> Iterator[EventNotifier]:
    with EventNotifier(max_delivery_attempts=3) as event_notifier:
        yield event_notifier


@pytest.fixture()
def recorder(notifier: EventNotifier) -> RecordingObserver:
    observer = RecordingObserver()
    notifier.subscribe(observer)
    return observer


@pytest.fixture()
def registry() -> CapabilityRegistry:
    """Registry with a ``summarizer`` that echoes its input text."""

    capabilities = CapabilityRegistry()
    capabilities.register(
        "summarizer",
        lambda task: AgentResult(data={"text": task.input.get("text", "")}, agent_id="summarizer"),
    )
    return capabilities


@pytest.fixture()
def lifecycle(
    task_repository: TaskRepository,
    notifier: EventNotifier,
    registry: CapabilityRegistry,
) -> TaskLifecycleManager:
    return TaskLifecycleManager(repository=task_repository, notifier=notifier, registry=registry)


@pytest.fixture()
def fast_sweeper_env(monkeypatch):
    """Monkeypatch Settings.from_env so CLI sweeps use a one-second timeout."""
    original_from_env = Settings.from_env

    def _patched_from_env(db_path=None):
        settings = original_from_env(db_path=db_path)
        new_sweeper = replace(settings.sweeper, task_timeout_seconds=1)
        return replace(settings, sweeper=new_sweeper)

    monkeypatch.setattr(Settings, "from_env", staticmethod(_patched_from_env))


def set_task_times(
    repository: TaskRepository,
    task_id: str,
    *,
    created_at: datetime | None = None,
    started_at: datetime | None = None,
) -> None:
    """Backdate task timestamps directly in the table."""

    values: dict[str, datetime] = {}
    if created_at is not None:
        values["created_at"] = to_db_datetime(created_at)
    if started_at is not None:
        values["started_at"] = to_db_datetime(started_at)
    with Session(repository.engine) as session:
        session.exec(sa_update(AgentTask).where(col(AgentTask.task_id) == task_id).values(**values))
        session.commit()


def set_memory_updated_at(memory: MemoryRepository, key: str, updated_at: datetime) -> None:
    with Session(memory.engine) as session:
        session.exec(
            sa_update(MemoryEntry)
            .where(col(MemoryEntry.key) == key)
            .values(created_at=to_db_datetime(updated_at), updated_at=to_db_datetime(updated_at)),
        )
        session.commit()


def processing_task(
    lifecycle: TaskLifecycleManager,
    task_id: str,
    *,
    agent_id: str = "summarizer",
    owner_id: str = "u1",
) -> TaskView:
    lifecycle.create(task_id, agent_id, owner_id, {"text": "hello"})
    return lifecycle.start(task_id)
