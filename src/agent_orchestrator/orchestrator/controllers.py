"""Controllers for orchestrator CLI commands."""

from __future__ import annotations

import json
from collections.abc import Iterator
from concurrent.futures import Future
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta
from pathlib import Path
from typing import Any

from agent_orchestrator.config import Settings
from agent_orchestrator.orchestrator.dispatcher import DispatchOutcome
from agent_orchestrator.orchestrator.errors import OrchestratorError, PoolSaturatedError
from agent_orchestrator.orchestrator.memory import MemoryRepository
from agent_orchestrator.orchestrator.metrics import build_agent_metrics, render_stats_lines
from agent_orchestrator.orchestrator.models import ACTIVE_STATUSES, TaskStatus, TaskView
from agent_orchestrator.orchestrator.repository import TaskRepository
from agent_orchestrator.orchestrator.runtime import open_runtime


@dataclass(slots=True)
class TaskCreateCommand:
    """CLI input for task creation."""

    db_path: Path | None
    agent_id: str
    owner_id: str
    input_json: str
    task_id: str | None = None


@dataclass(slots=True)
class TaskMutateCommand:
    """CLI input for start/complete/fail."""

    db_path: Path | None
    task_id: str
    result_json: str | None = None
    message: str | None = None


@dataclass(slots=True)
class TaskListCommand:
    """CLI input for task listing."""

    db_path: Path | None
    status: str | None
    owner_id: str | None
    agent_id: str | None
    limit: int


@dataclass(slots=True)
class TaskInspectCommand:
    """CLI input for task inspection."""

    db_path: Path | None
    task_id: str


@dataclass(slots=True)
class TaskRunCommand:
    """CLI input for dispatching tasks through the registry."""

    db_path: Path | None
    task_ids: tuple[str, ...]
    pending: bool
    limit: int = 50


@dataclass(slots=True)
class MemoryCommand:
    """CLI input for memory get/put/scan/delete."""

    db_path: Path | None
    key: str
    data_json: str | None = None


@dataclass(slots=True)
class SweepCommand:
    """CLI input for sweeps."""

    db_path: Path | None
    max_iterations: int | None = None


@dataclass(slots=True)
class StatsCommand:
    """CLI input for task health stats."""

    db_path: Path | None
    hours: int | None


class OrchestratorCliController:
    """Coordinates task, memory, sweep, and stats CLI operations."""

    def create_task(self, command: TaskCreateCommand) -> list[str]:
        settings = Settings.from_env(db_path=command.db_path)
        task_input = _parse_json_object(command.input_json, label="--input")
        with open_runtime(settings) as runtime:
            task = runtime.lifecycle.create(
                command.task_id,
                command.agent_id,
                command.owner_id,
                task_input,
            )
        return [f"Task created: {_task_line(task)}"]

    def start_task(self, command: TaskMutateCommand) -> list[str]:
        settings = Settings.from_env(db_path=command.db_path)
        with open_runtime(settings) as runtime:
            task = runtime.lifecycle.start(command.task_id)
        return [f"Task started: {_task_line(task)}"]

    def complete_task(self, command: TaskMutateCommand) -> list[str]:
        settings = Settings.from_env(db_path=command.db_path)
        result = _parse_json_object(command.result_json or "{}", label="--result")
        with open_runtime(settings) as runtime:
            task = runtime.lifecycle.complete(command.task_id, result)
        return [f"Task completed: {_task_line(task)}"]

    def fail_task(self, command: TaskMutateCommand) -> list[str]:
        settings = Settings.from_env(db_path=command.db_path)
        with open_runtime(settings) as runtime:
            task = runtime.lifecycle.fail(command.task_id, command.message or "")
        return [f"Task failed: {_task_line(task)}", f"Error: {task.error}"]

    def list_tasks(self, command: TaskListCommand) -> list[str]:
        settings = Settings.from_env(db_path=command.db_path)
        status_filter = _parse_status(command.status)
        with _repository(settings) as repository:
            tasks = repository.list_tasks(
                status=status_filter,
                owner_id=command.owner_id,
                agent_id=command.agent_id,
                limit=command.limit,
            )

        lines = [f"Tasks: {len(tasks)}"]
        for task in tasks:
            lines.append(f"  {_task_line(task)} created_at={task.created_at.isoformat()}")
        return lines

    def inspect_task(self, command: TaskInspectCommand) -> list[str]:
        settings = Settings.from_env(db_path=command.db_path)
        with _repository(settings) as repository:
            details = repository.get_task_details(task_id=command.task_id)
        if details is None:
            return [f"Task not found: {command.task_id}"]

        task = details.task
        lines = [
            f"Task: {task.task_id}",
            f"Agent: {task.agent_id}",
            f"Owner: {task.owner_id}",
            f"Status: {task.status.value}",
            f"Created: {task.created_at.isoformat()}",
            f"Started: {_fmt_time(task.started_at)}",
            f"Completed: {_fmt_time(task.completed_at)}",
            f"Error: {task.error or '-'}",
            f"Input: {json.dumps(task.input, ensure_ascii=False, sort_keys=True)}",
            "Result: "
            + (
                json.dumps(task.result, ensure_ascii=False, sort_keys=True)
                if task.result is not None
                else "-"
            ),
            f"Events: {len(details.events)}",
        ]
        for event in details.events:
            lines.append(
                f"  {event.created_at.isoformat()} {event.event_type} "
                f"{event.status_from.value if event.status_from else '-'} -> "
                f"{event.status_to.value if event.status_to else '-'}",
            )
        return lines

    def run_tasks(self, command: TaskRunCommand) -> list[str]:
        """Dispatch the given tasks (or pending ones) and wait for them."""

        if not command.task_ids and not command.pending:
            raise ValueError("Pass at least one --task-id or --pending.")
        settings = Settings.from_env(db_path=command.db_path)
        lines: list[str] = []
        with open_runtime(settings) as runtime:
            dispatcher = runtime.dispatcher
            if command.pending:
                outcomes = dispatcher.dispatch_pending(limit=command.limit)
            else:
                futures: list[tuple[str, Future[DispatchOutcome]]] = []
                for task_id in command.task_ids:
                    try:
                        futures.append((task_id, dispatcher.submit(task_id)))
                    except PoolSaturatedError as error:
                        lines.append(f"  {task_id} not scheduled: {error}")
                outcomes = []
                for task_id, future in futures:
                    try:
                        outcomes.append(future.result())
                    except OrchestratorError as error:
                        lines.append(f"  {task_id} not run: {error}")
            summary = dispatcher.summary

        for outcome in outcomes:
            suffix = " (fallback)" if outcome.used_fallback else ""
            error = f" error={outcome.error}" if outcome.error else ""
            hook = f" hook_error={outcome.hook_error}" if outcome.hook_error else ""
            lines.append(
                f"  {outcome.task_id} status={outcome.status.value}{suffix}{error}{hook}",
            )
        return [
            "Dispatch summary: "
            f"dispatched={summary.dispatched} completed={summary.completed} "
            f"failed={summary.failed} used_fallback={summary.used_fallback} "
            f"late_results_dropped={summary.late_results_dropped} "
            f"rejected={summary.rejected} hook_failures={summary.hook_failures}",
            *lines,
        ]

    def memory_get(self, command: MemoryCommand) -> list[str]:
        settings = Settings.from_env(db_path=command.db_path)
        with _memory(settings) as memory:
            entry = memory.get(command.key)
        if entry is None:
            return [f"Memory key not found: {command.key}"]
        return [
            f"Key: {entry.key}",
            f"Created: {entry.created_at.isoformat()}",
            f"Updated: {entry.updated_at.isoformat()}",
            f"Data: {json.dumps(entry.data, ensure_ascii=False, sort_keys=True)}",
        ]

    def memory_put(self, command: MemoryCommand) -> list[str]:
        settings = Settings.from_env(db_path=command.db_path)
        data = _parse_json_object(command.data_json or "{}", label="--data")
        with _memory(settings) as memory:
            entry = memory.put(command.key, data)
        return [f"Memory stored: key={entry.key} updated_at={entry.updated_at.isoformat()}"]

    def memory_scan(self, command: MemoryCommand) -> list[str]:
        settings = Settings.from_env(db_path=command.db_path)
        with _memory(settings) as memory:
            entries = memory.scan_by_prefix(command.key)
        lines = [f"Memory entries: {len(entries)}"]
        for entry in entries:
            lines.append(f"  {entry.key} updated_at={entry.updated_at.isoformat()}")
        return lines

    def memory_delete(self, command: MemoryCommand) -> list[str]:
        settings = Settings.from_env(db_path=command.db_path)
        with _memory(settings) as memory:
            deleted = memory.delete(command.key)
        if not deleted:
            return [f"Memory key not found: {command.key}"]
        return [f"Memory deleted: {command.key}"]

    def sweep_timeouts(self, command: SweepCommand) -> list[str]:
        settings = Settings.from_env(db_path=command.db_path)
        with open_runtime(settings) as runtime:
            summary = runtime.sweeper.sweep_timeouts()
        lines = [
            "Timeout sweep: "
            f"threshold={settings.sweeper.task_timeout_seconds}s "
            f"candidates={summary.candidates} timed_out={summary.timed_out} "
            f"raced={summary.raced}",
        ]
        lines.extend(f"  {task_id}" for task_id in summary.task_ids)
        return lines

    def sweep_retention(self, command: SweepCommand) -> list[str]:
        settings = Settings.from_env(db_path=command.db_path)
        with open_runtime(settings) as runtime:
            summary = runtime.sweeper.sweep_retention()
        return [
            "Retention sweep: "
            f"task_retention_days={settings.sweeper.task_retention_days} "
            f"memory_stale_days={settings.sweeper.memory_stale_days} "
            f"tasks_deleted={summary.tasks_deleted} memory_deleted={summary.memory_deleted}",
        ]

    def sweep_loop(self, command: SweepCommand) -> list[str]:
        settings = Settings.from_env(db_path=command.db_path)
        with open_runtime(settings) as runtime:
            summary = runtime.sweeper.run_loop(max_iterations=command.max_iterations)
        return [
            "Sweeper summary: "
            f"timeout_sweeps={summary.timeout_sweeps} "
            f"retention_sweeps={summary.retention_sweeps} "
            f"timed_out={summary.timed_out} tasks_deleted={summary.tasks_deleted} "
            f"memory_deleted={summary.memory_deleted} errors={summary.errors}",
        ]

    def stats(self, command: StatsCommand) -> list[str]:
        """Show operator-facing task health metrics."""

        settings = Settings.from_env(db_path=command.db_path)
        hours = command.hours or settings.metrics_window_hours
        cutoff = datetime.now(tz=UTC) - timedelta(hours=max(1, hours))
        with _repository(settings) as repository:
            active_tasks = repository.list_tasks_for_metrics(statuses=ACTIVE_STATUSES)
            window_tasks = repository.list_tasks_for_metrics(since=cutoff)
            window_events = repository.list_events_for_metrics(since=cutoff)

        snapshot = build_agent_metrics(
            active_tasks=active_tasks,
            window_tasks=window_tasks,
            window_events=window_events,
        )
        return render_stats_lines(snapshot=snapshot, hours=hours)


def _task_line(task: TaskView) -> str:
    return (
        f"task_id={task.task_id} agent={task.agent_id} owner={task.owner_id} "
        f"status={task.status.value}"
    )


def _fmt_time(value: datetime | None) -> str:
    return value.isoformat() if value is not None else "-"


def _parse_status(value: str | None) -> TaskStatus | None:
    if value is None:
        return None
    try:
        return TaskStatus(value.strip().lower())
    except ValueError as error:
        raise ValueError(f"Unsupported task status: {value!r}") from error


def _parse_json_object(raw: str, *, label: str) -> dict[str, Any]:
    try:
        parsed = json.loads(raw)
    except json.JSONDecodeError as error:
        raise ValueError(f"{label} must be valid JSON: {error.msg}") from error
    if not isinstance(parsed, dict):
        raise ValueError(f"{label} must be a JSON object.")
    return parsed


@contextmanager
def _repository(settings: Settings) -> Iterator[TaskRepository]:
    repository = TaskRepository(
        settings.db_path,
        sqlite_busy_timeout_ms=settings.sqlite_busy_timeout_ms,
    )
    repository.init_schema()
    try:
        yield repository
    finally:
        repository.close()


@contextmanager
def _memory(settings: Settings) -> Iterator[MemoryRepository]:
    memory = MemoryRepository(
        settings.db_path,
        sqlite_busy_timeout_ms=settings.sqlite_busy_timeout_ms,
    )
    memory.init_schema()
    try:
        yield memory
    finally:
        memory.close()
