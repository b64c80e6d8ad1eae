"""CLI entrypoint for agent-orchestrator."""

import logging
import os
from collections.abc import Callable
from pathlib import Path
from typing import Any

import rich_click as click

from agent_orchestrator import __version__
from agent_orchestrator.config import LOG_LEVELS
from agent_orchestrator.orchestrator.controllers import (
    MemoryCommand,
    OrchestratorCliController,
    StatsCommand,
    SweepCommand,
    TaskCreateCommand,
    TaskInspectCommand,
    TaskListCommand,
    TaskMutateCommand,
    TaskRunCommand,
)
from agent_orchestrator.orchestrator.errors import OrchestratorError

click.rich_click.USE_MARKDOWN = True
ORCHESTRATOR_CONTROLLER = OrchestratorCliController()


@click.group()
@click.version_option(version=__version__, prog_name="agent-orchestrator")
@click.option(
    "--log-level",
    type=click.Choice(LOG_LEVELS, case_sensitive=False),
    default=None,
    help="Override AGENT_ORCH_LOG_LEVEL.",
)
def agent_orchestrator(log_level: str | None) -> None:
    """Agent task orchestrator CLI."""

    level = (log_level or os.getenv("AGENT_ORCH_LOG_LEVEL", "INFO")).upper()
    logging.basicConfig(
        level=getattr(logging, level, logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


@agent_orchestrator.group()
def tasks() -> None:
    """Task lifecycle commands."""


@tasks.command("create")
@click.option("--db-path", type=click.Path(path_type=Path), default=None, help="SQLite DB path.")
@click.option("--agent", "agent_id", required=True, help="Agent id, e.g. content-summarizer.")
@click.option("--owner", "owner_id", required=True, help="Owner (requesting user) id.")
@click.option("--input", "input_json", default="{}", show_default=True, help="Input JSON object.")
@click.option("--task-id", default=None, help="Task id; generated when omitted.")
def tasks_create(
    db_path: Path | None,
    agent_id: str,
    owner_id: str,
    input_json: str,
    task_id: str | None,
) -> None:
    """Create a pending task."""

    _run(
        ORCHESTRATOR_CONTROLLER.create_task,
        TaskCreateCommand(
            db_path=db_path,
            agent_id=agent_id,
            owner_id=owner_id,
            input_json=input_json,
            task_id=task_id,
        ),
    )


@tasks.command("start")
@click.option("--db-path", type=click.Path(path_type=Path), default=None, help="SQLite DB path.")
@click.option("--task-id", required=True, help="Task id.")
def tasks_start(db_path: Path | None, task_id: str) -> None:
    """Move a pending task to processing."""

    _run(ORCHESTRATOR_CONTROLLER.start_task, TaskMutateCommand(db_path=db_path, task_id=task_id))


@tasks.command("complete")
@click.option("--db-path", type=click.Path(path_type=Path), default=None, help="SQLite DB path.")
@click.option("--task-id", required=True, help="Task id.")
@click.option("--result", "result_json", default="{}", show_default=True, help="Result JSON.")
def tasks_complete(db_path: Path | None, task_id: str, result_json: str) -> None:
    """Complete a processing task with a result."""

    _run(
        ORCHESTRATOR_CONTROLLER.complete_task,
        TaskMutateCommand(db_path=db_path, task_id=task_id, result_json=result_json),
    )


@tasks.command("fail")
@click.option("--db-path", type=click.Path(path_type=Path), default=None, help="SQLite DB path.")
@click.option("--task-id", required=True, help="Task id.")
@click.option("--message", required=True, help="Human-readable failure message.")
def tasks_fail(db_path: Path | None, task_id: str, message: str) -> None:
    """Fail a processing task."""

    _run(
        ORCHESTRATOR_CONTROLLER.fail_task,
        TaskMutateCommand(db_path=db_path, task_id=task_id, message=message),
    )


@tasks.command("list")
@click.option("--db-path", type=click.Path(path_type=Path), default=None, help="SQLite DB path.")
@click.option(
    "--status",
    type=click.Choice(["pending", "processing", "completed", "failed"], case_sensitive=False),
    default=None,
    help="Optional status filter.",
)
@click.option("--owner", "owner_id", default=None, help="Optional owner filter.")
@click.option("--agent", "agent_id", default=None, help="Optional agent filter.")
@click.option(
    "--limit",
    type=click.IntRange(min=1, max=1000),
    default=50,
    show_default=True,
    help="Max number of tasks to print.",
)
def tasks_list(  # noqa: PLR0913
    db_path: Path | None,
    status: str | None,
    owner_id: str | None,
    agent_id: str | None,
    limit: int,
) -> None:
    """List recent tasks, newest first."""

    _run(
        ORCHESTRATOR_CONTROLLER.list_tasks,
        TaskListCommand(
            db_path=db_path,
            status=status,
            owner_id=owner_id,
            agent_id=agent_id,
            limit=limit,
        ),
    )


@tasks.command("inspect")
@click.option("--db-path", type=click.Path(path_type=Path), default=None, help="SQLite DB path.")
@click.option("--task-id", required=True, help="Task id.")
def tasks_inspect(db_path: Path | None, task_id: str) -> None:
    """Show one task with its event history."""

    _run(ORCHESTRATOR_CONTROLLER.inspect_task, TaskInspectCommand(db_path=db_path, task_id=task_id))


@tasks.command("run")
@click.option("--db-path", type=click.Path(path_type=Path), default=None, help="SQLite DB path.")
@click.option("--task-id", "task_ids", multiple=True, help="Task id. Can be repeated.")
@click.option("--pending", is_flag=True, default=False, help="Run pending tasks, oldest first.")
@click.option(
    "--limit",
    type=click.IntRange(min=1, max=1000),
    default=50,
    show_default=True,
    help="Max pending tasks to run with --pending.",
)
def tasks_run(db_path: Path | None, task_ids: tuple[str, ...], pending: bool, limit: int) -> None:
    """Run tasks through their agents (with fallback) on the worker pool."""

    _run(
        ORCHESTRATOR_CONTROLLER.run_tasks,
        TaskRunCommand(db_path=db_path, task_ids=task_ids, pending=pending, limit=limit),
    )


@agent_orchestrator.group()
def memory() -> None:
    """Memory store commands."""


@memory.command("get")
@click.option("--db-path", type=click.Path(path_type=Path), default=None, help="SQLite DB path.")
@click.option("--key", required=True, help="Memory key, for example processed:u1.")
def memory_get(db_path: Path | None, key: str) -> None:
    """Show one memory entry."""

    _run(ORCHESTRATOR_CONTROLLER.memory_get, MemoryCommand(db_path=db_path, key=key))


@memory.command("put")
@click.option("--db-path", type=click.Path(path_type=Path), default=None, help="SQLite DB path.")
@click.option("--key", required=True, help="Memory key.")
@click.option("--data", "data_json", required=True, help="Data JSON object.")
def memory_put(db_path: Path | None, key: str, data_json: str) -> None:
    """Create or replace a memory entry."""

    _run(
        ORCHESTRATOR_CONTROLLER.memory_put,
        MemoryCommand(db_path=db_path, key=key, data_json=data_json),
    )


@memory.command("scan")
@click.option("--db-path", type=click.Path(path_type=Path), default=None, help="SQLite DB path.")
@click.option("--prefix", required=True, help="Key prefix, for example cache:.")
def memory_scan(db_path: Path | None, prefix: str) -> None:
    """List memory entries whose key starts with a prefix."""

    _run(ORCHESTRATOR_CONTROLLER.memory_scan, MemoryCommand(db_path=db_path, key=prefix))


@memory.command("delete")
@click.option("--db-path", type=click.Path(path_type=Path), default=None, help="SQLite DB path.")
@click.option("--key", required=True, help="Memory key.")
def memory_delete(db_path: Path | None, key: str) -> None:
    """Delete one memory entry."""

    _run(ORCHESTRATOR_CONTROLLER.memory_delete, MemoryCommand(db_path=db_path, key=key))


@agent_orchestrator.group()
def sweep() -> None:
    """Timeout and retention sweeps."""


@sweep.command("timeout")
@click.option("--db-path", type=click.Path(path_type=Path), default=None, help="SQLite DB path.")
def sweep_timeout(db_path: Path | None) -> None:
    """Fail processing tasks started before the timeout threshold."""

    _run(ORCHESTRATOR_CONTROLLER.sweep_timeouts, SweepCommand(db_path=db_path))


@sweep.command("retention")
@click.option("--db-path", type=click.Path(path_type=Path), default=None, help="SQLite DB path.")
def sweep_retention(db_path: Path | None) -> None:
    """Delete old terminal tasks and stale memory entries."""

    _run(ORCHESTRATOR_CONTROLLER.sweep_retention, SweepCommand(db_path=db_path))


@sweep.command("loop")
@click.option("--db-path", type=click.Path(path_type=Path), default=None, help="SQLite DB path.")
@click.option(
    "--max-iterations",
    type=click.IntRange(min=1),
    default=None,
    help="Stop after this many loop iterations (default: until SIGINT/SIGTERM).",
)
def sweep_loop(db_path: Path | None, max_iterations: int | None) -> None:
    """Run both sweeps periodically until stopped."""

    _run(
        ORCHESTRATOR_CONTROLLER.sweep_loop,
        SweepCommand(db_path=db_path, max_iterations=max_iterations),
    )


@agent_orchestrator.command("stats")
@click.option("--db-path", type=click.Path(path_type=Path), default=None, help="SQLite DB path.")
@click.option(
    "--hours",
    type=click.IntRange(min=1),
    default=None,
    help="Failure window (default: AGENT_ORCH_METRICS_WINDOW_HOURS).",
)
def stats(db_path: Path | None, hours: int | None) -> None:
    """Show active, failure, and duration metrics per agent."""

    _run(ORCHESTRATOR_CONTROLLER.stats, StatsCommand(db_path=db_path, hours=hours))


def _run(handler: Callable[[Any], list[str]], command: object) -> None:
    try:
        lines = handler(command)
    except (OrchestratorError, ValueError) as error:
        raise click.ClickException(str(error)) from error
    _emit_lines(lines)


def _emit_lines(lines: list[str]) -> None:
    for line in lines:
        click.echo(line)


if __name__ == "__main__":  # pragma: no cover
    agent_orchestrator()
