from __future__ import annotations

import threading
from datetime import timedelta

import allure
import pytest

from agent_orchestrator.orchestrator.errors import InvalidTransitionError
from agent_orchestrator.orchestrator.events import EventNotifier, RecordingObserver
from agent_orchestrator.orchestrator.lifecycle import TIMEOUT_ERROR_MESSAGE, TaskLifecycleManager
from agent_orchestrator.orchestrator.memory import MemoryRepository
from agent_orchestrator.orchestrator.models import TaskStatus
from agent_orchestrator.orchestrator.sweeper import Sweeper
from agent_orchestrator.storage.common import utc_now
from conftest import processing_task, set_memory_updated_at, set_task_times

pytestmark = [
    allure.epic("Task Orchestration"),
    allure.feature("Timeout & Retention Sweeper"),
]


def _sweeper(
    lifecycle: TaskLifecycleManager,
    memory: MemoryRepository,
    **kwargs,
) -> Sweeper:
    return Sweeper(lifecycle=lifecycle, memory=memory, **kwargs)


def test_stuck_task_times_out_and_late_complete_is_rejected(
    lifecycle: TaskLifecycleManager,
    memory_repository: MemoryRepository,
    notifier: EventNotifier,
    recorder: RecordingObserver,
) -> None:
    processing_task(lifecycle, "stuck")
    set_task_times(lifecycle.repository, "stuck", started_at=utc_now() - timedelta(seconds=120))
    processing_task(lifecycle, "fresh")

    summary = _sweeper(lifecycle, memory_repository).sweep_timeouts()

    assert summary.timed_out == 1
    assert summary.task_ids == ["stuck"]
    stuck = lifecycle.get("stuck")
    assert stuck.status == TaskStatus.FAILED
    assert stuck.error == TIMEOUT_ERROR_MESSAGE
    assert lifecycle.get("fresh").status == TaskStatus.PROCESSING

    with pytest.raises(InvalidTransitionError):
        lifecycle.complete("stuck", {"text": "too late"})
    assert lifecycle.get("stuck").error == TIMEOUT_ERROR_MESSAGE

    assert notifier.flush(timeout=5)
    assert recorder.event_types_for("stuck")[-1] == "timed_out"


def test_timeout_sweep_uses_injected_clock(
    lifecycle: TaskLifecycleManager,
    memory_repository: MemoryRepository,
) -> None:
    processing_task(lifecycle, "t1")
    lifecycle.create("pending-1", "summarizer", "u1", {"text": "x"})

    sweeper = _sweeper(
        lifecycle,
        memory_repository,
        task_timeout=timedelta(seconds=90),
        clock=lambda: utc_now() + timedelta(minutes=10),
    )
    summary = sweeper.sweep_timeouts()

    assert summary.candidates == 1
    assert lifecycle.get("t1").status == TaskStatus.FAILED
    assert lifecycle.get("pending-1").status == TaskStatus.PENDING


def test_timeout_sweep_counts_tasks_finished_between_scan_and_write(
    lifecycle: TaskLifecycleManager,
    memory_repository: MemoryRepository,
) -> None:
    processing_task(lifecycle, "racing")
    sweeper = _sweeper(
        lifecycle,
        memory_repository,
        clock=lambda: utc_now() + timedelta(minutes=10),
    )
    original = lifecycle.timed_out_candidates

    def _scan_then_complete(threshold, *, now=None):
        candidates = original(threshold, now=now)
        lifecycle.complete("racing", {"text": "just in time"})
        return candidates

    lifecycle.timed_out_candidates = _scan_then_complete  # type: ignore[method-assign]

    summary = sweeper.sweep_timeouts()

    assert summary.candidates == 1
    assert summary.raced == 1
    assert summary.timed_out == 0
    assert lifecycle.get("racing").status == TaskStatus.COMPLETED


def test_retention_deletes_only_old_terminal_tasks(
    lifecycle: TaskLifecycleManager,
    memory_repository: MemoryRepository,
) -> None:
    long_ago = utc_now() - timedelta(days=8)
    processing_task(lifecycle, "old-done")
    lifecycle.complete("old-done", {"text": "ok"})
    processing_task(lifecycle, "old-failed")
    lifecycle.fail("old-failed", "boom")
    lifecycle.create("old-pending", "summarizer", "u1", {"text": "x"})
    processing_task(lifecycle, "old-processing")
    processing_task(lifecycle, "new-done")
    lifecycle.complete("new-done", {"text": "ok"})
    for task_id in ("old-done", "old-failed", "old-pending", "old-processing"):
        set_task_times(lifecycle.repository, task_id, created_at=long_ago)

    summary = _sweeper(lifecycle, memory_repository).sweep_retention()

    assert summary.tasks_deleted == 2
    remaining = {task.task_id for task in lifecycle.repository.list_tasks(limit=100)}
    assert remaining == {"old-pending", "old-processing", "new-done"}
    assert lifecycle.repository.get_task_details(task_id="old-done") is None


def test_retention_deletes_stale_memory(
    lifecycle: TaskLifecycleManager,
    memory_repository: MemoryRepository,
) -> None:
    memory_repository.put("cache:a:op:stale", {"v": 1})
    memory_repository.put("cache:a:op:fresh", {"v": 2})
    set_memory_updated_at(memory_repository, "cache:a:op:stale", utc_now() - timedelta(days=31))

    summary = _sweeper(lifecycle, memory_repository).sweep_retention()

    assert summary.memory_deleted == 1
    assert [entry.key for entry in memory_repository.scan_by_prefix("cache:")] == [
        "cache:a:op:fresh",
    ]


def test_run_loop_runs_both_sweeps_then_stops(
    lifecycle: TaskLifecycleManager,
    memory_repository: MemoryRepository,
) -> None:
    processing_task(lifecycle, "loop-1")
    sweeper = _sweeper(
        lifecycle,
        memory_repository,
        clock=lambda: utc_now() + timedelta(minutes=10),
        timeout_interval_seconds=0.01,
        retention_interval_seconds=60,
    )

    summary = sweeper.run_loop(max_iterations=3)

    assert summary.timeout_sweeps >= 1
    assert summary.retention_sweeps == 1
    assert summary.timed_out == 1


def test_background_loop_stops_on_request(
    lifecycle: TaskLifecycleManager,
    memory_repository: MemoryRepository,
) -> None:
    sweeper = _sweeper(
        lifecycle,
        memory_repository,
        timeout_interval_seconds=60,
        retention_interval_seconds=60,
    )

    thread = sweeper.start_background()
    assert isinstance(thread, threading.Thread)
    sweeper.stop()
    thread.join(timeout=5)

    assert not thread.is_alive()
    assert sweeper.stopped


def test_run_loop_survives_a_failing_sweep(
    lifecycle: TaskLifecycleManager,
    memory_repository: MemoryRepository,
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    calls: list[int] = []
    delete_older_than = memory_repository.delete_older_than

    def _flaky_delete(cutoff):
        calls.append(1)
        if len(calls) == 1:
            raise RuntimeError("database is locked")
        return delete_older_than(cutoff)

    monkeypatch.setattr(memory_repository, "delete_older_than", _flaky_delete)
    sweeper = _sweeper(
        lifecycle,
        memory_repository,
        timeout_interval_seconds=0.01,
        retention_interval_seconds=0.01,
    )

    summary = sweeper.run_loop(max_iterations=5)

    assert summary.errors == 1
    assert len(calls) >= 2
    assert summary.retention_sweeps == len(calls) - 1
    assert summary.timeout_sweeps >= 2


def test_background_loop_keeps_running_after_a_sweep_error(
    lifecycle: TaskLifecycleManager,
    memory_repository: MemoryRepository,
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    attempts = threading.Semaphore(0)

    def _broken_delete(cutoff):
        attempts.release()
        raise RuntimeError("disk I/O error")

    monkeypatch.setattr(memory_repository, "delete_older_than", _broken_delete)
    sweeper = _sweeper(
        lifecycle,
        memory_repository,
        timeout_interval_seconds=0.01,
        retention_interval_seconds=0.01,
    )

    thread = sweeper.start_background()
    try:
        assert attempts.acquire(timeout=5)
        assert attempts.acquire(timeout=5)
        assert thread.is_alive()
    finally:
        sweeper.stop()
        thread.join(timeout=5)

    assert not thread.is_alive()
