from __future__ import annotations

from datetime import timedelta

import allure

from agent_orchestrator.orchestrator.events import EventNotifier
from agent_orchestrator.orchestrator.lifecycle import TaskLifecycleManager
from agent_orchestrator.orchestrator.metrics import (
    LiveMetricsObserver,
    build_agent_metrics,
    render_stats_lines,
)
from agent_orchestrator.orchestrator.models import ACTIVE_STATUSES
from agent_orchestrator.orchestrator.repository import TaskRepository
from agent_orchestrator.storage.common import utc_now
from conftest import processing_task

pytestmark = [
    allure.epic("Task Orchestration"),
    allure.feature("Metrics"),
]


def _snapshot(repository: TaskRepository):
    since = utc_now() - timedelta(hours=24)
    return build_agent_metrics(
        active_tasks=repository.list_tasks_for_metrics(statuses=ACTIVE_STATUSES),
        window_tasks=repository.list_tasks_for_metrics(since=since),
        window_events=repository.list_events_for_metrics(since=since),
    )


def test_metrics_count_active_failures_timeouts_and_durations(
    lifecycle: TaskLifecycleManager,
) -> None:
    lifecycle.create("m-pending", "summarizer", "u1", {"text": "x"})
    processing_task(lifecycle, "m-processing")
    processing_task(lifecycle, "m-done")
    lifecycle.complete("m-done", {"text": "ok"})
    processing_task(lifecycle, "m-failed")
    lifecycle.fail("m-failed", "boom")
    processing_task(lifecycle, "m-timeout")
    lifecycle.time_out("m-timeout")
    processing_task(lifecycle, "m-fallback")
    lifecycle.complete(
        "m-fallback",
        {"usedFallback": True, "primaryFailureReason": "down", "servedBy": "other"},
    )

    snapshot = _snapshot(lifecycle.repository)

    assert snapshot.active_total == 2
    assert snapshot.active_status_counts == {"pending": 1, "processing": 1}
    assert snapshot.active_by_agent == {"summarizer": 2}
    assert snapshot.failures_by_agent == {"summarizer": 2}
    assert snapshot.timeouts_by_agent == {"summarizer": 1}
    assert snapshot.fallbacks_by_agent == {"summarizer": 1}
    assert snapshot.duration_by_agent["summarizer"].sample_size == 4
    assert snapshot.average_duration_seconds("summarizer") >= 0
    assert snapshot.average_duration_seconds("unknown") is None


def test_render_stats_lines(lifecycle: TaskLifecycleManager) -> None:
    processing_task(lifecycle, "r1")
    lifecycle.complete("r1", {"text": "ok"})

    lines = render_stats_lines(snapshot=_snapshot(lifecycle.repository), hours=24)

    assert lines[0] == "Agent task health (window=24h)"
    assert "Active tasks: 0" in lines
    assert "Failures by agent: none" in lines
    assert any(line.startswith("  agent=summarizer n=1") for line in lines)


def test_render_stats_lines_for_empty_store(task_repository: TaskRepository) -> None:
    lines = render_stats_lines(snapshot=_snapshot(task_repository), hours=6)

    assert lines[0] == "Agent task health (window=6h)"
    assert lines[-1] == "Processing duration: none"


def test_live_metrics_observer_tracks_in_flight(task_repository: TaskRepository) -> None:
    live = LiveMetricsObserver()
    with EventNotifier() as notifier:
        notifier.subscribe(live)
        lifecycle = TaskLifecycleManager(repository=task_repository, notifier=notifier)
        processing_task(lifecycle, "l1")
        processing_task(lifecycle, "l2")
        lifecycle.complete("l2", {"text": "ok"})
        assert notifier.flush(timeout=5)

    assert live.in_flight("summarizer") == 1
    assert live.counts_for("summarizer") == {"created": 2, "started": 2, "completed": 1}
    assert live.in_flight("other") == 0
