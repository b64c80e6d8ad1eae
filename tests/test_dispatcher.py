from __future__ import annotations

import threading
from collections.abc import Iterator
from datetime import UTC, datetime, timedelta

import allure
import pytest
from conftest import set_task_times

from agent_orchestrator.orchestrator.dispatcher import TaskDispatcher
from agent_orchestrator.orchestrator.errors import PoolSaturatedError, ProviderError
from agent_orchestrator.orchestrator.fallback import FallbackOrchestrator
from agent_orchestrator.orchestrator.lifecycle import TIMEOUT_ERROR_MESSAGE, TaskLifecycleManager
from agent_orchestrator.orchestrator.models import AgentResult, TaskStatus, TaskView
from agent_orchestrator.orchestrator.parallel import BoundedWorkerPool, SaturationPolicy
from agent_orchestrator.orchestrator.registry import CapabilityRegistry
from agent_orchestrator.orchestrator.repository import TaskRepository

pytestmark = [
    allure.epic("Task Orchestration"),
    allure.feature("Dispatcher"),
]


@pytest.fixture()
def pool() -> Iterator[BoundedWorkerPool]:
    with BoundedWorkerPool(max_workers=2, max_backlog=8) as worker_pool:
        yield worker_pool


def _dispatcher(
    task_repository: TaskRepository,
    registry: CapabilityRegistry,
    pool: BoundedWorkerPool,
) -> TaskDispatcher:
    lifecycle = TaskLifecycleManager(repository=task_repository, registry=registry)
    return TaskDispatcher(
        lifecycle=lifecycle,
        fallback=FallbackOrchestrator(registry=registry),
        pool=pool,
    )


def test_dispatch_completes_task_with_agent_result(
    task_repository: TaskRepository,
    registry: CapabilityRegistry,
    pool: BoundedWorkerPool,
) -> None:
    dispatcher = _dispatcher(task_repository, registry, pool)
    dispatcher.lifecycle.create("d1", "summarizer", "u1", {"text": "hello"})

    outcome = dispatcher.submit("d1").result(timeout=10)

    assert outcome.status == TaskStatus.COMPLETED
    task = dispatcher.lifecycle.get("d1")
    assert task.result == {"text": "hello"}
    assert dispatcher.summary.completed == 1


def test_dispatch_records_agent_failure_on_the_task(
    task_repository: TaskRepository,
    pool: BoundedWorkerPool,
) -> None:
    registry = CapabilityRegistry()

    def _broken(task: TaskView) -> AgentResult:
        raise ProviderError("crossref HTTP 404 for /works/x", provider="crossref")

    registry.register("metadata-enhancer", _broken)
    dispatcher = _dispatcher(task_repository, registry, pool)
    dispatcher.lifecycle.create("d2", "metadata-enhancer", "u1", {"title": "x"})

    outcome = dispatcher.dispatch("d2")

    assert outcome.status == TaskStatus.FAILED
    assert outcome.error == "crossref HTTP 404 for /works/x"
    assert dispatcher.lifecycle.get("d2").error == "crossref HTTP 404 for /works/x"
    assert dispatcher.summary.failed == 1


def test_dispatch_uses_registered_fallback(
    task_repository: TaskRepository,
    pool: BoundedWorkerPool,
) -> None:
    registry = CapabilityRegistry()
    registry.register(
        "backup",
        lambda task: AgentResult(data={"metadata": {"title": "T"}}, agent_id="backup"),
    )

    def _primary(task: TaskView) -> AgentResult:
        raise ProviderError("crossref request timed out", provider="crossref", transient=True)

    registry.register("primary", _primary, fallback_agent_id="backup")
    dispatcher = _dispatcher(task_repository, registry, pool)
    dispatcher.lifecycle.create("d3", "primary", "u1", {})

    outcome = dispatcher.dispatch("d3")

    assert outcome.used_fallback
    result = dispatcher.lifecycle.get("d3").result
    assert result["usedFallback"] is True
    assert result["primaryFailureReason"] == "crossref request timed out"
    assert result["servedBy"] == "backup"
    assert dispatcher.summary.used_fallback == 1


def test_late_result_after_timeout_is_dropped(
    task_repository: TaskRepository,
    pool: BoundedWorkerPool,
) -> None:
    entered = threading.Event()
    release = threading.Event()
    registry = CapabilityRegistry()

    def _slow(task: TaskView) -> AgentResult:
        entered.set()
        release.wait(timeout=5)
        return AgentResult(data={"summary": "late"}, agent_id="slow")

    registry.register("slow", _slow)
    dispatcher = _dispatcher(task_repository, registry, pool)
    dispatcher.lifecycle.create("d4", "slow", "u1", {})

    future = dispatcher.submit("d4")
    assert entered.wait(timeout=5)
    dispatcher.lifecycle.time_out("d4")
    release.set()
    outcome = future.result(timeout=10)

    assert outcome.late is True
    assert outcome.status == TaskStatus.FAILED
    task = dispatcher.lifecycle.get("d4")
    assert task.error == TIMEOUT_ERROR_MESSAGE
    assert task.result is None
    assert dispatcher.summary.late_results_dropped == 1
    assert dispatcher.summary.completed == 0


def test_dispatch_pending_runs_oldest_first(
    task_repository: TaskRepository,
    pool: BoundedWorkerPool,
) -> None:
    order: list[str] = []
    lock = threading.Lock()
    registry = CapabilityRegistry()

    def _record(task: TaskView) -> AgentResult:
        with lock:
            order.append(task.task_id)
        return AgentResult(data={}, agent_id="recorder")

    registry.register("recorder", _record)
    single = BoundedWorkerPool(max_workers=1, max_backlog=8)
    try:
        dispatcher = _dispatcher(task_repository, registry, single)
        for task_id in ("p1", "p2", "p3"):
            dispatcher.lifecycle.create(task_id, "recorder", "u1", {})

        outcomes = dispatcher.dispatch_pending(limit=10)
    finally:
        single.shutdown()

    assert order == ["p1", "p2", "p3"]
    assert [outcome.status for outcome in outcomes] == [TaskStatus.COMPLETED] * 3


def test_saturated_pool_leaves_task_pending(
    task_repository: TaskRepository,
    registry: CapabilityRegistry,
) -> None:
    gate = threading.Event()
    saturated = BoundedWorkerPool(max_workers=1, max_backlog=0, policy=SaturationPolicy.REJECT)
    try:
        dispatcher = _dispatcher(task_repository, registry, saturated)
        dispatcher.lifecycle.create("busy", "summarizer", "u1", {"text": "x"})
        blocker = saturated.submit(gate.wait, 5)

        with pytest.raises(PoolSaturatedError):
            dispatcher.submit("busy")

        assert dispatcher.summary.rejected == 1
        assert dispatcher.lifecycle.get("busy").status == TaskStatus.PENDING
        gate.set()
        blocker.result(timeout=5)
    finally:
        gate.set()
        saturated.shutdown()


def test_dispatch_pending_limit_takes_the_oldest_tasks(
    task_repository: TaskRepository,
    registry: CapabilityRegistry,
    pool: BoundedWorkerPool,
) -> None:
    dispatcher = _dispatcher(task_repository, registry, pool)
    now = datetime.now(tz=UTC)
    for age_minutes, task_id in ((30, "old"), (20, "middle"), (10, "new")):
        dispatcher.lifecycle.create(task_id, "summarizer", "u1", {"text": task_id})
        set_task_times(task_repository, task_id, created_at=now - timedelta(minutes=age_minutes))

    outcomes = dispatcher.dispatch_pending(limit=2)

    assert sorted(outcome.task_id for outcome in outcomes) == ["middle", "old"]
    assert dispatcher.lifecycle.get("new").status == TaskStatus.PENDING


def test_failing_post_completion_hook_keeps_task_completed(
    task_repository: TaskRepository,
    pool: BoundedWorkerPool,
) -> None:
    registry = CapabilityRegistry()

    def _hook(task: TaskView) -> None:
        if task.task_id == "h1":
            raise RuntimeError("cache write failed")

    registry.register(
        "summarizer",
        lambda task: AgentResult(data={}, agent_id="summarizer"),
        post_completion_hook=_hook,
    )
    dispatcher = _dispatcher(task_repository, registry, pool)
    dispatcher.lifecycle.create("h1", "summarizer", "u1", {})
    dispatcher.lifecycle.create("h2", "summarizer", "u1", {})

    outcomes = {outcome.task_id: outcome for outcome in dispatcher.dispatch_pending(limit=10)}

    assert set(outcomes) == {"h1", "h2"}
    assert outcomes["h1"].status == TaskStatus.COMPLETED
    assert outcomes["h1"].hook_error == "cache write failed"
    assert outcomes["h2"].hook_error is None
    assert dispatcher.lifecycle.get("h1").status == TaskStatus.COMPLETED
    assert dispatcher.summary.completed == 2
    assert dispatcher.summary.hook_failures == 1


def test_failed_event_carries_failure_classification(
    task_repository: TaskRepository,
    pool: BoundedWorkerPool,
) -> None:
    registry = CapabilityRegistry()

    def _broken(task: TaskView) -> AgentResult:
        raise ProviderError("crossref HTTP 404 for /works/x", provider="crossref")

    registry.register("metadata-enhancer", _broken)
    dispatcher = _dispatcher(task_repository, registry, pool)
    dispatcher.lifecycle.create("c1", "metadata-enhancer", "u1", {"title": "x"})

    dispatcher.dispatch("c1")

    details = dispatcher.lifecycle.details("c1").events[-1].details
    assert details["error"] == "crossref HTTP 404 for /works/x"
    assert details["provider"] == "crossref"
    assert details["reason_code"] == "crossref_provider_non_retryable"
    assert details["matched_rule"] == "fallback_non_retryable"


def test_exhausted_fallback_is_classified_by_primary_failure(
    task_repository: TaskRepository,
    pool: BoundedWorkerPool,
) -> None:
    registry = CapabilityRegistry()

    def _primary(task: TaskView) -> AgentResult:
        raise ProviderError("HTTP 429 too many requests", provider="crossref")

    def _backup(task: TaskView) -> AgentResult:
        raise ProviderError("semantic_scholar HTTP 403", provider="semantic_scholar")

    registry.register("backup", _backup)
    registry.register("primary", _primary, fallback_agent_id="backup")
    dispatcher = _dispatcher(task_repository, registry, pool)
    dispatcher.lifecycle.create("c2", "primary", "u1", {})

    outcome = dispatcher.dispatch("c2")

    assert outcome.status == TaskStatus.FAILED
    details = dispatcher.lifecycle.details("c2").events[-1].details
    assert details["reason_code"] == "crossref_rate_limit_transient"
