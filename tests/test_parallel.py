from __future__ import annotations

import threading
from datetime import UTC, datetime

import allure
import pytest

from agent_orchestrator.orchestrator.errors import (
    AllSubOperationsFailedError,
    PoolSaturatedError,
    SubOperationFailedError,
)
from agent_orchestrator.orchestrator.models import TaskStatus, TaskView
from agent_orchestrator.orchestrator.parallel import (
    BoundedWorkerPool,
    ParallelStepCoordinator,
    SaturationPolicy,
    SubOperation,
    SubOperationOutcome,
    batched,
)

pytestmark = [
    allure.epic("Task Orchestration"),
    allure.feature("Parallel Step Coordinator"),
]


def _task(task_id: str = "fan-1") -> TaskView:
    now = datetime.now(tz=UTC)
    return TaskView(
        task_id=task_id,
        agent_id="quality-checker",
        owner_id="u1",
        input={},
        status=TaskStatus.PROCESSING,
        error=None,
        result=None,
        created_at=now,
        started_at=now,
        completed_at=None,
        updated_at=now,
    )


def _ok(value: str):
    return lambda: value


def _boom(message: str = "upstream 500"):
    def _raise() -> str:
        raise RuntimeError(message)

    return _raise


@pytest.fixture()
def coordinator():
    with BoundedWorkerPool(max_workers=4, max_backlog=16, policy=SaturationPolicy.BLOCK) as pool:
        yield ParallelStepCoordinator(pool=pool, batch_size=5)


def test_one_failure_synthesizes_the_rest(coordinator: ParallelStepCoordinator) -> None:
    seen: list[list[str]] = []

    def _synthesize(outcomes: list[SubOperationOutcome[str]]) -> str:
        seen.append([outcome.name for outcome in outcomes])
        return "+".join(outcome.value or "" for outcome in outcomes)

    operations = [
        SubOperation("accuracy", _ok("a")),
        SubOperation("consistency", _boom()),
        SubOperation("bias", _ok("b")),
        SubOperation("hallucination", _ok("h")),
        SubOperation("logical_coherence", _ok("l")),
    ]

    result = coordinator.run(_task(), operations, _synthesize)

    assert seen == [["accuracy", "bias", "hallucination", "logical_coherence"]]
    assert result.output == "a+b+h+l"
    assert result.failed_names == ["consistency"]
    assert result.partial
    assert len(result.survivors) == 4
    failed = next(outcome for outcome in result.outcomes if not outcome.ok)
    assert isinstance(failed.error, RuntimeError)


def test_all_failures_raise_without_synthesis(coordinator: ParallelStepCoordinator) -> None:
    synthesized: list[object] = []

    with pytest.raises(AllSubOperationsFailedError) as raised:
        coordinator.run(
            _task(),
            [SubOperation("q1", _boom("a")), SubOperation("q2", _boom("b"))],
            synthesized.append,
        )

    assert synthesized == []
    assert [name for name, _ in raised.value.failures] == ["q1", "q2"]


def test_fatal_failure_fails_the_join(coordinator: ParallelStepCoordinator) -> None:
    with pytest.raises(SubOperationFailedError) as raised:
        coordinator.run(
            _task(),
            [
                SubOperation("summary", _boom("no summary"), fatal=True),
                SubOperation("concepts", _ok("c")),
            ],
            lambda outcomes: outcomes,
        )

    assert raised.value.name == "summary"


def test_failing_branch_does_not_cancel_siblings(coordinator: ParallelStepCoordinator) -> None:
    release = threading.Event()
    finished: list[str] = []

    def _slow() -> str:
        release.wait(timeout=5)
        finished.append("slow")
        return "slow"

    def _fail_then_release() -> str:
        release.set()
        raise RuntimeError("fast failure")

    result = coordinator.run(
        _task(),
        [SubOperation("slow", _slow), SubOperation("fast", _fail_then_release)],
        lambda outcomes: [outcome.name for outcome in outcomes],
    )

    assert finished == ["slow"]
    assert result.output == ["slow"]


def test_run_rejects_empty_and_duplicate_names(coordinator: ParallelStepCoordinator) -> None:
    with pytest.raises(ValueError):
        coordinator.run(_task(), [], lambda outcomes: outcomes)
    with pytest.raises(ValueError, match="unique"):
        coordinator.run(
            _task(),
            [SubOperation("same", _ok("1")), SubOperation("same", _ok("2"))],
            lambda outcomes: outcomes,
        )


def test_run_batched_groups_items_by_batch_size(coordinator: ParallelStepCoordinator) -> None:
    batches: list[list[int]] = []
    lock = threading.Lock()

    def _handle(batch: list[int]) -> int:
        with lock:
            batches.append(batch)
        return sum(batch)

    result = coordinator.run_batched(
        _task(),
        list(range(12)),
        _handle,
        lambda outcomes: sum(outcome.value or 0 for outcome in outcomes),
        name_prefix="claims",
    )

    assert sorted(len(batch) for batch in batches) == [2, 5, 5]
    assert result.output == sum(range(12))
    assert [outcome.name for outcome in result.outcomes] == ["claims-0", "claims-1", "claims-2"]


def test_run_batched_small_input_gets_one_branch_per_item(
    coordinator: ParallelStepCoordinator,
) -> None:
    result = coordinator.run_batched(
        _task(),
        ["c1", "c2", "c3"],
        lambda batch: batch,
        lambda outcomes: [item for outcome in outcomes for item in outcome.value or []],
    )

    assert len(result.outcomes) == 3
    assert result.output == ["c1", "c2", "c3"]


def test_batched_helper() -> None:
    assert list(batched([1, 2, 3, 4, 5, 6, 7], 3)) == [[1, 2, 3], [4, 5, 6], [7]]
    with pytest.raises(ValueError):
        list(batched([1], 0))


def test_reject_policy_raises_when_backlog_is_full() -> None:
    gate = threading.Event()
    pool = BoundedWorkerPool(max_workers=1, max_backlog=1, policy=SaturationPolicy.REJECT)
    try:
        running = pool.submit(gate.wait, 5)
        queued = pool.submit(gate.wait, 5)

        with pytest.raises(PoolSaturatedError):
            pool.submit(gate.wait, 5)

        assert pool.stats.rejected == 1
        gate.set()
        assert running.result(timeout=5) is True
        assert queued.result(timeout=5) is True
    finally:
        gate.set()
        pool.shutdown()


def test_block_policy_waits_for_a_free_slot() -> None:
    gate = threading.Event()
    pool = BoundedWorkerPool(max_workers=1, max_backlog=0, policy=SaturationPolicy.BLOCK)
    try:
        first = pool.submit(gate.wait, 5)
        submitted = threading.Event()
        second_holder: list[object] = []

        def _submit_second() -> None:
            second_holder.append(pool.submit(lambda: "second"))
            submitted.set()

        submitter = threading.Thread(target=_submit_second)
        submitter.start()
        assert not submitted.wait(timeout=0.2)

        gate.set()
        assert first.result(timeout=5) is True
        assert submitted.wait(timeout=5)
        submitter.join(timeout=5)
        assert second_holder[0].result(timeout=5) == "second"
        assert pool.stats.rejected == 0
    finally:
        gate.set()
        pool.shutdown()


def test_pool_validates_sizes() -> None:
    with pytest.raises(ValueError):
        BoundedWorkerPool(max_workers=0, max_backlog=1)
    with pytest.raises(ValueError):
        BoundedWorkerPool(max_workers=1, max_backlog=-1)
    with pytest.raises(ValueError):
        ParallelStepCoordinator(
            pool=BoundedWorkerPool(max_workers=1, max_backlog=0),
            batch_size=0,
        )
