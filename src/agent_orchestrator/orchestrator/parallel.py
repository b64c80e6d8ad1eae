"""Fan-out/fan-in execution of independent sub-operations.

Every branch captures its own exception into an outcome slot, so one failure
never cancels siblings; the join waits for all branches before anything is
filtered or synthesized.
"""

from __future__ import annotations

import logging
import threading
import time
from collections.abc import Callable, Iterator, Sequence
from concurrent.futures import ALL_COMPLETED, Future, ThreadPoolExecutor, wait
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Generic, TypeVar

from agent_orchestrator.orchestrator.errors import (
    AllSubOperationsFailedError,
    PoolSaturatedError,
    SubOperationFailedError,
)
from agent_orchestrator.orchestrator.models import TaskView

logger = logging.getLogger(__name__)

T = TypeVar("T")
R = TypeVar("R")

DEFAULT_BATCH_SIZE = 5


class SaturationPolicy(str, Enum):
    """What ``submit`` does when workers and backlog are all taken."""

    BLOCK = "block"
    REJECT = "reject"


@dataclass(slots=True)
class PoolStats:
    submitted: int = 0
    rejected: int = 0
    completed: int = 0


class BoundedWorkerPool:
    """Fixed thread pool with a bounded backlog and an explicit saturation policy."""

    def __init__(
        self,
        *,
        max_workers: int,
        max_backlog: int,
        policy: SaturationPolicy = SaturationPolicy.REJECT,
        thread_name_prefix: str = "agent-worker",
    ) -> None:
        if max_workers < 1:
            raise ValueError("max_workers must be >= 1")
        if max_backlog < 0:
            raise ValueError("max_backlog must be >= 0")
        self.max_workers = max_workers
        self.max_backlog = max_backlog
        self.policy = policy
        self.stats = PoolStats()
        self._slots = threading.BoundedSemaphore(max_workers + max_backlog)
        self._stats_lock = threading.Lock()
        self._executor = ThreadPoolExecutor(
            max_workers=max_workers,
            thread_name_prefix=thread_name_prefix,
        )

    @property
    def capacity(self) -> int:
        return self.max_workers + self.max_backlog

    def submit(self, fn: Callable[..., T], *args: Any, **kwargs: Any) -> Future[T]:
        """Schedule ``fn``; block or raise ``PoolSaturatedError`` per policy."""

        acquired = self._slots.acquire(blocking=self.policy == SaturationPolicy.BLOCK)
        if not acquired:
            with self._stats_lock:
                self.stats.rejected += 1
            raise PoolSaturatedError(
                f"Worker pool saturated ({self.max_workers} running, "
                f"{self.max_backlog} queued); submission rejected.",
            )
        try:
            future = self._executor.submit(fn, *args, **kwargs)
        except BaseException:
            self._slots.release()
            raise
        with self._stats_lock:
            self.stats.submitted += 1
        future.add_done_callback(self._release_slot)
        return future

    def shutdown(self, *, wait_for_running: bool = True) -> None:
        self._executor.shutdown(wait=wait_for_running)

    def __enter__(self) -> BoundedWorkerPool:
        return self

    def __exit__(self, *_: object) -> None:
        self.shutdown()

    def _release_slot(self, _: Future[Any]) -> None:
        with self._stats_lock:
            self.stats.completed += 1
        self._slots.release()


@dataclass(slots=True, frozen=True)
class SubOperation(Generic[T]):
    """One independent unit of a fan-out.

    A failing ``fatal`` operation fails the whole join; others are optional
    and are dropped from synthesis when they fail.
    """

    name: str
    fn: Callable[[], T]
    fatal: bool = False


@dataclass(slots=True)
class SubOperationOutcome(Generic[T]):
    """Captured result slot for one branch."""

    name: str
    ok: bool
    value: T | None = None
    error: BaseException | None = None
    duration_seconds: float = 0.0
    fatal: bool = False


@dataclass(slots=True)
class CoordinatorResult(Generic[R]):
    """Joined fan-out with its synthesized output."""

    task_id: str
    output: R
    outcomes: list[SubOperationOutcome[Any]] = field(default_factory=list)

    @property
    def survivors(self) -> list[SubOperationOutcome[Any]]:
        return [outcome for outcome in self.outcomes if outcome.ok]

    @property
    def failed_names(self) -> list[str]:
        return [outcome.name for outcome in self.outcomes if not outcome.ok]

    @property
    def partial(self) -> bool:
        return bool(self.failed_names)


class ParallelStepCoordinator:
    """Runs N sub-operations for one task on a bounded pool and joins them all.

    Use a pool dedicated to sub-operations: a branch waiting on a pool that is
    busy running its own parent task would never get a worker.
    """

    def __init__(self, *, pool: BoundedWorkerPool, batch_size: int = DEFAULT_BATCH_SIZE) -> None:
        if batch_size < 1:
            raise ValueError("batch_size must be >= 1")
        self.pool = pool
        self.batch_size = batch_size

    def run(
        self,
        task: TaskView,
        operations: Sequence[SubOperation[T]],
        synthesize: Callable[[list[SubOperationOutcome[T]]], R],
    ) -> CoordinatorResult[R]:
        """Fan out, wait for every branch, filter, then synthesize survivors."""

        if not operations:
            raise ValueError("At least one sub-operation is required.")
        names = [operation.name for operation in operations]
        if len(set(names)) != len(names):
            raise ValueError(f"Sub-operation names must be unique: {names}")

        outcomes = self._fan_out(task, operations)

        fatal = [outcome for outcome in outcomes if outcome.fatal and not outcome.ok]
        if fatal:
            first = fatal[0]
            raise SubOperationFailedError(first.name, first.error or RuntimeError("unknown"))
        survivors = [outcome for outcome in outcomes if outcome.ok]
        if not survivors:
            raise AllSubOperationsFailedError(
                [(outcome.name, outcome.error or RuntimeError("unknown")) for outcome in outcomes],
            )
        if len(survivors) < len(outcomes):
            logger.info(
                "Task %s: synthesizing %d/%d sub-operation results",
                task.task_id,
                len(survivors),
                len(outcomes),
            )
        return CoordinatorResult(
            task_id=task.task_id,
            output=synthesize(survivors),
            outcomes=outcomes,
        )

    def run_batched(
        self,
        task: TaskView,
        items: Sequence[Any],
        handle_batch: Callable[[list[Any]], T],
        synthesize: Callable[[list[SubOperationOutcome[T]]], R],
        *,
        name_prefix: str = "batch",
    ) -> CoordinatorResult[R]:
        """Group items into batches, one sub-operation per batch.

        Up to ``batch_size`` items each get their own sub-operation; beyond
        that they are grouped into ``batch_size`` chunks.
        """

        if not items:
            raise ValueError("At least one item is required.")
        size = self.batch_size if len(items) > self.batch_size else 1
        operations = [
            SubOperation(
                name=f"{name_prefix}-{index}",
                fn=_bind_batch(handle_batch, chunk),
            )
            for index, chunk in enumerate(batched(items, size))
        ]
        return self.run(task, operations, synthesize)

    def _fan_out(
        self,
        task: TaskView,
        operations: Sequence[SubOperation[T]],
    ) -> list[SubOperationOutcome[T]]:
        futures: list[Future[SubOperationOutcome[T]]] = []
        try:
            for operation in operations:
                futures.append(self.pool.submit(_capture, task.task_id, operation))
        except PoolSaturatedError:
            # Branches already in flight still run to completion before we give up.
            wait(futures, return_when=ALL_COMPLETED)
            raise
        wait(futures, return_when=ALL_COMPLETED)
        return [future.result() for future in futures]


def batched(items: Sequence[T], size: int) -> Iterator[list[T]]:
    """Yield consecutive chunks of ``size`` (the last may be shorter)."""

    if size < 1:
        raise ValueError("size must be >= 1")
    for start in range(0, len(items), size):
        yield list(items[start : start + size])


def _bind_batch(handle_batch: Callable[[list[Any]], T], chunk: list[Any]) -> Callable[[], T]:
    return lambda: handle_batch(chunk)


def _capture(task_id: str, operation: SubOperation[T]) -> SubOperationOutcome[T]:
    started = time.monotonic()
    try:
        value = operation.fn()
    except Exception as error:
        logger.warning(
            "Task %s: sub-operation %s failed: %s",
            task_id,
            operation.name,
            error,
        )
        return SubOperationOutcome(
            name=operation.name,
            ok=False,
            error=error,
            duration_seconds=time.monotonic() - started,
            fatal=operation.fatal,
        )
    return SubOperationOutcome(
        name=operation.name,
        ok=True,
        value=value,
        duration_seconds=time.monotonic() - started,
        fatal=operation.fatal,
    )
