"""Periodic timeout and retention sweeps."""

from __future__ import annotations

import logging
import signal
import threading
import time
from collections.abc import Callable, Iterator
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import datetime, timedelta

from agent_orchestrator.orchestrator.errors import InvalidTransitionError, NotFoundError
from agent_orchestrator.orchestrator.lifecycle import TaskLifecycleManager
from agent_orchestrator.orchestrator.memory import MemoryRepository
from agent_orchestrator.storage.common import utc_now

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class TimeoutSweepSummary:
    candidates: int = 0
    timed_out: int = 0
    raced: int = 0
    task_ids: list[str] = field(default_factory=list)


@dataclass(slots=True)
class RetentionSweepSummary:
    tasks_deleted: int = 0
    memory_deleted: int = 0


@dataclass(slots=True)
class SweeperLoopSummary:
    """Aggregate counters across loop iterations."""

    timeout_sweeps: int = 0
    retention_sweeps: int = 0
    timed_out: int = 0
    tasks_deleted: int = 0
    memory_deleted: int = 0
    errors: int = 0


class Sweeper:
    """Marks stuck tasks failed and purges old terminal tasks and stale memory.

    The timeout sweep never retries a task; only a new task does that.
    """

    def __init__(  # noqa: PLR0913
        self,
        *,
        lifecycle: TaskLifecycleManager,
        memory: MemoryRepository,
        task_timeout: timedelta = timedelta(seconds=90),
        task_retention: timedelta = timedelta(days=7),
        memory_stale_after: timedelta = timedelta(days=30),
        timeout_interval_seconds: float = 180.0,
        retention_interval_seconds: float = 3600.0,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self.lifecycle = lifecycle
        self.memory = memory
        self.task_timeout = task_timeout
        self.task_retention = task_retention
        self.memory_stale_after = memory_stale_after
        self.timeout_interval_seconds = timeout_interval_seconds
        self.retention_interval_seconds = retention_interval_seconds
        self.clock = clock
        self._stop = threading.Event()
        self._stop_signal_name: str | None = None

    def sweep_timeouts(self) -> TimeoutSweepSummary:
        summary = TimeoutSweepSummary()
        candidates = self.lifecycle.timed_out_candidates(self.task_timeout, now=self.clock())
        summary.candidates = len(candidates)
        for task in candidates:
            try:
                self.lifecycle.time_out(task.task_id)
            except (InvalidTransitionError, NotFoundError) as error:
                # The task finished or was purged between the scan and the write.
                summary.raced += 1
                logger.debug("Timeout sweep skipped %s: %s", task.task_id, error)
                continue
            summary.timed_out += 1
            summary.task_ids.append(task.task_id)
            logger.info(
                "Task %s (agent=%s) timed out after %ss",
                task.task_id,
                task.agent_id,
                int(self.task_timeout.total_seconds()),
            )
        return summary

    def sweep_retention(self) -> RetentionSweepSummary:
        now = self.clock()
        tasks_deleted = self.lifecycle.repository.delete_terminal_older_than(
            cutoff=now - self.task_retention,
        )
        memory_deleted = self.memory.delete_older_than(now - self.memory_stale_after)
        if tasks_deleted or memory_deleted:
            logger.info(
                "Retention sweep deleted %d task(s) and %d memory entr(ies)",
                tasks_deleted,
                memory_deleted,
            )
        return RetentionSweepSummary(tasks_deleted=tasks_deleted, memory_deleted=memory_deleted)

    def run_loop(self, *, max_iterations: int | None = None) -> SweeperLoopSummary:
        """Run both sweeps on their own periods until stopped.

        Both sweeps run on the first iteration; afterwards each runs when its
        interval has elapsed. A sweep that raises is logged and counted, and
        runs again next period.
        """

        aggregate = SweeperLoopSummary()
        next_timeout_at = 0.0
        next_retention_at = 0.0
        iterations = 0
        with self._signal_handlers():
            while not self._stop.is_set():
                if max_iterations is not None and iterations >= max_iterations:
                    break
                now = time.monotonic()
                if now >= next_timeout_at:
                    next_timeout_at = now + self.timeout_interval_seconds
                    try:
                        timeout_summary = self.sweep_timeouts()
                    except Exception:
                        aggregate.errors += 1
                        logger.exception("Timeout sweep failed; retrying next period")
                    else:
                        aggregate.timeout_sweeps += 1
                        aggregate.timed_out += timeout_summary.timed_out
                if now >= next_retention_at:
                    next_retention_at = now + self.retention_interval_seconds
                    try:
                        retention_summary = self.sweep_retention()
                    except Exception:
                        aggregate.errors += 1
                        logger.exception("Retention sweep failed; retrying next period")
                    else:
                        aggregate.retention_sweeps += 1
                        aggregate.tasks_deleted += retention_summary.tasks_deleted
                        aggregate.memory_deleted += retention_summary.memory_deleted
                iterations += 1
                if max_iterations is not None and iterations >= max_iterations:
                    break
                next_due = min(next_timeout_at, next_retention_at)
                self._stop.wait(max(0.0, next_due - time.monotonic()))
        if self._stop_signal_name is not None:
            logger.info("Sweeper stopped by %s", self._stop_signal_name)
        return aggregate

    def start_background(self) -> threading.Thread:
        thread = threading.Thread(target=self.run_loop, name="task-sweeper", daemon=True)
        thread.start()
        return thread

    def stop(self) -> None:
        self._stop.set()

    @property
    def stopped(self) -> bool:
        return self._stop.is_set()

    @contextmanager
    def _signal_handlers(self) -> Iterator[None]:
        if threading.current_thread() is not threading.main_thread():
            yield
            return

        original_sigint = signal.getsignal(signal.SIGINT)
        original_sigterm = signal.getsignal(signal.SIGTERM)

        def _handler(signum: int, _: object | None) -> None:
            try:
                self._stop_signal_name = signal.Signals(signum).name
            except ValueError:
                self._stop_signal_name = str(signum)
            self._stop.set()

        try:
            signal.signal(signal.SIGINT, _handler)
            signal.signal(signal.SIGTERM, _handler)
            yield
        finally:
            signal.signal(signal.SIGINT, original_sigint)
            signal.signal(signal.SIGTERM, original_sigterm)
