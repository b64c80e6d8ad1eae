"""Runs created tasks end-to-end: start, invoke, then complete or fail."""

from __future__ import annotations

import logging
import threading
from concurrent.futures import Future, wait
from dataclasses import dataclass

from agent_orchestrator.orchestrator.errors import (
    FallbackExhaustedError,
    InvalidTransitionError,
    PoolSaturatedError,
    PostCompletionHookError,
    ProviderError,
)
from agent_orchestrator.orchestrator.failure_classifier import classify_provider_failure
from agent_orchestrator.orchestrator.fallback import FallbackOrchestrator
from agent_orchestrator.orchestrator.lifecycle import TaskLifecycleManager
from agent_orchestrator.orchestrator.models import AgentResult, TaskStatus, TaskView
from agent_orchestrator.orchestrator.parallel import BoundedWorkerPool

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class DispatchSummary:
    """Aggregate dispatcher counters for CLI reporting."""

    dispatched: int = 0
    completed: int = 0
    failed: int = 0
    used_fallback: int = 0
    late_results_dropped: int = 0
    rejected: int = 0
    hook_failures: int = 0


@dataclass(slots=True)
class DispatchOutcome:
    task_id: str
    status: TaskStatus
    used_fallback: bool = False
    error: str | None = None
    late: bool = False
    hook_error: str | None = None


class TaskDispatcher:
    """Executes tasks through the registry with fallback on a bounded pool.

    A result that arrives after the task went terminal (typically a timeout
    recorded by the sweeper) is dropped, never written.
    """

    def __init__(
        self,
        *,
        lifecycle: TaskLifecycleManager,
        fallback: FallbackOrchestrator,
        pool: BoundedWorkerPool,
    ) -> None:
        self.lifecycle = lifecycle
        self.fallback = fallback
        self.pool = pool
        self.summary = DispatchSummary()
        self._summary_lock = threading.Lock()

    def submit(self, task_id: str) -> Future[DispatchOutcome]:
        """Schedule ``dispatch`` on the pool; the task stays pending if rejected."""

        try:
            return self.pool.submit(self.dispatch, task_id)
        except PoolSaturatedError:
            with self._summary_lock:
                self.summary.rejected += 1
            logger.warning("Task %s not scheduled: worker pool saturated", task_id)
            raise

    def dispatch(self, task_id: str) -> DispatchOutcome:
        task = self.lifecycle.start(task_id)
        with self._summary_lock:
            self.summary.dispatched += 1
        try:
            result = self.fallback.invoke_registered(task)
        except Exception as error:
            message = str(error) or type(error).__name__
            logger.warning("Task %s (agent=%s) failed: %s", task.task_id, task.agent_id, message)
            return self._record_failure(task, message, _failure_details(error))
        return self._record_completion(task, result)

    def dispatch_pending(self, *, limit: int = 50) -> list[DispatchOutcome]:
        """Submit up to ``limit`` pending tasks, oldest first, and wait for them.

        Tasks the pool rejects stay pending and are left out of the returned list.
        """

        pending = self.lifecycle.repository.list_pending_oldest(limit=limit)
        futures: list[Future[DispatchOutcome]] = []
        for task in pending:
            try:
                futures.append(self.submit(task.task_id))
            except PoolSaturatedError:
                continue
        wait(futures)
        outcomes: list[DispatchOutcome] = []
        for future in futures:
            try:
                outcomes.append(future.result())
            except InvalidTransitionError as error:
                # Someone else started it between the listing and our start.
                logger.info("Skipped task %s: %s", error.task_id, error)
        return outcomes

    def _record_completion(self, task: TaskView, result: AgentResult) -> DispatchOutcome:
        hook_error: str | None = None
        try:
            completed = self.lifecycle.complete(task.task_id, result.to_document())
        except InvalidTransitionError as error:
            return self._drop_late(task, error)
        except PostCompletionHookError as error:
            logger.exception(
                "Task %s completed but its post-completion hook failed",
                task.task_id,
            )
            completed = error.task
            hook_error = str(error.cause) or type(error.cause).__name__
        with self._summary_lock:
            self.summary.completed += 1
            if result.used_fallback:
                self.summary.used_fallback += 1
            if hook_error is not None:
                self.summary.hook_failures += 1
        return DispatchOutcome(
            task_id=completed.task_id,
            status=completed.status,
            used_fallback=result.used_fallback,
            hook_error=hook_error,
        )

    def _record_failure(
        self,
        task: TaskView,
        message: str,
        details: dict[str, object],
    ) -> DispatchOutcome:
        try:
            failed = self.lifecycle.fail(task.task_id, message, details=details)
        except InvalidTransitionError as error:
            return self._drop_late(task, error)
        with self._summary_lock:
            self.summary.failed += 1
        return DispatchOutcome(task_id=failed.task_id, status=failed.status, error=failed.error)

    def _drop_late(self, task: TaskView, error: InvalidTransitionError) -> DispatchOutcome:
        logger.warning(
            "Dropping late result for task %s (agent=%s): task is already %s",
            task.task_id,
            task.agent_id,
            error.current,
        )
        with self._summary_lock:
            self.summary.late_results_dropped += 1
        current = self.lifecycle.get(task.task_id)
        return DispatchOutcome(
            task_id=current.task_id,
            status=current.status,
            error=current.error,
            late=True,
        )


def _failure_details(error: BaseException) -> dict[str, object]:
    """Classifier details for the failed event; a chain is classified by its primary."""

    cause = error.primary_failure if isinstance(error, FallbackExhaustedError) else error
    provider = cause.provider if isinstance(cause, ProviderError) else "unknown"
    return classify_provider_failure(cause).to_event_details(provider=provider)
