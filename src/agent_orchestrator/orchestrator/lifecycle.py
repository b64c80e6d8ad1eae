"""Task lifecycle state machine: pending -> processing -> completed | failed."""

from __future__ import annotations

import logging
from datetime import datetime, timedelta
from typing import Any, NoReturn

from agent_orchestrator.orchestrator.errors import (
    InvalidTransitionError,
    NotFoundError,
    PostCompletionHookError,
    TaskValidationError,
)
from agent_orchestrator.orchestrator.events import EventNotifier
from agent_orchestrator.orchestrator.models import (
    TaskCreate,
    TaskDetails,
    TaskEvent,
    TaskEventType,
    TaskStatus,
    TaskView,
)
from agent_orchestrator.orchestrator.registry import CapabilityRegistry
from agent_orchestrator.orchestrator.repository import TaskRepository
from agent_orchestrator.storage.common import utc_now

logger = logging.getLogger(__name__)

TIMEOUT_ERROR_MESSAGE = "Task timed out"


class TaskLifecycleManager:
    """Owns every task mutation and publishes one event per transition."""

    def __init__(
        self,
        *,
        repository: TaskRepository,
        notifier: EventNotifier | None = None,
        registry: CapabilityRegistry | None = None,
    ) -> None:
        self.repository = repository
        self.notifier = notifier
        self.registry = registry

    def create(
        self,
        task_id: str | None,
        agent_id: str,
        owner_id: str,
        task_input: dict[str, Any],
    ) -> TaskView:
        """Create a pending task after boundary validation."""

        if task_id is not None and not task_id.strip():
            raise TaskValidationError("Task id must be non-empty when supplied.")
        if not agent_id or not agent_id.strip():
            raise TaskValidationError("agent_id is required.")
        if not owner_id or not owner_id.strip():
            raise TaskValidationError("owner_id is required.")
        if not isinstance(task_input, dict):
            raise TaskValidationError("Task input must be a JSON object.")
        if self.registry is not None:
            self.registry.validate_task_input(agent_id, task_input)

        task = self.repository.create_task(
            TaskCreate(
                agent_id=agent_id,
                owner_id=owner_id,
                input=task_input,
                task_id=task_id,
            ),
        )
        self._publish(TaskEventType.CREATED, task)
        return task

    def start(self, task_id: str) -> TaskView:
        task = self.repository.mark_started(task_id=task_id)
        if task is None:
            self._raise_for_rejected(task_id, attempted=TaskStatus.PROCESSING)
        self._publish(TaskEventType.STARTED, task)
        return task

    def complete(self, task_id: str, result: dict[str, Any]) -> TaskView:
        """processing -> completed, then the registered post-completion hook.

        A failing hook raises ``PostCompletionHookError``; the task is already
        committed as completed at that point.
        """

        if not isinstance(result, dict):
            raise TaskValidationError("Task result must be a JSON object.")
        task = self.repository.mark_completed(task_id=task_id, result=result)
        if task is None:
            self._raise_for_rejected(task_id, attempted=TaskStatus.COMPLETED)
        self._publish(TaskEventType.COMPLETED, task)
        self._run_post_completion_hook(task)
        return task

    def fail(
        self,
        task_id: str,
        message: str,
        *,
        details: dict[str, object] | None = None,
    ) -> TaskView:
        return self._fail(task_id, message, event_type=TaskEventType.FAILED, details=details)

    def time_out(self, task_id: str) -> TaskView:
        """Fail a processing task with the fixed timeout message."""

        return self._fail(task_id, TIMEOUT_ERROR_MESSAGE, event_type=TaskEventType.TIMED_OUT)

    def report_progress(self, task_id: str, percent: int) -> TaskView:
        """Publish a progress event for a processing task; state is unchanged."""

        if not 0 <= percent <= 100:  # noqa: PLR2004
            raise TaskValidationError(f"Progress must be within 0..100, got {percent}.")
        task = self._require(task_id)
        if task.status != TaskStatus.PROCESSING:
            raise InvalidTransitionError(
                task_id,
                current=task.status.value,
                attempted="progress",
            )
        self.repository.add_task_event(
            task_id=task_id,
            event_type=TaskEventType.PROGRESS.value,
            status_from=TaskStatus.PROCESSING,
            status_to=TaskStatus.PROCESSING,
            details={"progress_percent": percent},
        )
        self._publish(TaskEventType.PROGRESS, task, progress_percent=percent)
        return task

    def get(self, task_id: str) -> TaskView:
        return self._require(task_id)

    def details(self, task_id: str) -> TaskDetails:
        details = self.repository.get_task_details(task_id=task_id)
        if details is None:
            raise NotFoundError(task_id)
        return details

    def active_for_owner(self, owner_id: str) -> list[TaskView]:
        return self.repository.list_active_for_owner(owner_id=owner_id)

    def active_for_agent(self, agent_id: str) -> list[TaskView]:
        """Oldest first; advisory ordering for load balancing only."""

        return self.repository.list_active_for_agent(agent_id=agent_id)

    def timed_out_candidates(
        self,
        threshold: timedelta,
        *,
        now: datetime | None = None,
    ) -> list[TaskView]:
        cutoff = (now or utc_now()) - threshold
        return self.repository.list_timed_out(started_before=cutoff)

    def _fail(
        self,
        task_id: str,
        message: str,
        *,
        event_type: TaskEventType,
        details: dict[str, object] | None = None,
    ) -> TaskView:
        if not message or not message.strip():
            raise TaskValidationError("Failure message must be non-empty.")
        task = self.repository.mark_failed(
            task_id=task_id,
            error=message,
            event_type=event_type,
            details=details,
        )
        if task is None:
            self._raise_for_rejected(task_id, attempted=TaskStatus.FAILED)
        self._publish(event_type, task)
        return task

    def _require(self, task_id: str) -> TaskView:
        task = self.repository.get_task(task_id)
        if task is None:
            raise NotFoundError(task_id)
        return task

    def _raise_for_rejected(self, task_id: str, *, attempted: TaskStatus) -> NoReturn:
        task = self._require(task_id)
        raise InvalidTransitionError(
            task_id,
            current=task.status.value,
            attempted=attempted.value,
        )

    def _publish(
        self,
        event_type: TaskEventType,
        task: TaskView,
        *,
        progress_percent: int | None = None,
    ) -> None:
        if self.notifier is None:
            return
        self.notifier.publish(
            TaskEvent(
                event_type=event_type,
                task=task,
                timestamp=utc_now(),
                progress_percent=progress_percent,
            ),
        )

    def _run_post_completion_hook(self, task: TaskView) -> None:
        if self.registry is None or not self.registry.is_registered(task.agent_id):
            return
        hook = self.registry.resolve(task.agent_id).post_completion_hook
        if hook is None:
            return
        try:
            hook(task)
        except Exception as error:
            raise PostCompletionHookError(task, error) from error
