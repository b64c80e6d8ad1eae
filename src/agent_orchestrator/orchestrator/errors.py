"""Error taxonomy for task orchestration."""

from __future__ import annotations

from collections.abc import Sequence

from agent_orchestrator.orchestrator.models import TaskView


class OrchestratorError(RuntimeError):
    """Base error for orchestration failures."""


class TaskValidationError(OrchestratorError):
    """Rejected at the call boundary; never stored as a failed task."""


class DuplicateIdError(TaskValidationError):
    def __init__(self, task_id: str) -> None:
        super().__init__(f"Task already exists: {task_id}")
        self.task_id = task_id


class UnknownAgentError(TaskValidationError):
    def __init__(self, agent_id: str) -> None:
        super().__init__(f"No capability registered for agent_id={agent_id!r}")
        self.agent_id = agent_id


class RegistrationError(OrchestratorError):
    """Capability rejected at registration time."""


class NotFoundError(OrchestratorError):
    def __init__(self, task_id: str) -> None:
        super().__init__(f"Task not found: {task_id}")
        self.task_id = task_id


class InvalidTransitionError(OrchestratorError):
    """Transition not allowed from the task's current status."""

    def __init__(self, task_id: str, *, current: str, attempted: str) -> None:
        super().__init__(
            f"Invalid transition for task {task_id}: {current} -> {attempted}",
        )
        self.task_id = task_id
        self.current = current
        self.attempted = attempted


class ProviderError(OrchestratorError):
    """Upstream provider failure with retryability hint."""

    def __init__(self, message: str, *, provider: str, transient: bool = False) -> None:
        super().__init__(message)
        self.provider = provider
        self.transient = transient


class PoolSaturatedError(OrchestratorError):
    """Worker pool backlog is full and the policy is to reject."""


class SubOperationFailedError(OrchestratorError):
    """A fatal sub-operation failed; the joined result is a failure."""

    def __init__(self, name: str, cause: BaseException) -> None:
        super().__init__(f"Fatal sub-operation {name!r} failed: {cause}")
        self.name = name
        self.cause = cause


class AllSubOperationsFailedError(OrchestratorError):
    """No sub-operation survived, nothing to synthesize."""

    def __init__(self, failures: Sequence[tuple[str, BaseException]]) -> None:
        summary = "; ".join(f"{name}: {error}" for name, error in failures)
        super().__init__(f"All {len(failures)} sub-operations failed ({summary})")
        self.failures = list(failures)


class FallbackExhaustedError(OrchestratorError):
    """Every agent in the chain failed; carries each failure, primary first."""

    def __init__(self, failures: Sequence[tuple[str, BaseException]]) -> None:
        summary = "; ".join(f"{agent_id}: {error}" for agent_id, error in failures)
        super().__init__(f"Primary and fallback agents failed ({summary})")
        self.failures = list(failures)

    @property
    def primary_failure(self) -> BaseException:
        return self.failures[0][1]


class PostCompletionHookError(OrchestratorError):
    """The task committed as completed but its post-completion hook raised."""

    def __init__(self, task: TaskView, cause: BaseException) -> None:
        super().__init__(f"Post-completion hook failed for task {task.task_id}: {cause}")
        self.task = task
        self.cause = cause
