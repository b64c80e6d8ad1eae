"""Collaborators shared by the built-in agents."""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass
from typing import Any, TypeVar

from agent_orchestrator.orchestrator.memory import MemoryRepository
from agent_orchestrator.orchestrator.parallel import ParallelStepCoordinator
from agent_orchestrator.orchestrator.retry import RetryPolicy, call_with_retry
from agent_orchestrator.providers.completion import CompletionService, PromptTemplate

T = TypeVar("T")


@dataclass(slots=True)
class AgentContext:
    """Explicit dependencies handed to every agent; nothing is looked up globally."""

    completion: CompletionService
    coordinator: ParallelStepCoordinator
    memory: MemoryRepository | None = None
    retry_policy: RetryPolicy | None = None

    def complete(self, template: PromptTemplate, params: dict[str, Any]) -> str:
        prompt = template.render(params)
        return self.call(lambda: self.completion.complete(prompt), label=template.name)

    def call(self, fn: Callable[[], T], *, label: str) -> T:
        """Run one upstream call, through the retry policy when one is set."""

        if self.retry_policy is None:
            return fn()
        return call_with_retry(fn, self.retry_policy, label=label)
