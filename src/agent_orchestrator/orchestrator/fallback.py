"""Primary-then-fallback agent invocation.

Two attempts by default: the primary, then its fallback. ``invoke_chain``
applies the same contract to a longer ordered list of agents. There is no
retry loop here; see ``retry.py`` for that.
"""

from __future__ import annotations

import logging
from collections.abc import Sequence

from agent_orchestrator.orchestrator.errors import FallbackExhaustedError
from agent_orchestrator.orchestrator.models import AgentResult, TaskView
from agent_orchestrator.orchestrator.registry import CapabilityRegistry

logger = logging.getLogger(__name__)


class FallbackOrchestrator:
    """Runs capabilities from the registry with fallback on failure."""

    def __init__(self, *, registry: CapabilityRegistry) -> None:
        self.registry = registry

    def invoke(self, primary_agent_id: str, fallback_agent_id: str, task: TaskView) -> AgentResult:
        return self.invoke_chain((primary_agent_id, fallback_agent_id), task)

    def invoke_registered(self, task: TaskView) -> AgentResult:
        """Invoke the task's agent, then its registered fallback if any."""

        registration = self.registry.resolve(task.agent_id)
        if registration.fallback_agent_id is None:
            return self._call(task.agent_id, task)
        return self.invoke(task.agent_id, registration.fallback_agent_id, task)

    def invoke_chain(self, agent_ids: Sequence[str], task: TaskView) -> AgentResult:
        """Try each agent in order; the first success wins.

        A success after the primary failed is tagged ``used_fallback`` with the
        primary's failure reason. When all fail, the composite error lists
        every failure, primary first.
        """

        if not agent_ids:
            raise ValueError("At least one agent id is required.")
        failures: list[tuple[str, BaseException]] = []
        for agent_id in agent_ids:
            try:
                result = self._call(agent_id, task)
            except Exception as error:
                failures.append((agent_id, error))
                if agent_id != agent_ids[-1]:
                    logger.warning(
                        "Agent %s failed for task %s: %s; falling back",
                        agent_id,
                        task.task_id,
                        error,
                    )
                continue
            if not failures:
                return result
            return AgentResult(
                data=result.data,
                agent_id=agent_id,
                used_fallback=True,
                primary_failure_reason=str(failures[0][1]),
            )
        raise FallbackExhaustedError(failures)

    def _call(self, agent_id: str, task: TaskView) -> AgentResult:
        registration = self.registry.resolve(agent_id)
        result = registration.capability(task)
        if not isinstance(result, AgentResult):
            raise TypeError(
                f"Capability {agent_id!r} returned {type(result).__name__}, expected AgentResult.",
            )
        return result
