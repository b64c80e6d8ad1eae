"""Paper processor: one fan-out over the per-paper analysis steps."""

from __future__ import annotations

import logging
from typing import Any

from agent_orchestrator.agents.context import AgentContext
from agent_orchestrator.agents.prompts import EXPLAIN_CONCEPTS_PROMPT, SUMMARIZE_PROMPT
from agent_orchestrator.agents.text import DEFAULT_AUDIENCE, DEFAULT_MAX_SENTENCES
from agent_orchestrator.orchestrator.memory import MemoryRepository, processed_key, workflow_key
from agent_orchestrator.orchestrator.models import AgentResult, TaskView
from agent_orchestrator.orchestrator.parallel import SubOperation, SubOperationOutcome
from agent_orchestrator.orchestrator.registry import AgentKind, PostCompletionHook
from agent_orchestrator.providers.metadata import MetadataProvider

logger = logging.getLogger(__name__)


class PaperProcessor:
    """``{"paper_id", "text", "title"?}`` -> summary, concepts, and metadata.

    The summary step is fatal; concepts and metadata are optional. A paper
    already in the owner's processed set is skipped without upstream calls.
    """

    agent_id = AgentKind.PAPER_PROCESSOR.value

    def __init__(
        self,
        context: AgentContext,
        metadata_provider: MetadataProvider | None = None,
    ) -> None:
        self.context = context
        self.metadata_provider = metadata_provider

    def __call__(self, task: TaskView) -> AgentResult:
        paper_id = str(task.input["paper_id"])
        memory = self.context.memory
        if memory is not None and memory.has_member(processed_key(task.owner_id), paper_id):
            logger.info("Paper %s already processed for owner %s", paper_id, task.owner_id)
            return AgentResult(
                data={"paperId": paper_id, "alreadyProcessed": True},
                agent_id=self.agent_id,
            )

        joined = self.context.coordinator.run(task, self._operations(task), _merge_steps)
        data: dict[str, Any] = {
            "paperId": paper_id,
            "alreadyProcessed": False,
            **joined.output,
            "skippedSteps": joined.failed_names,
        }
        if memory is not None:
            memory.put(
                workflow_key(task.task_id),
                {
                    "paperId": paper_id,
                    "completedSteps": [outcome.name for outcome in joined.survivors],
                    "skippedSteps": joined.failed_names,
                },
            )
        return AgentResult(data=data, agent_id=self.agent_id)

    def _operations(self, task: TaskView) -> list[SubOperation[Any]]:
        text = task.input["text"]
        audience = task.input.get("audience", DEFAULT_AUDIENCE)
        operations: list[SubOperation[Any]] = [
            SubOperation(
                name="summary",
                fn=lambda: self.context.complete(
                    SUMMARIZE_PROMPT,
                    {"text": text, "audience": audience, "max_sentences": DEFAULT_MAX_SENTENCES},
                ),
                fatal=True,
            ),
            SubOperation(
                name="concepts",
                fn=lambda: self.context.complete(
                    EXPLAIN_CONCEPTS_PROMPT,
                    {"text": text, "audience": audience},
                ),
            ),
        ]
        title = str(task.input.get("title") or "").strip()
        provider = self.metadata_provider
        if title and provider is not None:
            operations.append(
                SubOperation(
                    name="metadata",
                    fn=lambda: self.context.call(
                        lambda: provider.search_by_title(title).to_document(),
                        label=f"{provider.name}_search",
                    ),
                ),
            )
        return operations


def mark_paper_processed(memory: MemoryRepository) -> PostCompletionHook:
    """Post-completion hook adding the paper id to ``processed:<owner>``."""

    def _hook(task: TaskView) -> None:
        paper_id = str(task.input["paper_id"])
        if memory.add_member(processed_key(task.owner_id), paper_id):
            logger.info("Marked paper %s processed for owner %s", paper_id, task.owner_id)

    return _hook


def _merge_steps(outcomes: list[SubOperationOutcome[Any]]) -> dict[str, Any]:
    return {outcome.name: outcome.value for outcome in outcomes}
