"""Fan-out agents built on the parallel step coordinator."""

from __future__ import annotations

from collections.abc import Callable
from typing import Any

from agent_orchestrator.agents.context import AgentContext
from agent_orchestrator.agents.prompts import (
    QUALITY_CHECK_PROMPTS,
    RESEARCH_PROMPT,
    VERIFY_CLAIMS_PROMPT,
)
from agent_orchestrator.orchestrator.models import AgentResult, TaskView
from agent_orchestrator.orchestrator.parallel import SubOperation, SubOperationOutcome
from agent_orchestrator.orchestrator.registry import AgentKind
from agent_orchestrator.providers.completion import PromptTemplate
from agent_orchestrator.providers.metadata import MetadataProvider


class QualityChecker:
    """Runs the five quality checks concurrently and merges what succeeded.

    ``{"text", "source"?}`` -> ``{"checks", "failedChecks", "coverage"}``.
    """

    agent_id = AgentKind.QUALITY_CHECKER.value

    def __init__(self, context: AgentContext) -> None:
        self.context = context

    def __call__(self, task: TaskView) -> AgentResult:
        params = {
            "text": task.input["text"],
            "source": task.input.get("source", task.input["text"]),
        }
        operations = [
            SubOperation(name=check, fn=_bind_completion(self.context, template, params))
            for check, template in QUALITY_CHECK_PROMPTS.items()
        ]
        joined = self.context.coordinator.run(task, operations, _merge_named_text)
        return AgentResult(
            data={
                "checks": joined.output,
                "failedChecks": joined.failed_names,
                "coverage": round(len(joined.survivors) / len(joined.outcomes), 4),
            },
            agent_id=self.agent_id,
        )


class CitationVerifier:
    """Verifies claims concurrently, grouping them into batches above the batch size.

    ``{"claims": [...]}`` -> ``{"verdicts", "unverifiedClaims"}``.
    """

    agent_id = AgentKind.CITATION_VERIFIER.value

    def __init__(self, context: AgentContext) -> None:
        self.context = context

    def __call__(self, task: TaskView) -> AgentResult:
        claims = [str(claim) for claim in _require_list(task.input, "claims")]

        def _verify(batch: list[str]) -> list[dict[str, str]]:
            numbered = "\n".join(f"{index}. {claim}" for index, claim in enumerate(batch, start=1))
            verdict = self.context.complete(VERIFY_CLAIMS_PROMPT, {"claims": numbered})
            return [{"claim": claim, "verdict": verdict} for claim in batch]

        def _flatten(outcomes: list[SubOperationOutcome[list[dict[str, str]]]]) -> list[Any]:
            return [verdict for outcome in outcomes for verdict in outcome.value or []]

        joined = self.context.coordinator.run_batched(
            task,
            claims,
            _verify,
            _flatten,
            name_prefix="claims",
        )
        verified = {entry["claim"] for entry in joined.output}
        return AgentResult(
            data={
                "verdicts": joined.output,
                "unverifiedClaims": [claim for claim in claims if claim not in verified],
            },
            agent_id=self.agent_id,
        )


class LiteratureResearcher:
    """One concurrent completion per research query.

    ``{"queries": [...], "context"?}`` -> ``{"findings", "failedQueries"}``.
    """

    agent_id = AgentKind.PERPLEXITY_RESEARCHER.value

    def __init__(self, context: AgentContext) -> None:
        self.context = context

    def __call__(self, task: TaskView) -> AgentResult:
        queries = [str(query) for query in _require_list(task.input, "queries")]
        context_text = str(task.input.get("context", ""))
        operations = [
            SubOperation(
                name=f"query-{index}",
                fn=_bind_completion(
                    self.context,
                    RESEARCH_PROMPT,
                    {"query": query, "context": context_text},
                ),
            )
            for index, query in enumerate(queries)
        ]
        by_name = {f"query-{index}": query for index, query in enumerate(queries)}

        def _findings(outcomes: list[SubOperationOutcome[str]]) -> list[dict[str, str]]:
            return [
                {"query": by_name[outcome.name], "answer": outcome.value or ""}
                for outcome in outcomes
            ]

        joined = self.context.coordinator.run(task, operations, _findings)
        return AgentResult(
            data={
                "findings": joined.output,
                "failedQueries": [by_name[name] for name in joined.failed_names],
            },
            agent_id=self.agent_id,
        )


class RelatedPaperDiscovery:
    """Concurrent title searches, one per topic.

    ``{"topics": [...]}`` -> ``{"papers", "failedTopics"}``.
    """

    agent_id = AgentKind.RELATED_PAPER_DISCOVERY.value

    def __init__(self, context: AgentContext, provider: MetadataProvider) -> None:
        self.context = context
        self.provider = provider

    def __call__(self, task: TaskView) -> AgentResult:
        topics = [str(topic) for topic in _require_list(task.input, "topics")]
        operations = [
            SubOperation(
                name=f"topic-{index}",
                fn=_bind_search(self.context, self.provider, topic),
            )
            for index, topic in enumerate(topics)
        ]
        by_name = {f"topic-{index}": topic for index, topic in enumerate(topics)}

        def _papers(outcomes: list[SubOperationOutcome[dict[str, Any]]]) -> list[dict[str, Any]]:
            return [
                {"topic": by_name[outcome.name], **(outcome.value or {})} for outcome in outcomes
            ]

        joined = self.context.coordinator.run(task, operations, _papers)
        return AgentResult(
            data={
                "papers": joined.output,
                "failedTopics": [by_name[name] for name in joined.failed_names],
            },
            agent_id=self.agent_id,
        )


def _bind_completion(
    context: AgentContext,
    template: PromptTemplate,
    params: dict[str, Any],
) -> Callable[[], str]:
    return lambda: context.complete(template, params)


def _bind_search(
    context: AgentContext,
    provider: MetadataProvider,
    topic: str,
) -> Callable[[], dict[str, Any]]:
    return lambda: context.call(
        lambda: provider.search_by_title(topic).to_document(),
        label=f"{provider.name}_search",
    )


def _merge_named_text(outcomes: list[SubOperationOutcome[str]]) -> dict[str, str]:
    return {outcome.name: outcome.value or "" for outcome in outcomes}


def _require_list(data: dict[str, Any], field_name: str) -> list[Any]:
    value = data.get(field_name)
    if not isinstance(value, list) or not value:
        raise ValueError(f"{field_name} must be a non-empty list")
    return value
