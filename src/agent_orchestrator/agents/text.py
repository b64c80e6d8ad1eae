"""Single-call text agents: summarizer, concept explainer, citation formatter."""

from __future__ import annotations

import hashlib

from agent_orchestrator.agents.context import AgentContext
from agent_orchestrator.agents.prompts import (
    EXPLAIN_CONCEPTS_PROMPT,
    FORMAT_CITATION_PROMPT,
    SUMMARIZE_PROMPT,
)
from agent_orchestrator.orchestrator.memory import cache_key
from agent_orchestrator.orchestrator.models import AgentResult, TaskView
from agent_orchestrator.orchestrator.registry import AgentKind

DEFAULT_AUDIENCE = "general"
DEFAULT_MAX_SENTENCES = 5
DEFAULT_CITATION_STYLE = "APA"


class ContentSummarizer:
    """``{"text", "audience"?, "max_sentences"?}`` -> ``{"summary"}``."""

    agent_id = AgentKind.CONTENT_SUMMARIZER.value

    def __init__(self, context: AgentContext) -> None:
        self.context = context

    def __call__(self, task: TaskView) -> AgentResult:
        summary = self.context.complete(
            SUMMARIZE_PROMPT,
            {
                "text": task.input["text"],
                "audience": task.input.get("audience", DEFAULT_AUDIENCE),
                "max_sentences": int(task.input.get("max_sentences", DEFAULT_MAX_SENTENCES)),
            },
        )
        return AgentResult(data={"summary": summary}, agent_id=self.agent_id)


class ConceptExplainer:
    """``{"text", "audience"?}`` -> ``{"explanations"}``."""

    agent_id = AgentKind.CONCEPT_EXPLAINER.value

    def __init__(self, context: AgentContext) -> None:
        self.context = context

    def __call__(self, task: TaskView) -> AgentResult:
        explanations = self.context.complete(
            EXPLAIN_CONCEPTS_PROMPT,
            {
                "text": task.input["text"],
                "audience": task.input.get("audience", DEFAULT_AUDIENCE),
            },
        )
        return AgentResult(data={"explanations": explanations}, agent_id=self.agent_id)


class CitationFormatter:
    """Formats each reference; results are cached per style and reference."""

    agent_id = AgentKind.CITATION_FORMATTER.value

    def __init__(self, context: AgentContext) -> None:
        self.context = context

    def __call__(self, task: TaskView) -> AgentResult:
        style = str(task.input.get("style", DEFAULT_CITATION_STYLE))
        citations = task.input["citations"]
        if not isinstance(citations, list):
            raise ValueError("citations must be a list of strings")
        formatted = [self._format(str(citation), style) for citation in citations]
        return AgentResult(
            data={"style": style, "formatted": formatted},
            agent_id=self.agent_id,
        )

    def _format(self, citation: str, style: str) -> str:
        def _compute() -> dict[str, str]:
            text = self.context.complete(
                FORMAT_CITATION_PROMPT,
                {"style": style, "citation": citation},
            )
            return {"formatted": text}

        memory = self.context.memory
        if memory is None:
            return _compute()["formatted"]
        key = cache_key(self.agent_id, f"format-{style.lower()}", _fingerprint(citation))
        return str(memory.get_or_compute(key, _compute).get("formatted", ""))


def _fingerprint(value: str) -> str:
    return hashlib.sha256(value.strip().encode("utf-8")).hexdigest()[:16]
