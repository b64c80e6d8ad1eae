"""Metadata enhancer agents, one per provider.

The Crossref agent is registered as the primary ``metadata-enhancer`` with the
Semantic Scholar agent as its fallback, so degradation goes through the
fallback orchestrator rather than through agent-internal branching.
"""

from __future__ import annotations

import re

from agent_orchestrator.agents.context import AgentContext
from agent_orchestrator.orchestrator.memory import cache_key
from agent_orchestrator.orchestrator.models import AgentResult, TaskView
from agent_orchestrator.providers.metadata import MetadataCandidate, MetadataProvider

SEMANTIC_SCHOLAR_ENHANCER_ID = "metadata-enhancer-semantic-scholar"
_NON_WORD = re.compile(r"[^a-z0-9]+")


class MetadataEnhancer:
    """``{"title", "doi"?}`` -> ``{"metadata": {...}}`` from one provider."""

    def __init__(self, context: AgentContext, provider: MetadataProvider, *, agent_id: str) -> None:
        self.context = context
        self.provider = provider
        self.agent_id = agent_id

    def __call__(self, task: TaskView) -> AgentResult:
        doi = str(task.input.get("doi") or "").strip()
        title = str(task.input["title"]).strip()
        if doi:
            operation, item_id = "doi", doi.lower()
        else:
            operation, item_id = "title", _normalize_title(title)

        def _lookup() -> dict[str, object]:
            return self._lookup(doi=doi, title=title).to_document()

        memory = self.context.memory
        if memory is None:
            metadata = _lookup()
        else:
            metadata = memory.get_or_compute(cache_key(self.agent_id, operation, item_id), _lookup)
        return AgentResult(data={"metadata": metadata}, agent_id=self.agent_id)

    def _lookup(self, *, doi: str, title: str) -> MetadataCandidate:
        label = f"{self.provider.name}_lookup"
        if doi:
            identifier = doi if self.provider.name == "crossref" else f"DOI:{doi}"
            return self.context.call(lambda: self.provider.lookup_by_id(identifier), label=label)
        return self.context.call(lambda: self.provider.search_by_title(title), label=label)


def _normalize_title(title: str) -> str:
    return _NON_WORD.sub("-", title.lower()).strip("-")
