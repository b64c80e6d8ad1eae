"""Default registry wiring for the built-in agents."""

from __future__ import annotations

from agent_orchestrator.agents.analysis import (
    CitationVerifier,
    LiteratureResearcher,
    QualityChecker,
    RelatedPaperDiscovery,
)
from agent_orchestrator.agents.context import AgentContext
from agent_orchestrator.agents.metadata import SEMANTIC_SCHOLAR_ENHANCER_ID, MetadataEnhancer
from agent_orchestrator.agents.paper import PaperProcessor, mark_paper_processed
from agent_orchestrator.agents.text import CitationFormatter, ConceptExplainer, ContentSummarizer
from agent_orchestrator.orchestrator.registry import AgentKind, CapabilityRegistry, ProviderKind
from agent_orchestrator.providers.metadata import MetadataProvider


def build_default_registry(
    context: AgentContext,
    *,
    crossref: MetadataProvider,
    semantic_scholar: MetadataProvider,
) -> CapabilityRegistry:
    """Register every built-in agent; fallbacks are registered before their primaries."""

    registry = CapabilityRegistry()
    registry.register(
        AgentKind.CONTENT_SUMMARIZER,
        ContentSummarizer(context),
        required_input=("text",),
        description="Summarizes a document.",
    )
    registry.register(
        AgentKind.CONCEPT_EXPLAINER,
        ConceptExplainer(context),
        required_input=("text",),
        description="Explains key concepts in plain language.",
    )
    registry.register(
        AgentKind.CITATION_FORMATTER,
        CitationFormatter(context),
        required_input=("citations",),
        description="Formats references in a citation style.",
    )
    registry.register(
        AgentKind.QUALITY_CHECKER,
        QualityChecker(context),
        required_input=("text",),
        description="Runs five quality checks concurrently.",
    )
    registry.register(
        AgentKind.CITATION_VERIFIER,
        CitationVerifier(context),
        required_input=("claims",),
        description="Verifies claims in concurrent batches.",
    )
    registry.register(
        AgentKind.PERPLEXITY_RESEARCHER,
        LiteratureResearcher(context),
        required_input=("queries",),
        description="Answers research queries concurrently.",
    )
    registry.register(
        AgentKind.RELATED_PAPER_DISCOVERY,
        RelatedPaperDiscovery(context, semantic_scholar),
        provider=ProviderKind.SEMANTIC_SCHOLAR,
        required_input=("topics",),
        description="Finds related papers per topic.",
    )
    registry.register(
        SEMANTIC_SCHOLAR_ENHANCER_ID,
        MetadataEnhancer(context, semantic_scholar, agent_id=SEMANTIC_SCHOLAR_ENHANCER_ID),
        provider=ProviderKind.SEMANTIC_SCHOLAR,
        required_input=("title",),
        description="Metadata lookup via Semantic Scholar.",
    )
    registry.register(
        AgentKind.METADATA_ENHANCER,
        MetadataEnhancer(context, crossref, agent_id=AgentKind.METADATA_ENHANCER.value),
        provider=ProviderKind.CROSSREF,
        required_input=("title",),
        fallback_agent_id=SEMANTIC_SCHOLAR_ENHANCER_ID,
        description="Metadata lookup via Crossref, falling back to Semantic Scholar.",
    )
    registry.register(
        AgentKind.PAPER_PROCESSOR,
        PaperProcessor(context, crossref),
        required_input=("paper_id", "text"),
        post_completion_hook=mark_paper_processed(context.memory)
        if context.memory is not None
        else None,
        description="Summary, concepts, and metadata for one paper.",
    )
    return registry
