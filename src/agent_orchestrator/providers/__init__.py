"""Upstream providers consumed by agents."""

from agent_orchestrator.providers.completion import (
    CompletionService,
    EchoCompletionService,
    PromptTemplate,
    build_completion_service,
)
from agent_orchestrator.providers.metadata import (
    CrossrefProvider,
    MetadataCandidate,
    MetadataProvider,
    SemanticScholarProvider,
)

__all__ = [
    "CompletionService",
    "CrossrefProvider",
    "EchoCompletionService",
    "MetadataCandidate",
    "MetadataProvider",
    "PromptTemplate",
    "SemanticScholarProvider",
    "build_completion_service",
]
