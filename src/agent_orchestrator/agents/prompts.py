"""Prompt templates for the built-in agents."""

from __future__ import annotations

from agent_orchestrator.providers.completion import PromptTemplate

SUMMARIZE_PROMPT = PromptTemplate(
    name="summarize",
    template="""\
Summarize the following document for a {audience} reader in at most {max_sentences}
sentences. Keep every factual claim traceable to the text.

{text}
""",
)

EXPLAIN_CONCEPTS_PROMPT = PromptTemplate(
    name="explain_concepts",
    template="""\
List the key technical concepts in the document below and explain each in one
plain-language sentence for a {audience} reader.

{text}
""",
)

FORMAT_CITATION_PROMPT = PromptTemplate(
    name="format_citation",
    template="""\
Format the following reference in {style} style. Return only the formatted reference.

{citation}
""",
)

QUALITY_CHECK_PROMPTS: dict[str, PromptTemplate] = {
    "accuracy": PromptTemplate(
        name="quality_accuracy",
        template="Check the summary below against the source for factual accuracy.\n\n"
        "Source:\n{source}\n\nSummary:\n{text}\n",
    ),
    "consistency": PromptTemplate(
        name="quality_consistency",
        template="Identify internal contradictions in the text below.\n\n{text}\n",
    ),
    "bias": PromptTemplate(
        name="quality_bias",
        template="Point out one-sided framing or unsupported opinion in the text below.\n\n"
        "{text}\n",
    ),
    "hallucination": PromptTemplate(
        name="quality_hallucination",
        template="List statements in the summary that do not appear in the source.\n\n"
        "Source:\n{source}\n\nSummary:\n{text}\n",
    ),
    "logical_coherence": PromptTemplate(
        name="quality_logical_coherence",
        template="Assess whether the argument in the text below follows logically.\n\n{text}\n",
    ),
}

VERIFY_CLAIMS_PROMPT = PromptTemplate(
    name="verify_claims",
    template="""\
For each numbered claim, answer SUPPORTED, REFUTED, or UNCERTAIN with a short reason.

{claims}
""",
)

RESEARCH_PROMPT = PromptTemplate(
    name="research_query",
    template="""\
Answer the research question below using current literature. Cite sources.

Question: {query}
Context: {context}
""",
)
