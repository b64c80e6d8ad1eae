"""Metadata enrichment providers (Crossref, Semantic Scholar) over httpx."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Protocol
from urllib.parse import quote

import httpx

from agent_orchestrator.orchestrator.errors import ProviderError

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT_SECONDS = 15.0
DEFAULT_USER_AGENT = "agent-orchestrator/0.1 (metadata enrichment)"
_TRANSIENT_STATUS_CODES = frozenset({408, 425, 429, 500, 502, 503, 504})
_SEMANTIC_SCHOLAR_FIELDS = "title,authors,year,venue,externalIds,citationCount"


@dataclass(slots=True)
class MetadataCandidate:
    """Best-match bibliographic record from one provider."""

    source: str
    identifier: str
    title: str
    authors: list[str] = field(default_factory=list)
    year: int | None = None
    venue: str | None = None
    doi: str | None = None
    score: float | None = None
    raw: dict[str, Any] = field(default_factory=dict, repr=False)

    def to_document(self) -> dict[str, Any]:
        return {
            "source": self.source,
            "identifier": self.identifier,
            "title": self.title,
            "authors": list(self.authors),
            "year": self.year,
            "venue": self.venue,
            "doi": self.doi,
            "score": self.score,
        }


class MetadataProvider(Protocol):
    """Lookup by provider identifier or by free-text title."""

    name: str

    def lookup_by_id(self, identifier: str) -> MetadataCandidate:
        """Return the record for an identifier or raise ``ProviderError``."""

    def search_by_title(self, title: str) -> MetadataCandidate:
        """Return the best title match or raise ``ProviderError``."""


class _HttpMetadataProvider:
    """Shared httpx client handling; HTTP failures become ``ProviderError``."""

    name = "http"

    def __init__(
        self,
        *,
        base_url: str,
        timeout_seconds: float = DEFAULT_TIMEOUT_SECONDS,
        user_agent: str = DEFAULT_USER_AGENT,
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        self._client = httpx.Client(
            base_url=base_url.rstrip("/"),
            timeout=httpx.Timeout(timeout_seconds, connect=10.0),
            headers={"User-Agent": user_agent, "Accept": "application/json"},
            transport=transport,
            follow_redirects=True,
        )

    def close(self) -> None:
        self._client.close()

    def __enter__(self) -> _HttpMetadataProvider:
        return self

    def __exit__(self, *_: object) -> None:
        self.close()

    def _get_json(self, path: str, params: dict[str, Any] | None = None) -> dict[str, Any]:
        try:
            response = self._client.get(path, params=params)
        except httpx.TimeoutException as error:
            logger.warning("%s request timed out: %s", self.name, path)
            raise ProviderError(
                f"{self.name} request timed out: {path}",
                provider=self.name,
                transient=True,
            ) from error
        except httpx.HTTPError as error:
            logger.warning("%s HTTP error for %s: %s", self.name, path, error)
            raise ProviderError(
                f"{self.name} network error: {error}",
                provider=self.name,
                transient=True,
            ) from error

        if not response.is_success:
            logger.warning("%s returned HTTP %s for %s", self.name, response.status_code, path)
            raise ProviderError(
                f"{self.name} HTTP {response.status_code} for {path}",
                provider=self.name,
                transient=response.status_code in _TRANSIENT_STATUS_CODES,
            )
        try:
            document = response.json()
        except ValueError as error:
            raise ProviderError(
                f"{self.name} returned invalid JSON for {path}",
                provider=self.name,
            ) from error
        if not isinstance(document, dict):
            raise ProviderError(
                f"{self.name} returned unexpected payload for {path}",
                provider=self.name,
            )
        return document


class CrossrefProvider(_HttpMetadataProvider):
    """Crossref REST API: ``/works/{doi}`` and bibliographic search."""

    name = "crossref"

    def lookup_by_id(self, identifier: str) -> MetadataCandidate:
        document = self._get_json(f"/works/{quote(identifier.strip(), safe='/')}")
        message = document.get("message")
        if not isinstance(message, dict):
            raise ProviderError(f"crossref has no record for {identifier}", provider=self.name)
        return _crossref_candidate(message)

    def search_by_title(self, title: str) -> MetadataCandidate:
        document = self._get_json(
            "/works",
            params={"query.bibliographic": title, "rows": 1},
        )
        message = document.get("message")
        items = message.get("items") if isinstance(message, dict) else None
        if not items:
            raise ProviderError(f"crossref found no match for title {title!r}", provider=self.name)
        return _crossref_candidate(items[0])


class SemanticScholarProvider(_HttpMetadataProvider):
    """Semantic Scholar Graph API: ``/paper/{id}`` and ``/paper/search``."""

    name = "semantic_scholar"

    def lookup_by_id(self, identifier: str) -> MetadataCandidate:
        document = self._get_json(
            f"/paper/{quote(identifier.strip(), safe=':/')}",
            params={"fields": _SEMANTIC_SCHOLAR_FIELDS},
        )
        return _semantic_scholar_candidate(document)

    def search_by_title(self, title: str) -> MetadataCandidate:
        document = self._get_json(
            "/paper/search",
            params={"query": title, "limit": 1, "fields": _SEMANTIC_SCHOLAR_FIELDS},
        )
        items = document.get("data")
        if not items:
            raise ProviderError(
                f"semantic_scholar found no match for title {title!r}",
                provider=self.name,
            )
        return _semantic_scholar_candidate(items[0])


def _crossref_candidate(message: dict[str, Any]) -> MetadataCandidate:
    titles = message.get("title") or []
    containers = message.get("container-title") or []
    authors = [
        " ".join(part for part in (author.get("given"), author.get("family")) if part)
        for author in message.get("author") or []
        if isinstance(author, dict)
    ]
    doi = message.get("DOI")
    return MetadataCandidate(
        source="crossref",
        identifier=str(doi or ""),
        title=str(titles[0]) if titles else "",
        authors=[name for name in authors if name],
        year=_crossref_year(message),
        venue=str(containers[0]) if containers else None,
        doi=str(doi) if doi else None,
        score=float(message["score"]) if message.get("score") is not None else None,
        raw=message,
    )


def _crossref_year(message: dict[str, Any]) -> int | None:
    for key in ("published-print", "published-online", "issued", "created"):
        parts = (message.get(key) or {}).get("date-parts") or []
        if parts and parts[0] and parts[0][0] is not None:
            return int(parts[0][0])
    return None


def _semantic_scholar_candidate(document: dict[str, Any]) -> MetadataCandidate:
    external_ids = document.get("externalIds") or {}
    return MetadataCandidate(
        source="semantic_scholar",
        identifier=str(document.get("paperId") or ""),
        title=str(document.get("title") or ""),
        authors=[
            str(author.get("name"))
            for author in document.get("authors") or []
            if isinstance(author, dict) and author.get("name")
        ],
        year=int(document["year"]) if document.get("year") is not None else None,
        venue=document.get("venue") or None,
        doi=external_ids.get("DOI"),
        score=None,
        raw=document,
    )
