"""Agent capability registry.

Maps an agent id to the callable that processes its tasks. Known agents are the
closed ``AgentKind`` set; custom ids are accepted when they match
``AGENT_ID_PATTERN``. All checks happen at registration, never at dispatch.
"""

from __future__ import annotations

import re
import threading
from collections.abc import Callable
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Protocol

from agent_orchestrator.orchestrator.errors import RegistrationError, UnknownAgentError
from agent_orchestrator.orchestrator.models import AgentResult, TaskView
from agent_orchestrator.orchestrator.payloads import require_fields

AGENT_ID_PATTERN = re.compile(r"^[a-z][a-z0-9-]*$")


class AgentKind(str, Enum):
    """Built-in agent identifiers."""

    PAPER_PROCESSOR = "paper-processor"
    CONTENT_SUMMARIZER = "content-summarizer"
    CONCEPT_EXPLAINER = "concept-explainer"
    QUALITY_CHECKER = "quality-checker"
    CITATION_VERIFIER = "citation-verifier"
    CITATION_FORMATTER = "citation-formatter"
    METADATA_ENHANCER = "metadata-enhancer"
    PERPLEXITY_RESEARCHER = "perplexity-researcher"
    RELATED_PAPER_DISCOVERY = "related-paper-discovery"


class ProviderKind(str, Enum):
    """Upstream service families an agent prefers."""

    COMPLETION = "completion"
    CROSSREF = "crossref"
    SEMANTIC_SCHOLAR = "semantic-scholar"
    LOCAL = "local"


class AgentCapability(Protocol):
    """Callable that turns a task into a result or raises."""

    def __call__(self, task: TaskView) -> AgentResult:
        """Process one task."""


PostCompletionHook = Callable[[TaskView], None]


@dataclass(slots=True, frozen=True)
class AgentRegistration:
    """Everything the orchestrator needs to run one agent id."""

    agent_id: str
    capability: AgentCapability
    provider: ProviderKind = ProviderKind.COMPLETION
    required_input: tuple[str, ...] = ()
    fallback_agent_id: str | None = None
    post_completion_hook: PostCompletionHook | None = None
    description: str = ""
    builtin: bool = field(default=False)

    def validate_input(self, data: dict[str, Any]) -> None:
        require_fields(self.agent_id, data, self.required_input)


class CapabilityRegistry:
    """Explicit registry object; construct once and pass to collaborators."""

    def __init__(self) -> None:
        self._registrations: dict[str, AgentRegistration] = {}
        self._lock = threading.Lock()

    def register(  # noqa: PLR0913
        self,
        agent_id: str | AgentKind,
        capability: AgentCapability,
        *,
        provider: ProviderKind = ProviderKind.COMPLETION,
        required_input: tuple[str, ...] = (),
        fallback_agent_id: str | AgentKind | None = None,
        post_completion_hook: PostCompletionHook | None = None,
        description: str = "",
        replace: bool = False,
    ) -> AgentRegistration:
        """Register a capability, validating id, callable, and fallback."""

        normalized = _normalize_agent_id(agent_id)
        if not callable(capability):
            raise RegistrationError(f"Capability for {normalized!r} is not callable.")
        fallback = _normalize_agent_id(fallback_agent_id) if fallback_agent_id else None
        if fallback == normalized:
            raise RegistrationError(f"Agent {normalized!r} cannot be its own fallback.")
        registration = AgentRegistration(
            agent_id=normalized,
            capability=capability,
            provider=provider,
            required_input=tuple(required_input),
            fallback_agent_id=fallback,
            post_completion_hook=post_completion_hook,
            description=description,
            builtin=normalized in _BUILTIN_IDS,
        )
        with self._lock:
            if normalized in self._registrations and not replace:
                raise RegistrationError(f"Agent {normalized!r} is already registered.")
            if fallback is not None and fallback not in self._registrations:
                raise RegistrationError(
                    f"Fallback agent {fallback!r} for {normalized!r} must be registered first.",
                )
            self._registrations[normalized] = registration
        return registration

    def resolve(self, agent_id: str) -> AgentRegistration:
        with self._lock:
            registration = self._registrations.get(agent_id)
        if registration is None:
            raise UnknownAgentError(agent_id)
        return registration

    def is_registered(self, agent_id: str) -> bool:
        with self._lock:
            return agent_id in self._registrations

    def agent_ids(self) -> list[str]:
        with self._lock:
            return sorted(self._registrations)

    def validate_task_input(self, agent_id: str, data: dict[str, Any]) -> AgentRegistration:
        registration = self.resolve(agent_id)
        registration.validate_input(data)
        return registration


_BUILTIN_IDS = frozenset(kind.value for kind in AgentKind)


def _normalize_agent_id(agent_id: str | AgentKind) -> str:
    value = agent_id.value if isinstance(agent_id, AgentKind) else str(agent_id).strip()
    if not AGENT_ID_PATTERN.match(value):
        raise RegistrationError(
            f"Invalid agent id {value!r}; expected lowercase letters, digits, and dashes.",
        )
    return value
