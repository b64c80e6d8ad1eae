"""Completion service interface and the local echo implementation."""

from __future__ import annotations

import string
from dataclasses import dataclass
from typing import Any, Protocol


class CompletionService(Protocol):
    """Protocol implemented by text-generation providers.

    Implementations raise ``ProviderError`` on upstream failure and must not
    mask it with a placeholder response.
    """

    name: str

    def complete(self, prompt: str) -> str:
        """Return generated text for a rendered prompt."""


@dataclass(slots=True, frozen=True)
class PromptTemplate:
    """Named ``str.format`` template with declared parameters."""

    name: str
    template: str

    @property
    def parameters(self) -> tuple[str, ...]:
        return tuple(
            field_name
            for _, field_name, _, _ in string.Formatter().parse(self.template)
            if field_name
        )

    def render(self, params: dict[str, Any]) -> str:
        missing = [name for name in self.parameters if name not in params]
        if missing:
            raise ValueError(f"Prompt {self.name!r} missing parameters: {', '.join(missing)}")
        return self.template.format(**params)


class EchoCompletionService:
    """Deterministic local provider; echoes the prompt head."""

    name = "echo"

    def __init__(self, *, max_chars: int = 280) -> None:
        self.max_chars = max_chars
        self.calls = 0

    def complete(self, prompt: str) -> str:
        self.calls += 1
        text = " ".join(prompt.split())
        if len(text) > self.max_chars:
            text = text[: self.max_chars].rstrip() + "..."
        return f"[echo] {text}"


def build_completion_service(provider: str) -> CompletionService:
    if provider == "echo":
        return EchoCompletionService()
    raise ValueError(f"Unsupported completion provider: {provider!r}")
