"""Schema-tagged task payload documents.

Inputs and results are stored as ``{"schema": <agent id>, "version": <n>, "data": {...}}``
so a consumer decodes by tag instead of probing for fields.
"""

from __future__ import annotations

import json
from dataclasses import dataclass
from typing import Any

from agent_orchestrator.orchestrator.errors import TaskValidationError

PAYLOAD_VERSION = 1
SUPPORTED_PAYLOAD_VERSIONS = frozenset({1})


@dataclass(slots=True, frozen=True)
class TaggedPayload:
    """One versioned payload keyed by the agent that owns its shape."""

    schema: str
    version: int
    data: dict[str, Any]

    def to_document(self) -> dict[str, Any]:
        return {"schema": self.schema, "version": self.version, "data": self.data}

    def to_json(self) -> str:
        return json.dumps(self.to_document(), ensure_ascii=False, sort_keys=True)


def encode_payload(schema: str, data: dict[str, Any]) -> TaggedPayload:
    """Tag a raw document with its schema and the current version."""

    if not isinstance(data, dict):
        raise TaskValidationError(f"Payload for {schema!r} must be a JSON object.")
    return TaggedPayload(schema=schema, version=PAYLOAD_VERSION, data=data)


def decode_payload(raw: str, *, expected_schema: str | None = None) -> TaggedPayload:
    """Parse a stored payload, rejecting unknown versions or a schema mismatch."""

    document = json.loads(raw)
    if not isinstance(document, dict):
        raise TaskValidationError("Stored payload is not a JSON object.")
    schema = document.get("schema")
    version = document.get("version")
    data = document.get("data")
    if not isinstance(schema, str) or not isinstance(data, dict):
        raise TaskValidationError("Stored payload is missing schema/data.")
    if version not in SUPPORTED_PAYLOAD_VERSIONS:
        raise TaskValidationError(f"Unsupported payload version {version!r} for {schema!r}.")
    if expected_schema is not None and schema != expected_schema:
        raise TaskValidationError(
            f"Payload schema mismatch: expected {expected_schema!r}, got {schema!r}.",
        )
    return TaggedPayload(schema=schema, version=version, data=data)


def require_fields(schema: str, data: dict[str, Any], fields: tuple[str, ...]) -> None:
    """Raise when any required input field is absent or blank."""

    missing = [name for name in fields if _is_blank(data.get(name))]
    if missing:
        raise TaskValidationError(
            f"Missing required input for {schema!r}: {', '.join(missing)}",
        )


def _is_blank(value: object) -> bool:
    if value is None:
        return True
    if isinstance(value, str):
        return not value.strip()
    if isinstance(value, (list, tuple, dict)):
        return len(value) == 0
    return False
