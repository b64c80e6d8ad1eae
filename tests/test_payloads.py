from __future__ import annotations

import json

import allure
import pytest

from agent_orchestrator.orchestrator.errors import TaskValidationError
from agent_orchestrator.orchestrator.models import TaskCreate
from agent_orchestrator.orchestrator.payloads import (
    PAYLOAD_VERSION,
    decode_payload,
    encode_payload,
    require_fields,
)
from agent_orchestrator.orchestrator.repository import TaskRepository

pytestmark = [
    allure.epic("Task Orchestration"),
    allure.feature("Task Payloads"),
]


def test_encoded_payload_is_tagged_with_schema_and_version() -> None:
    tagged = encode_payload("content-summarizer", {"text": "hello"})

    assert json.loads(tagged.to_json()) == {
        "schema": "content-summarizer",
        "version": PAYLOAD_VERSION,
        "data": {"text": "hello"},
    }
    assert decode_payload(tagged.to_json(), expected_schema="content-summarizer") == tagged


def test_decode_rejects_schema_mismatch() -> None:
    raw = encode_payload("content-summarizer", {"text": "x"}).to_json()

    with pytest.raises(TaskValidationError, match="schema mismatch"):
        decode_payload(raw, expected_schema="quality-checker")


@pytest.mark.parametrize(
    "raw",
    [
        "[]",
        json.dumps({"schema": "a", "data": {}}),
        json.dumps({"schema": "a", "version": 99, "data": {}}),
        json.dumps({"version": 1, "data": {}}),
        json.dumps({"schema": "a", "version": 1, "data": "text"}),
    ],
)
def test_decode_rejects_malformed_documents(raw: str) -> None:
    with pytest.raises(TaskValidationError):
        decode_payload(raw)


def test_encode_rejects_non_object() -> None:
    with pytest.raises(TaskValidationError):
        encode_payload("content-summarizer", ["not", "an", "object"])  # type: ignore[arg-type]


def test_require_fields_treats_blank_values_as_missing() -> None:
    with pytest.raises(TaskValidationError, match="claims, text"):
        require_fields("quality-checker", {"claims": [], "text": "   "}, ("claims", "text"))
    require_fields("quality-checker", {"claims": ["c"], "text": "t", "n": 0}, ("claims", "n"))


def test_repository_stores_tagged_documents(task_repository: TaskRepository) -> None:
    task_repository.create_task(
        TaskCreate(agent_id="content-summarizer", owner_id="u1", input={"text": "x"}, task_id="p1"),
    )
    task_repository.mark_started(task_id="p1")
    task_repository.mark_completed(task_id="p1", result={"summary": "s"})

    with task_repository.engine.connect() as connection:
        row = connection.exec_driver_sql(
            "SELECT payload_schema, payload_version, input_json, result_json "
            "FROM agent_tasks WHERE task_id = 'p1'",
        ).one()

    assert row[0] == "content-summarizer"
    assert row[1] == PAYLOAD_VERSION
    assert json.loads(row[2])["data"] == {"text": "x"}
    assert json.loads(row[3]) == {
        "schema": "content-summarizer",
        "version": PAYLOAD_VERSION,
        "data": {"summary": "s"},
    }
