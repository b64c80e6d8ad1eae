"""Namespaced key -> document memory store.

Key conventions:

- ``processed:<scope>``: set of already-processed input ids (``{"members": [...]}``)
- ``config:<owner>:<agent>``: per-user-per-agent configuration
- ``cache:<agent>:<operation>:<id>``: per-agent cached results
- ``workflow:<id>``: workflow state snapshots

The store does not interpret ``data``; only the helpers for a namespace do.
"""

from __future__ import annotations

import json
import logging
from collections.abc import Callable
from datetime import datetime
from pathlib import Path
from typing import Any

from sqlalchemy import delete as sa_delete
from sqlalchemy.exc import IntegrityError
from sqlmodel import Session, col, select

from agent_orchestrator.orchestrator.models import MemoryEntryView
from agent_orchestrator.storage.alembic_runner import upgrade_head
from agent_orchestrator.storage.common import (
    build_sqlite_engine,
    to_db_datetime,
    to_utc_aware_datetime,
    utc_now,
)
from agent_orchestrator.storage.sqlmodel_models import MemoryEntry

logger = logging.getLogger(__name__)

PROCESSED_NAMESPACE = "processed"
CONFIG_NAMESPACE = "config"
CACHE_NAMESPACE = "cache"
WORKFLOW_NAMESPACE = "workflow"
_MEMBERS_FIELD = "members"


def processed_key(scope: str) -> str:
    return f"{PROCESSED_NAMESPACE}:{scope}"


def config_key(owner_id: str, agent_id: str) -> str:
    return f"{CONFIG_NAMESPACE}:{owner_id}:{agent_id}"


def cache_key(agent_id: str, operation: str, item_id: str) -> str:
    return f"{CACHE_NAMESPACE}:{agent_id}:{operation}:{item_id}"


def workflow_key(workflow_id: str) -> str:
    return f"{WORKFLOW_NAMESPACE}:{workflow_id}"


class MemoryRepository:
    """Memory persistence facade backed by SQLModel + SQLite."""

    def __init__(self, db_path: Path, *, sqlite_busy_timeout_ms: int = 5_000) -> None:
        self.db_path = db_path
        self.engine = build_sqlite_engine(
            db_path=db_path,
            busy_timeout_ms=sqlite_busy_timeout_ms,
        )

    def close(self) -> None:
        self.engine.dispose()

    def init_schema(self) -> None:
        upgrade_head(self.db_path)

    def get(self, key: str) -> MemoryEntryView | None:
        with Session(self.engine) as session:
            row = session.exec(select(MemoryEntry).where(MemoryEntry.key == key)).one_or_none()
            return _to_entry_view(row) if row is not None else None

    def put(self, key: str, data: dict[str, Any]) -> MemoryEntryView:
        """Upsert a document; ``created_at`` survives, ``updated_at`` moves."""

        if not key.strip():
            raise ValueError("Memory key must be non-empty.")
        data_json = _dump(data)
        now = utc_now()
        with Session(self.engine) as session:
            row = session.exec(select(MemoryEntry).where(MemoryEntry.key == key)).one_or_none()
            if row is None:
                row = MemoryEntry(key=key, data_json=data_json, created_at=now, updated_at=now)
            else:
                row.data_json = data_json
                row.updated_at = _not_before(now, row.created_at)
            session.add(row)
            try:
                session.commit()
            except IntegrityError:
                # Lost an insert race on a fresh key; apply as an update instead.
                session.rollback()
                row = session.exec(select(MemoryEntry).where(MemoryEntry.key == key)).one()
                row.data_json = data_json
                row.updated_at = _not_before(now, row.created_at)
                session.add(row)
                session.commit()
            session.refresh(row)
            return _to_entry_view(row)

    def update(
        self,
        key: str,
        mutate: Callable[[dict[str, Any] | None], dict[str, Any] | None],
    ) -> MemoryEntryView | None:
        """Read-modify-write one key inside a single write transaction.

        ``mutate`` receives the current document (or ``None``) and returns the
        new document, or ``None`` to leave the entry untouched.
        """

        with Session(self.engine) as session:
            # BEGIN IMMEDIATE takes the SQLite write lock before the read.
            session.connection().exec_driver_sql("BEGIN IMMEDIATE")
            row = session.exec(select(MemoryEntry).where(MemoryEntry.key == key)).one_or_none()
            current = json.loads(row.data_json) if row is not None else None
            updated = mutate(current)
            if updated is None:
                session.rollback()
                return _to_entry_view(row) if row is not None else None
            now = utc_now()
            if row is None:
                row = MemoryEntry(key=key, data_json=_dump(updated), created_at=now, updated_at=now)
            else:
                row.data_json = _dump(updated)
                row.updated_at = _not_before(now, row.created_at)
            session.add(row)
            session.commit()
            session.refresh(row)
            return _to_entry_view(row)

    def scan_by_prefix(self, prefix: str) -> list[MemoryEntryView]:
        """Entries whose key starts with ``prefix``, ordered by key."""

        with Session(self.engine) as session:
            rows = session.exec(
                select(MemoryEntry)
                .where(col(MemoryEntry.key).startswith(prefix, autoescape=True))
                .order_by(col(MemoryEntry.key).asc()),
            ).all()
        return [_to_entry_view(row) for row in rows]

    def delete(self, key: str) -> bool:
        with Session(self.engine) as session:
            result = session.exec(sa_delete(MemoryEntry).where(col(MemoryEntry.key) == key))
            session.commit()
            return bool(result.rowcount)

    def invalidate_prefix(self, prefix: str) -> int:
        """Delete every entry in a namespace slice."""

        if not prefix:
            raise ValueError("Refusing to invalidate an empty prefix.")
        with Session(self.engine) as session:
            result = session.exec(
                sa_delete(MemoryEntry).where(
                    col(MemoryEntry.key).startswith(prefix, autoescape=True),
                ),
            )
            session.commit()
            return int(result.rowcount or 0)

    def delete_older_than(self, cutoff: datetime) -> int:
        """Delete entries not updated since ``cutoff``."""

        with Session(self.engine) as session:
            result = session.exec(
                sa_delete(MemoryEntry).where(
                    col(MemoryEntry.updated_at) < to_db_datetime(cutoff),
                ),
            )
            session.commit()
            return int(result.rowcount or 0)

    def has_member(self, set_key: str, member_id: str) -> bool:
        entry = self.get(set_key)
        if entry is None:
            return False
        return member_id in _members(entry.data)

    def add_member(self, set_key: str, member_id: str) -> bool:
        """Add ``member_id`` to the set; return ``False`` when it was already there.

        An existing member is a no-op: neither ``data`` nor ``updated_at`` changes.
        """

        added = False

        def _mutate(current: dict[str, Any] | None) -> dict[str, Any] | None:
            nonlocal added
            document = dict(current or {})
            members = _members(document)
            if member_id in members:
                return None
            document[_MEMBERS_FIELD] = [*members, member_id]
            added = True
            return document

        self.update(set_key, _mutate)
        return added

    def list_members(self, set_key: str) -> list[str]:
        entry = self.get(set_key)
        return _members(entry.data) if entry is not None else []

    def get_or_compute(
        self,
        key: str,
        compute: Callable[[], dict[str, Any]],
    ) -> dict[str, Any]:
        """Return the cached document or compute, store, and return it."""

        entry = self.get(key)
        if entry is not None:
            logger.debug("Memory cache hit: %s", key)
            return entry.data
        data = compute()
        self.put(key, data)
        return data


def _members(document: dict[str, Any]) -> list[str]:
    raw = document.get(_MEMBERS_FIELD)
    if not isinstance(raw, list):
        return []
    return [str(item) for item in raw]


def _dump(data: dict[str, Any]) -> str:
    if not isinstance(data, dict):
        raise TypeError("Memory data must be a JSON object.")
    return json.dumps(data, ensure_ascii=False, sort_keys=True)


def _not_before(now: datetime, floor: datetime) -> datetime:
    return max(to_db_datetime(now), to_db_datetime(floor))


def _to_entry_view(row: MemoryEntry) -> MemoryEntryView:
    parsed = json.loads(row.data_json)
    return MemoryEntryView(
        key=row.key,
        data=parsed if isinstance(parsed, dict) else {},
        created_at=to_utc_aware_datetime(row.created_at),
        updated_at=to_utc_aware_datetime(row.updated_at),
    )
