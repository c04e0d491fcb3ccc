"""
Document store port and its implementations.

The engine reads and writes documents only through DocumentStore:
  get(collection, id)        → document dict with "id", or None
  put(collection, id, data)  → full replace of one document
  list(collection)           → every document of a collection
  new_id(collection)         → a fresh id for an add without one

Writes are per-document; there is no multi-document transaction.

SqlDocumentStore sits on the `documents` table. InMemoryDocumentStore
backs tests and headless use.
"""

import logging
import uuid
from collections.abc import Iterable
from copy import deepcopy
from dataclasses import dataclass, field
from typing import Any, Protocol

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from rostersync.models.core import Document

log = logging.getLogger(__name__)


class DocumentStore(Protocol):
    async def get(self, collection: str, doc_id: str) -> dict[str, Any] | None:
        ...

    async def put(self, collection: str, doc_id: str, data: dict[str, Any]) -> None:
        ...

    async def list(self, collection: str) -> list[dict[str, Any]]:
        ...

    def new_id(self, collection: str) -> str:
        ...


def _as_document(doc_id: str, data: dict[str, Any]) -> dict[str, Any]:
    return {"id": doc_id, **{k: v for k, v in data.items() if k != "id"}}


# ─── In-Memory ────────────────────────────────────────────────

class InMemoryDocumentStore:
    """
    Dict-backed store. Ids from new_id are sequential per collection
    ('people_0001'), so commits against it are reproducible.
    """

    def __init__(self, seed: dict[str, Iterable[dict[str, Any]]] | None = None):
        self._data: dict[str, dict[str, dict[str, Any]]] = {}
        self._counters: dict[str, int] = {}
        self.writes: list[tuple[str, str]] = []
        for collection, docs in (seed or {}).items():
            for doc in docs:
                self._data.setdefault(collection, {})[doc["id"]] = _as_document(doc["id"], doc)

    async def get(self, collection: str, doc_id: str) -> dict[str, Any] | None:
        doc = self._data.get(collection, {}).get(doc_id)
        return deepcopy(doc) if doc is not None else None

    async def put(self, collection: str, doc_id: str, data: dict[str, Any]) -> None:
        self._data.setdefault(collection, {})[doc_id] = _as_document(doc_id, deepcopy(data))
        self.writes.append((collection, doc_id))

    async def list(self, collection: str) -> list[dict[str, Any]]:
        docs = self._data.get(collection, {})
        return [deepcopy(docs[k]) for k in sorted(docs)]

    def new_id(self, collection: str) -> str:
        self._counters[collection] = self._counters.get(collection, 0) + 1
        candidate = f"{collection}_{self._counters[collection]:04d}"
        while candidate in self._data.get(collection, {}):
            self._counters[collection] += 1
            candidate = f"{collection}_{self._counters[collection]:04d}"
        return candidate


# ─── SQL ──────────────────────────────────────────────────────

class SqlDocumentStore:
    """DocumentStore over the `documents` table of one AsyncSession."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def get(self, collection: str, doc_id: str) -> dict[str, Any] | None:
        doc = await self.db.get(Document, (collection, doc_id))
        return _as_document(doc.doc_id, doc.data or {}) if doc else None

    async def put(self, collection: str, doc_id: str, data: dict[str, Any]) -> None:
        payload = {k: v for k, v in data.items() if k != "id"}
        doc = await self.db.get(Document, (collection, doc_id))
        if doc is None:
            self.db.add(Document(collection=collection, doc_id=doc_id, data=payload))
        else:
            # Reassign so the JSON column is flagged dirty
            doc.data = payload
        await self.db.flush()

    async def list(self, collection: str) -> list[dict[str, Any]]:
        result = await self.db.execute(
            select(Document)
            .where(Document.collection == collection)
            .order_by(Document.doc_id)
        )
        return [_as_document(d.doc_id, d.data or {}) for d in result.scalars().all()]

    def new_id(self, collection: str) -> str:
        return uuid.uuid4().hex


# ─── Snapshot ─────────────────────────────────────────────────

@dataclass
class StoreSnapshot:
    """Read-only view of the store that one preview runs against."""
    schedules: list[dict[str, Any]] = field(default_factory=list)
    people: list[dict[str, Any]] = field(default_factory=list)
    rooms: list[dict[str, Any]] = field(default_factory=list)
    terms: list[dict[str, Any]] = field(default_factory=list)

    @property
    def people_by_id(self) -> dict[str, dict[str, Any]]:
        return {p["id"]: p for p in self.people}

    @property
    def room_ids(self) -> set[str]:
        ids = {r["id"] for r in self.rooms}
        ids.update(r["space_key"] for r in self.rooms if r.get("space_key"))
        return ids


async def load_snapshot(store: DocumentStore, term_codes: Iterable[str] | None = None) -> StoreSnapshot:
    """
    Read every collection a preview needs.

    With term_codes, only schedules of those terms are loaded; people
    and rooms are always loaded in full.
    """
    schedules = await store.list("schedules")
    if term_codes is not None:
        wanted = set(term_codes)
        schedules = [s for s in schedules if s.get("term_code") in wanted]
    snapshot = StoreSnapshot(
        schedules=schedules,
        people=await store.list("people"),
        rooms=await store.list("rooms"),
        terms=await store.list("terms"),
    )
    log.debug(
        "Loaded snapshot: %d schedules, %d people, %d rooms",
        len(snapshot.schedules), len(snapshot.people), len(snapshot.rooms),
    )
    return snapshot
