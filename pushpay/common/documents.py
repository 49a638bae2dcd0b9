"""Durable document store used as the system of record.

Documents are JSON objects addressed by `(collection, doc_id)`. Two backends
share the same surface: `SqlDocumentStore` (one SQLAlchemy table, JSONB on
Postgres) and `InMemoryDocumentStore` for local runs and tests.

Writes support Firestore-style shallow merge. A `WriteBatch` commits a group
of independent writes together; nothing else is transactional.
"""

import copy
import operator
from datetime import datetime, timezone
from typing import Any, Callable, Protocol
from uuid import uuid4

from sqlalchemy import select

_OPS: dict[str, Callable[[Any, Any], bool]] = {
    "==": operator.eq,
    "!=": operator.ne,
    "<": operator.lt,
    "<=": operator.le,
    ">": operator.gt,
    ">=": operator.ge,
}

Write = tuple[str, str, dict[str, Any], bool]


def utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def without_none(data: dict[str, Any]) -> dict[str, Any]:
    """Drop keys whose value is None so merges never blank out stored fields."""

    return {key: value for key, value in data.items() if value is not None}


class DocumentStore(Protocol):
    def get(self, collection: str, doc_id: str) -> dict[str, Any] | None: ...

    def set(self, collection: str, doc_id: str, data: dict[str, Any], merge: bool = False) -> None: ...

    def add(self, collection: str, data: dict[str, Any]) -> str: ...

    def increment(
        self,
        collection: str,
        doc_id: str,
        deltas: dict[str, float],
        extra: dict[str, Any] | None = None,
    ) -> None: ...

    def batch(self) -> "WriteBatch": ...

    def commit_writes(self, writes: list[Write]) -> None: ...

    def query(
        self,
        collection: str,
        field: str,
        op: str,
        value: Any,
        limit: int | None = None,
    ) -> list[tuple[str, dict[str, Any]]]: ...


class WriteBatch:
    """Collects `set` calls and applies them in one commit."""

    def __init__(self, store: DocumentStore) -> None:
        self._store = store
        self._writes: list[Write] = []

    def set(self, collection: str, doc_id: str, data: dict[str, Any], merge: bool = False) -> "WriteBatch":
        self._writes.append((collection, doc_id, dict(data), merge))
        return self

    def commit(self) -> None:
        writes, self._writes = self._writes, []
        if writes:
            self._store.commit_writes(writes)


def _merged(existing: dict[str, Any] | None, data: dict[str, Any], merge: bool) -> dict[str, Any]:
    if merge and existing is not None:
        return {**existing, **data}
    return dict(data)


def _incremented(existing: dict[str, Any] | None, deltas: dict[str, float], extra: dict[str, Any] | None) -> dict:
    data = dict(existing or {})
    for field, delta in deltas.items():
        data[field] = (data.get(field) or 0) + delta
    data.update(extra or {})
    return data


class InMemoryDocumentStore:
    """Process-local document store with read/write/query counters."""

    def __init__(self) -> None:
        self._docs: dict[tuple[str, str], dict[str, Any]] = {}
        self.reads = 0
        self.writes = 0
        self.queries = 0

    def get(self, collection: str, doc_id: str) -> dict[str, Any] | None:
        self.reads += 1
        doc = self._docs.get((collection, doc_id))
        return copy.deepcopy(doc) if doc is not None else None

    def set(self, collection: str, doc_id: str, data: dict[str, Any], merge: bool = False) -> None:
        self.commit_writes([(collection, doc_id, data, merge)])

    def add(self, collection: str, data: dict[str, Any]) -> str:
        doc_id = str(uuid4())
        self.set(collection, doc_id, data)
        return doc_id

    def increment(
        self,
        collection: str,
        doc_id: str,
        deltas: dict[str, float],
        extra: dict[str, Any] | None = None,
    ) -> None:
        self.writes += 1
        key = (collection, doc_id)
        self._docs[key] = _incremented(self._docs.get(key), deltas, extra)

    def batch(self) -> WriteBatch:
        return WriteBatch(self)

    def commit_writes(self, writes: list[Write]) -> None:
        for collection, doc_id, data, merge in writes:
            self.writes += 1
            key = (collection, doc_id)
            self._docs[key] = _merged(self._docs.get(key), copy.deepcopy(data), merge)

    def query(
        self,
        collection: str,
        field: str,
        op: str,
        value: Any,
        limit: int | None = None,
    ) -> list[tuple[str, dict[str, Any]]]:
        self.queries += 1
        compare = _OPS[op]
        matches = []
        for (doc_collection, doc_id), data in self._docs.items():
            if doc_collection != collection or field not in data:
                continue
            try:
                hit = compare(data[field], value)
            except TypeError:
                hit = False
            if hit:
                matches.append((doc_id, copy.deepcopy(data)))
                if limit is not None and len(matches) >= limit:
                    break
        return matches

    def collection(self, name: str) -> dict[str, dict[str, Any]]:
        """All documents of one collection, keyed by id (diagnostics and tests)."""

        return {doc_id: copy.deepcopy(data) for (coll, doc_id), data in self._docs.items() if coll == name}


class SqlDocumentStore:
    """Document store over one SQLAlchemy model with `collection/doc_id/data` columns.

    Numbers and booleans are compared by value; anything else is compared as
    text, which orders ids, status strings and ISO-8601 timestamps correctly.
    """

    def __init__(self, session_factory, model) -> None:
        self.session_factory = session_factory
        self.model = model

    def get(self, collection: str, doc_id: str) -> dict[str, Any] | None:
        with self.session_factory() as db:
            row = db.get(self.model, (collection, doc_id))
            return dict(row.data) if row is not None else None

    def set(self, collection: str, doc_id: str, data: dict[str, Any], merge: bool = False) -> None:
        self.commit_writes([(collection, doc_id, data, merge)])

    def add(self, collection: str, data: dict[str, Any]) -> str:
        doc_id = str(uuid4())
        self.set(collection, doc_id, data)
        return doc_id

    def _apply(self, db, row, collection: str, doc_id: str, data: dict[str, Any]) -> None:
        if row is None:
            db.add(self.model(collection=collection, doc_id=doc_id, data=data))
        else:
            # Reassign so the JSON column is flagged dirty.
            row.data = data
            row.updated_at = datetime.now(timezone.utc)
        db.flush()

    def increment(
        self,
        collection: str,
        doc_id: str,
        deltas: dict[str, float],
        extra: dict[str, Any] | None = None,
    ) -> None:
        with self.session_factory() as db:
            row = db.get(self.model, (collection, doc_id), with_for_update=True)
            existing = dict(row.data) if row is not None else None
            self._apply(db, row, collection, doc_id, _incremented(existing, deltas, extra))
            db.commit()

    def batch(self) -> WriteBatch:
        return WriteBatch(self)

    def commit_writes(self, writes: list[Write]) -> None:
        with self.session_factory() as db:
            for collection, doc_id, data, merge in writes:
                row = db.get(self.model, (collection, doc_id), with_for_update=True)
                existing = dict(row.data) if row is not None else None
                self._apply(db, row, collection, doc_id, _merged(existing, data, merge))
            db.commit()

    def query(
        self,
        collection: str,
        field: str,
        op: str,
        value: Any,
        limit: int | None = None,
    ) -> list[tuple[str, dict[str, Any]]]:
        compare = _OPS[op]
        element = self.model.data[field]
        if isinstance(value, bool):
            condition = compare(element.as_boolean(), value)
        elif isinstance(value, (int, float)):
            condition = compare(element.as_float(), float(value))
        else:
            condition = compare(element.as_string(), str(value))
        stmt = (
            select(self.model)
            .where(self.model.collection == collection, condition)
            .order_by(self.model.created_at)
        )
        if limit is not None:
            stmt = stmt.limit(limit)
        with self.session_factory() as db:
            rows = db.execute(stmt).scalars().all()
            return [(row.doc_id, dict(row.data)) for row in rows]
