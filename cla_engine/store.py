"""
Document store contract used by every engine component.

The engine never owns storage; it talks to a remote document store
through the small ``DocumentStore`` protocol below. ``InMemoryDocumentStore``
is the reference implementation used by the CLI and the test suite.
"""

from __future__ import annotations

import copy
import threading
import uuid
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Callable, Iterable, Optional, Protocol, Sequence

import structlog

from cla_engine.errors import (
    DocumentExistsError,
    DocumentNotFoundError,
    ImmutableDocumentError,
    MissingIndexError,
)

logger = structlog.get_logger(__name__)


class _ServerTimestamp:
    def __repr__(self) -> str:
        return "SERVER_TIMESTAMP"


# Placeholder replaced by the store's own clock when a document is written.
SERVER_TIMESTAMP = _ServerTimestamp()


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class Filter:
    """A single ``field op value`` query condition."""

    field: str
    op: str
    value: Any

    def matches(self, doc: dict[str, Any]) -> bool:
        found, actual = _lookup(doc, self.field)
        if self.op == "==":
            return found and actual == self.value
        if self.op == "!=":
            return not found or actual != self.value
        if self.op == "in":
            return found and actual in self.value
        if not found or actual is None:
            return False
        try:
            if self.op == "<":
                return actual < self.value
            if self.op == "<=":
                return actual <= self.value
            if self.op == ">":
                return actual > self.value
            if self.op == ">=":
                return actual >= self.value
        except TypeError:
            return False
        raise ValueError(f"Unsupported filter operator: {self.op}")


def where(field: str, op: str, value: Any) -> Filter:
    return Filter(field, op, value)


def _lookup(doc: dict[str, Any], path: str) -> tuple[bool, Any]:
    """Resolve a dotted field path such as ``metadata.linked_task_id``."""
    value: Any = doc
    for part in path.split("."):
        if not isinstance(value, dict) or part not in value:
            return False, None
        value = value[part]
    return True, value


class DocumentStore(Protocol):
    def add(self, collection: str, data: dict[str, Any]) -> str: ...

    def create(self, collection: str, doc_id: str, data: dict[str, Any]) -> None: ...

    def get(self, collection: str, doc_id: str) -> Optional[dict[str, Any]]: ...

    def update(
        self, collection: str, doc_id: str, changes: dict[str, Any]
    ) -> None: ...

    def delete(self, collection: str, doc_id: str) -> None: ...

    def query(
        self,
        collection: str,
        filters: Sequence[Filter] = (),
        order_by: Optional[str] = None,
        descending: bool = False,
        limit: Optional[int] = None,
    ) -> list[dict[str, Any]]: ...


class InMemoryDocumentStore:
    """
    Thread-safe in-process document store.

    Documents are deep-copied on the way in and out, so callers never
    share mutable state with the store. Every returned document carries
    its id under the ``id`` key.

    ``composite_indexes`` emulates a store that needs declared indexes
    for ordered queries: when it is not None, an ordered query that also
    filters on other fields must match a declared
    ``(collection, *filter_fields, order_by)`` tuple or it raises
    ``MissingIndexError``.
    """

    def __init__(
        self,
        clock: Optional[Callable[[], datetime]] = None,
        composite_indexes: Optional[Iterable[tuple[str, ...]]] = None,
    ) -> None:
        self._clock = clock or utcnow
        self._collections: dict[str, dict[str, dict[str, Any]]] = {}
        self._lock = threading.RLock()
        self._indexes: Optional[set[tuple[str, ...]]] = (
            set(composite_indexes) if composite_indexes is not None else None
        )

    def _stamp(self, data: dict[str, Any]) -> dict[str, Any]:
        now = self._clock()
        return {
            k: (now if v is SERVER_TIMESTAMP else copy.deepcopy(v))
            for k, v in data.items()
            if k != "id"
        }

    def add(self, collection: str, data: dict[str, Any]) -> str:
        doc_id = uuid.uuid4().hex
        with self._lock:
            self._collections.setdefault(collection, {})[doc_id] = self._stamp(
                data
            )
        return doc_id

    def create(self, collection: str, doc_id: str, data: dict[str, Any]) -> None:
        with self._lock:
            docs = self._collections.setdefault(collection, {})
            if doc_id in docs:
                raise DocumentExistsError(collection, doc_id)
            docs[doc_id] = self._stamp(data)

    def set(self, collection: str, doc_id: str, data: dict[str, Any]) -> None:
        """Write a document unconditionally (seeding profiles, fixtures)."""
        with self._lock:
            self._collections.setdefault(collection, {})[doc_id] = self._stamp(
                data
            )

    def get(self, collection: str, doc_id: str) -> Optional[dict[str, Any]]:
        with self._lock:
            doc = self._collections.get(collection, {}).get(doc_id)
            if doc is None:
                return None
            return {"id": doc_id, **copy.deepcopy(doc)}

    def update(self, collection: str, doc_id: str, changes: dict[str, Any]) -> None:
        with self._lock:
            doc = self._collections.get(collection, {}).get(doc_id)
            if doc is None:
                raise DocumentNotFoundError(collection, doc_id)
            if doc.get("immutable") is True:
                raise ImmutableDocumentError(collection, doc_id)
            doc.update(self._stamp(changes))

    def delete(self, collection: str, doc_id: str) -> None:
        with self._lock:
            doc = self._collections.get(collection, {}).get(doc_id)
            if doc is None:
                return
            if doc.get("immutable") is True:
                raise ImmutableDocumentError(collection, doc_id)
            del self._collections[collection][doc_id]

    def query(
        self,
        collection: str,
        filters: Sequence[Filter] = (),
        order_by: Optional[str] = None,
        descending: bool = False,
        limit: Optional[int] = None,
    ) -> list[dict[str, Any]]:
        if order_by is not None:
            self._check_index(collection, filters, order_by)

        with self._lock:
            docs = [
                {"id": doc_id, **copy.deepcopy(doc)}
                for doc_id, doc in self._collections.get(collection, {}).items()
            ]

        results = [d for d in docs if all(f.matches(d) for f in filters)]
        if order_by is not None:
            results = sort_documents(results, order_by, descending)
        if limit is not None:
            results = results[:limit]
        return results

    def _check_index(
        self, collection: str, filters: Sequence[Filter], order_by: str
    ) -> None:
        if self._indexes is None:
            return
        filter_fields = tuple(sorted({f.field for f in filters} - {order_by}))
        if not filter_fields:
            return
        key = (collection, *filter_fields, order_by)
        if key not in self._indexes:
            raise MissingIndexError(collection, (*filter_fields, order_by))


def sort_documents(
    docs: list[dict[str, Any]], order_by: str, descending: bool = False
) -> list[dict[str, Any]]:
    """
    Sort documents by a field; documents missing the field sort last.

    Ties keep write order, reversed when sorting descending.
    """
    present = [d for d in docs if _lookup(d, order_by)[1] is not None]
    absent = [d for d in docs if _lookup(d, order_by)[1] is None]
    if descending:
        present.reverse()
    present.sort(key=lambda d: _lookup(d, order_by)[1], reverse=descending)
    return present + absent


def query_with_fallback(
    store: DocumentStore,
    collection: str,
    filters: Sequence[Filter],
    order_by: str,
    descending: bool = False,
    limit: Optional[int] = None,
) -> list[dict[str, Any]]:
    """
    Run an ordered query, falling back to an unordered query plus a
    client-side sort when the store lacks the composite index.
    """
    try:
        return store.query(
            collection,
            filters,
            order_by=order_by,
            descending=descending,
            limit=limit,
        )
    except MissingIndexError as exc:
        logger.warning(
            "composite_index_missing",
            collection=collection,
            fields=list(exc.fields),
        )
        docs = sort_documents(store.query(collection, filters), order_by, descending)
        return docs[:limit] if limit is not None else docs
