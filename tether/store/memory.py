"""In-process document store, used by tests and the ``memory`` backend."""

from __future__ import annotations

import logging
import threading
import uuid
from copy import deepcopy
from typing import Any, Dict, List, Mapping, Optional

from ..errors import NotFound
from .base import (
    DocumentRow,
    DocumentStore,
    OrderBy,
    PendingWrite,
    check_version,
    matches,
    sort_key,
)

logger = logging.getLogger("tether.store.memory")

Collections = Dict[str, Dict[str, Dict[str, Any]]]


class MemoryDocumentStore(DocumentStore):
    """Dictionary-backed store with all-or-nothing batch commits."""

    def __init__(self) -> None:
        self._collections: Collections = {}
        # Guards single calls and batch commits only; never held by callers.
        self._lock = threading.RLock()

    def get(self, collection: str, doc_id: str) -> Optional[Dict[str, Any]]:
        with self._lock:
            document = self._collections.get(collection, {}).get(doc_id)
            return deepcopy(document) if document is not None else None

    def set(
        self,
        collection: str,
        doc_id: str,
        data: Mapping[str, Any],
        *,
        merge: bool = False,
    ) -> None:
        with self._lock:
            _apply_set(self._collections, collection, doc_id, data, merge)

    def update(
        self,
        collection: str,
        doc_id: str,
        data: Mapping[str, Any],
        *,
        expected_version: Optional[int] = None,
    ) -> None:
        with self._lock:
            _apply_update(self._collections, collection, doc_id, data, expected_version)

    def delete(self, collection: str, doc_id: str) -> None:
        with self._lock:
            self._collections.get(collection, {}).pop(doc_id, None)

    def query(
        self,
        collection: str,
        where: Optional[Mapping[str, Any]] = None,
        *,
        order_by: OrderBy = None,
        descending: bool = False,
        limit: Optional[int] = None,
    ) -> List[DocumentRow]:
        with self._lock:
            rows = [
                (doc_id, deepcopy(document))
                for doc_id, document in self._collections.get(collection, {}).items()
                if matches(document, where)
            ]
        if order_by:
            rows.sort(key=sort_key(order_by), reverse=descending)
        if limit is not None:
            rows = rows[:limit]
        return rows

    def commit_batch(self, writes: List[PendingWrite]) -> None:
        with self._lock:
            staged = deepcopy(self._collections)
            for write in writes:
                if write.kind == "set":
                    _apply_set(staged, write.collection, write.doc_id, write.data, write.merge)
                elif write.kind == "update":
                    _apply_update(staged, write.collection, write.doc_id, write.data)
                else:
                    staged.get(write.collection, {}).pop(write.doc_id, None)
            self._collections = staged
        logger.debug("Committed batch of %d write(s)", len(writes))

    def create_id(self) -> str:
        return uuid.uuid4().hex


def _apply_set(
    collections: Collections,
    collection: str,
    doc_id: str,
    data: Mapping[str, Any],
    merge: bool,
) -> None:
    documents = collections.setdefault(collection, {})
    if merge and doc_id in documents:
        documents[doc_id].update(deepcopy(dict(data)))
    else:
        documents[doc_id] = deepcopy(dict(data))


def _apply_update(
    collections: Collections,
    collection: str,
    doc_id: str,
    data: Mapping[str, Any],
    expected_version: Optional[int] = None,
) -> None:
    documents = collections.get(collection, {})
    if doc_id not in documents:
        raise NotFound(f"Document '{collection}/{doc_id}' not found")
    check_version(collection, doc_id, documents[doc_id], expected_version)
    documents[doc_id].update(deepcopy(dict(data)))


__all__ = ["MemoryDocumentStore"]
