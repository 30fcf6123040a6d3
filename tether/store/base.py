"""Abstract document store used by the sync engine."""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Dict, List, Literal, Mapping, Optional, Sequence, Tuple, Union

from ..errors import VersionConflict

WriteKind = Literal["set", "update", "delete"]
DocumentRow = Tuple[str, Dict[str, Any]]
OrderBy = Union[str, Sequence[str], None]


@dataclass
class PendingWrite:
    """A single write staged inside a WriteBatch."""

    kind: WriteKind
    collection: str
    doc_id: str
    data: Dict[str, Any] = field(default_factory=dict)
    merge: bool = False


class WriteBatch:
    """Collects writes and hands them to the store in one atomic commit."""

    def __init__(self, store: "DocumentStore") -> None:
        self._store = store
        self._writes: List[PendingWrite] = []
        self._committed = False

    def set(
        self,
        collection: str,
        doc_id: str,
        data: Mapping[str, Any],
        *,
        merge: bool = False,
    ) -> "WriteBatch":
        self._writes.append(PendingWrite("set", collection, doc_id, dict(data), merge))
        return self

    def update(self, collection: str, doc_id: str, data: Mapping[str, Any]) -> "WriteBatch":
        self._writes.append(PendingWrite("update", collection, doc_id, dict(data)))
        return self

    def delete(self, collection: str, doc_id: str) -> "WriteBatch":
        self._writes.append(PendingWrite("delete", collection, doc_id))
        return self

    @property
    def writes(self) -> List[PendingWrite]:
        return list(self._writes)

    def __len__(self) -> int:
        return len(self._writes)

    def commit(self) -> None:
        if self._committed:
            raise RuntimeError("WriteBatch already committed")
        self._committed = True
        if self._writes:
            self._store.commit_batch(self._writes)


class DocumentStore(ABC):
    """Document collection keyed by (collection, id).

    Documents are plain mappings. The engine keeps an integer ``version`` field
    on application documents; the store itself attaches no meaning to it.
    """

    @abstractmethod
    def get(self, collection: str, doc_id: str) -> Optional[Dict[str, Any]]:
        """Return a copy of the document, or None when it does not exist."""

    @abstractmethod
    def set(
        self,
        collection: str,
        doc_id: str,
        data: Mapping[str, Any],
        *,
        merge: bool = False,
    ) -> None:
        """Create or replace a document; with ``merge`` overlay onto the existing one."""

    @abstractmethod
    def update(
        self,
        collection: str,
        doc_id: str,
        data: Mapping[str, Any],
        *,
        expected_version: Optional[int] = None,
    ) -> None:
        """Overlay fields onto an existing document.

        Raises NotFound if absent. With ``expected_version`` the write is a
        compare-and-set on the document's ``version`` field and raises
        VersionConflict when another writer got there first.
        """

    @abstractmethod
    def delete(self, collection: str, doc_id: str) -> None:
        """Remove a document. Deleting a missing document is a no-op."""

    @abstractmethod
    def query(
        self,
        collection: str,
        where: Optional[Mapping[str, Any]] = None,
        *,
        order_by: OrderBy = None,
        descending: bool = False,
        limit: Optional[int] = None,
    ) -> List[DocumentRow]:
        """Return (id, document) pairs matching all equality filters."""

    @abstractmethod
    def commit_batch(self, writes: List[PendingWrite]) -> None:
        """Apply every write or none of them."""

    @abstractmethod
    def create_id(self) -> str:
        """Return a fresh document id."""

    def count(self, collection: str, where: Optional[Mapping[str, Any]] = None) -> int:
        return len(self.query(collection, where))

    def exists(self, collection: str, doc_id: str) -> bool:
        return self.get(collection, doc_id) is not None

    def batch(self) -> WriteBatch:
        return WriteBatch(self)

    def close(self) -> None:
        """Release any resources held by the store."""


def matches(document: Mapping[str, Any], where: Optional[Mapping[str, Any]]) -> bool:
    """Equality filter shared by the in-process store implementations."""

    if not where:
        return True
    return all(document.get(key) == value for key, value in where.items())


def check_version(
    collection: str,
    doc_id: str,
    document: Mapping[str, Any],
    expected_version: Optional[int],
) -> None:
    """Compare-and-set guard used by update implementations."""

    if expected_version is None:
        return
    live = int(document.get("version") or 0)
    if live != expected_version:
        raise VersionConflict(
            f"Document '{collection}/{doc_id}' is at version {live}, expected {expected_version}",
            live_version=live,
        )


def sort_key(order_by: OrderBy):
    """Sort helper over one or more fields; documents missing a field sort first."""

    fields = [order_by] if isinstance(order_by, str) else list(order_by or [])

    def _key(row: DocumentRow) -> Tuple[Tuple[int, Any], ...]:
        values = (row[1].get(name) for name in fields)
        return tuple((0, "") if value is None else (1, value) for value in values)

    return _key


__all__ = [
    "DocumentRow",
    "DocumentStore",
    "OrderBy",
    "PendingWrite",
    "WriteBatch",
    "check_version",
    "matches",
    "sort_key",
]
