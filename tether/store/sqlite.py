"""SQLite-backed document store."""

from __future__ import annotations

import json
import logging
import sqlite3
import threading
import uuid
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Dict, Iterator, List, Mapping, Optional

from ..errors import NotFound, TransientStoreError
from .base import (
    DocumentRow,
    DocumentStore,
    OrderBy,
    PendingWrite,
    check_version,
    matches,
    sort_key,
)

logger = logging.getLogger("tether.store.sqlite")


class SQLiteDocumentStore(DocumentStore):
    """Stores each document as a JSON blob keyed by (collection, id).

    Filtering and ordering happen in Python after the collection is loaded,
    which keeps the table schema independent of document shape.
    """

    def __init__(self, db_path: Path, timeout: float = 5.0):
        self.db_path = db_path
        self.timeout = timeout
        self._conn: Optional[sqlite3.Connection] = None
        self._lock = threading.RLock()

    def initialize(self) -> "SQLiteDocumentStore":
        """Open the database and create tables."""
        if str(self.db_path) != ":memory:":
            self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self._conn = sqlite3.connect(
            str(self.db_path),
            timeout=self.timeout,
            check_same_thread=False,
            isolation_level=None,
        )
        self._conn.row_factory = sqlite3.Row
        self._create_tables()
        logger.info("Opened document store at %s", self.db_path)
        return self

    def _create_tables(self) -> None:
        with self._cursor() as cursor:
            cursor.execute("""
                CREATE TABLE IF NOT EXISTS documents (
                    collection TEXT NOT NULL,
                    id TEXT NOT NULL,
                    data TEXT NOT NULL,
                    updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
                    PRIMARY KEY (collection, id)
                )
            """)
            cursor.execute("""
                CREATE INDEX IF NOT EXISTS idx_documents_collection ON documents(collection)
            """)

    @contextmanager
    def _cursor(self) -> Iterator[sqlite3.Cursor]:
        if self._conn is None:
            raise RuntimeError("Store not initialized")
        with self._lock:
            try:
                yield self._conn.cursor()
            except sqlite3.OperationalError as exc:
                raise TransientStoreError(f"SQLite store unavailable: {exc}") from exc

    @contextmanager
    def _transaction(self) -> Iterator[sqlite3.Cursor]:
        with self._cursor() as cursor:
            cursor.execute("BEGIN IMMEDIATE")
            try:
                yield cursor
            except BaseException:
                cursor.execute("ROLLBACK")
                raise
            cursor.execute("COMMIT")

    def get(self, collection: str, doc_id: str) -> Optional[Dict[str, Any]]:
        with self._cursor() as cursor:
            return _load(cursor, collection, doc_id)

    def set(
        self,
        collection: str,
        doc_id: str,
        data: Mapping[str, Any],
        *,
        merge: bool = False,
    ) -> None:
        with self._transaction() as cursor:
            _write_set(cursor, collection, doc_id, data, merge)

    def update(
        self,
        collection: str,
        doc_id: str,
        data: Mapping[str, Any],
        *,
        expected_version: Optional[int] = None,
    ) -> None:
        with self._transaction() as cursor:
            _write_update(cursor, collection, doc_id, data, expected_version)

    def delete(self, collection: str, doc_id: str) -> None:
        with self._transaction() as cursor:
            cursor.execute(
                "DELETE FROM documents WHERE collection = ? AND id = ?",
                (collection, doc_id),
            )

    def query(
        self,
        collection: str,
        where: Optional[Mapping[str, Any]] = None,
        *,
        order_by: OrderBy = None,
        descending: bool = False,
        limit: Optional[int] = None,
    ) -> List[DocumentRow]:
        with self._cursor() as cursor:
            cursor.execute(
                "SELECT id, data FROM documents WHERE collection = ?",
                (collection,),
            )
            rows = [(row["id"], json.loads(row["data"])) for row in cursor.fetchall()]

        rows = [row for row in rows if matches(row[1], where)]
        if order_by:
            rows.sort(key=sort_key(order_by), reverse=descending)
        if limit is not None:
            rows = rows[:limit]
        return rows

    def commit_batch(self, writes: List[PendingWrite]) -> None:
        with self._transaction() as cursor:
            for write in writes:
                if write.kind == "set":
                    _write_set(cursor, write.collection, write.doc_id, write.data, write.merge)
                elif write.kind == "update":
                    _write_update(cursor, write.collection, write.doc_id, write.data)
                else:
                    cursor.execute(
                        "DELETE FROM documents WHERE collection = ? AND id = ?",
                        (write.collection, write.doc_id),
                    )
        logger.debug("Committed batch of %d write(s)", len(writes))

    def create_id(self) -> str:
        return uuid.uuid4().hex

    def close(self) -> None:
        """Close the database connection."""
        if self._conn:
            self._conn.close()
            self._conn = None


def _load(cursor: sqlite3.Cursor, collection: str, doc_id: str) -> Optional[Dict[str, Any]]:
    cursor.execute(
        "SELECT data FROM documents WHERE collection = ? AND id = ?",
        (collection, doc_id),
    )
    row = cursor.fetchone()
    return json.loads(row["data"]) if row else None


def _store(cursor: sqlite3.Cursor, collection: str, doc_id: str, data: Mapping[str, Any]) -> None:
    cursor.execute("""
        INSERT OR REPLACE INTO documents (collection, id, data, updated_at)
        VALUES (?, ?, ?, CURRENT_TIMESTAMP)
    """, (collection, doc_id, json.dumps(dict(data))))


def _write_set(
    cursor: sqlite3.Cursor,
    collection: str,
    doc_id: str,
    data: Mapping[str, Any],
    merge: bool,
) -> None:
    document = dict(data)
    if merge:
        existing = _load(cursor, collection, doc_id)
        if existing is not None:
            existing.update(document)
            document = existing
    _store(cursor, collection, doc_id, document)


def _write_update(
    cursor: sqlite3.Cursor,
    collection: str,
    doc_id: str,
    data: Mapping[str, Any],
    expected_version: Optional[int] = None,
) -> None:
    existing = _load(cursor, collection, doc_id)
    if existing is None:
        raise NotFound(f"Document '{collection}/{doc_id}' not found")
    check_version(collection, doc_id, existing, expected_version)
    existing.update(dict(data))
    _store(cursor, collection, doc_id, existing)


__all__ = ["SQLiteDocumentStore"]
