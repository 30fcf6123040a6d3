"""Behaviour shared by every document store backend."""

from __future__ import annotations

from pathlib import Path

import pytest

from tether.errors import NotFound, VersionConflict
from tether.store import MemoryDocumentStore, SQLiteDocumentStore, open_store


@pytest.fixture(params=["memory", "sqlite"])
def doc_store(request, tmp_path: Path):
    if request.param == "memory":
        yield MemoryDocumentStore()
        return
    store = SQLiteDocumentStore(tmp_path / "state" / "documents.db").initialize()
    yield store
    store.close()


def test_get_returns_a_copy(doc_store):
    doc_store.set("notes", "n1", {"title": "a", "tags": ["x"]})

    document = doc_store.get("notes", "n1")
    document["tags"].append("y")

    assert doc_store.get("notes", "n1") == {"title": "a", "tags": ["x"]}
    assert doc_store.get("notes", "missing") is None


def test_set_with_merge_overlays_fields(doc_store):
    doc_store.set("notes", "n1", {"title": "a", "body": "b"})
    doc_store.set("notes", "n1", {"title": "c"}, merge=True)
    assert doc_store.get("notes", "n1") == {"title": "c", "body": "b"}

    doc_store.set("notes", "n1", {"title": "d"})
    assert doc_store.get("notes", "n1") == {"title": "d"}


def test_update_requires_existing_document(doc_store):
    with pytest.raises(NotFound):
        doc_store.update("notes", "missing", {"title": "a"})


def test_update_with_expected_version_is_compare_and_set(doc_store):
    doc_store.set("notes", "n1", {"title": "a", "version": 2})

    with pytest.raises(VersionConflict) as excinfo:
        doc_store.update("notes", "n1", {"title": "b", "version": 3}, expected_version=1)

    assert excinfo.value.details["live_version"] == 2
    assert doc_store.get("notes", "n1") == {"title": "a", "version": 2}

    doc_store.update("notes", "n1", {"title": "b", "version": 3}, expected_version=2)
    assert doc_store.get("notes", "n1") == {"title": "b", "version": 3}


def test_delete_missing_document_is_noop(doc_store):
    doc_store.delete("notes", "missing")
    doc_store.set("notes", "n1", {"title": "a"})
    doc_store.delete("notes", "n1")

    assert not doc_store.exists("notes", "n1")


def test_query_filters_orders_and_limits(doc_store):
    doc_store.set("ops", "a", {"user_id": "u1", "timestamp": "2024-01-02", "sequence": 1})
    doc_store.set("ops", "b", {"user_id": "u1", "timestamp": "2024-01-01", "sequence": 2})
    doc_store.set("ops", "c", {"user_id": "u1", "timestamp": "2024-01-01", "sequence": 1})
    doc_store.set("ops", "d", {"user_id": "u2", "timestamp": "2024-01-01", "sequence": 0})

    rows = doc_store.query("ops", {"user_id": "u1"}, order_by=("timestamp", "sequence"))
    assert [doc_id for doc_id, _ in rows] == ["c", "b", "a"]

    rows = doc_store.query("ops", {"user_id": "u1"}, order_by="timestamp", descending=True, limit=1)
    assert [doc_id for doc_id, _ in rows] == ["a"]

    assert doc_store.count("ops", {"user_id": "u2"}) == 1
    assert doc_store.count("ops") == 4


def test_batch_commits_all_writes_together(doc_store):
    doc_store.set("notes", "keep", {"title": "old"})
    doc_store.set("notes", "drop", {"title": "bye"})

    batch = doc_store.batch()
    batch.set("notes", "new", {"title": "hi"})
    batch.update("notes", "keep", {"title": "new"})
    batch.delete("notes", "drop")
    batch.commit()

    assert doc_store.get("notes", "new") == {"title": "hi"}
    assert doc_store.get("notes", "keep") == {"title": "new"}
    assert doc_store.get("notes", "drop") is None


def test_failed_batch_applies_nothing(doc_store):
    doc_store.set("notes", "keep", {"title": "old"})

    batch = doc_store.batch()
    batch.set("notes", "new", {"title": "hi"})
    batch.update("notes", "keep", {"title": "changed"})
    batch.update("notes", "missing", {"title": "x"})

    with pytest.raises(NotFound):
        batch.commit()

    assert doc_store.get("notes", "new") is None
    assert doc_store.get("notes", "keep") == {"title": "old"}


def test_batch_cannot_be_committed_twice(doc_store):
    batch = doc_store.batch().set("notes", "n1", {"title": "a"})
    batch.commit()

    with pytest.raises(RuntimeError):
        batch.commit()


def test_sqlite_store_persists_across_connections(tmp_path: Path):
    path = tmp_path / "tether.db"
    first = SQLiteDocumentStore(path).initialize()
    first.set("notes", "n1", {"title": "a", "version": 1})
    first.close()

    second = SQLiteDocumentStore(path).initialize()
    try:
        assert second.get("notes", "n1") == {"title": "a", "version": 1}
    finally:
        second.close()


def test_sqlite_store_requires_initialize(tmp_path: Path):
    store = SQLiteDocumentStore(tmp_path / "tether.db")

    with pytest.raises(RuntimeError):
        store.get("notes", "n1")


def test_open_store_selects_backend(tmp_path: Path):
    assert isinstance(open_store({"store": {"backend": "memory"}}, tmp_path), MemoryDocumentStore)

    store = open_store({"store": {"backend": "sqlite", "path": "state/x.db"}}, tmp_path)
    try:
        assert isinstance(store, SQLiteDocumentStore)
        assert store.db_path == tmp_path / "state" / "x.db"
        assert store.db_path.exists()
    finally:
        store.close()

    with pytest.raises(ValueError):
        open_store({"store": {"backend": "redis"}}, tmp_path)
