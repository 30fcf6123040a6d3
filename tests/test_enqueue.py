"""Tests for enqueue and batch-enqueue validation."""

from __future__ import annotations

import pytest

from tether.errors import InvalidArgument, QueueFull
from tether.sync import (
    ConflictStrategy,
    OperationRequest,
    OperationType,
    SyncEngine,
    SyncSettings,
    SyncStatus,
)
from tether.sync.models import RESERVED_COLLECTIONS
from tether.sync.queue import SYNC_QUEUE_COLLECTION


def _create(collection: str = "notes", **data) -> dict:
    return {"operationType": "CREATE", "collection": collection, "data": data or {"title": "a"}}


def test_enqueue_persists_pending_record(engine, store):
    operation_id = engine.enqueue("u1", _create(title="hello"))

    record = engine.get_operation("u1", operation_id)
    assert record.status is SyncStatus.PENDING
    assert record.retry_count == 0
    assert record.operation_type is OperationType.CREATE
    assert record.conflict_resolution is ConflictStrategy.CLIENT_WINS
    assert record.payload.fields == {"title": "hello"}
    assert record.timestamp

    raw = store.get(SYNC_QUEUE_COLLECTION, operation_id)
    assert raw["user_id"] == "u1"
    assert raw["status"] == "PENDING"


def test_enqueue_accepts_request_objects_and_lowercase_enums(engine):
    operation_id = engine.enqueue(
        "u1",
        OperationRequest(
            operation_type="update",
            collection="notes",
            document_id="n1",
            data={"title": "b"},
            conflict_resolution="merge",
            client_version=4,
        ),
    )

    record = engine.get_operation("u1", operation_id)
    assert record.operation_type is OperationType.UPDATE
    assert record.conflict_resolution is ConflictStrategy.MERGE
    assert record.client_version == 4
    assert record.document_id == "n1"


def test_from_dict_reads_operation_data_alias():
    request = OperationRequest.from_dict(
        {"operationType": "CREATE", "collection": "notes", "operationData": {"title": "x"}}
    )

    assert request.data == {"title": "x"}


@pytest.mark.parametrize(
    "payload",
    [
        {"operationType": "UPSERT", "collection": "notes", "data": {}},
        {"operationType": "CREATE", "collection": "notes", "data": {}, "conflictResolution": "LAST_WINS"},
        {"operationType": "UPDATE", "collection": "notes", "data": {"title": "b"}},
        {"operationType": "DELETE", "collection": "notes"},
        {"operationType": "CREATE", "collection": "", "data": {}},
        {"operationType": "CREATE", "collection": "x" * 101, "data": {}},
        {"operationType": "CREATE", "collection": "notes", "data": "not-a-map"},
        {"operationType": "UPDATE", "collection": "notes", "documentId": "n1", "clientVersion": -1},
        {"operationType": "UPDATE", "collection": "notes", "documentId": "n1", "clientVersion": True},
        {"operationType": "BATCH", "collection": "notes", "data": {}},
        {
            "operationType": "BATCH",
            "collection": "notes",
            "data": {"operations": [{"type": "update", "collection": "notes", "data": {}}]},
        },
    ],
)
def test_enqueue_rejects_invalid_requests(engine, store, payload):
    with pytest.raises(InvalidArgument):
        engine.enqueue("u1", payload)

    assert store.count(SYNC_QUEUE_COLLECTION) == 0


def test_enqueue_requires_user(engine):
    with pytest.raises(InvalidArgument):
        engine.enqueue("", _create())


def test_full_queue_rejects_without_persisting(store):
    engine = SyncEngine(store, SyncSettings(queue_capacity=2))
    engine.enqueue("u1", _create())
    engine.enqueue("u1", _create())

    with pytest.raises(QueueFull) as excinfo:
        engine.enqueue("u1", _create())

    assert excinfo.value.code == "sync-queue-full"
    assert store.count(SYNC_QUEUE_COLLECTION) == 2
    # Capacity is per user.
    engine.enqueue("u2", _create())


def test_completed_operations_free_queue_capacity(store):
    engine = SyncEngine(store, SyncSettings(queue_capacity=1))
    engine.enqueue("u1", _create())
    engine.process("u1")

    engine.enqueue("u1", _create())

    assert engine.status("u1").pending == 1


def test_batch_enqueue_persists_all_and_records_device(engine):
    operation_ids = engine.batch_enqueue(
        "u1",
        [_create(), _create(), {"operationType": "DELETE", "collection": "notes", "documentId": "n9"}],
        "device-1",
    )

    assert len(operation_ids) == 3
    records = engine.list_operations("u1")
    assert [record.id for record in records] == operation_ids
    assert all(record.device_id == "device-1" for record in records)

    state = engine.sync_state("u1")
    assert state.device_id == "device-1"
    assert state.pending_operations == 3
    assert state.last_sync_timestamp is not None


def test_batch_enqueue_is_all_or_nothing(engine, store):
    with pytest.raises(InvalidArgument):
        engine.batch_enqueue("u1", [_create(), {"operationType": "NOPE", "collection": "notes"}], "d1")

    assert store.count(SYNC_QUEUE_COLLECTION) == 0


@pytest.mark.parametrize("device_id", [None, "", "d" * 201])
def test_batch_enqueue_validates_device_id(engine, device_id):
    with pytest.raises(InvalidArgument):
        engine.batch_enqueue("u1", [_create()], device_id)


def test_batch_enqueue_validates_size(store):
    engine = SyncEngine(store, SyncSettings(max_batch_enqueue=2))

    with pytest.raises(InvalidArgument):
        engine.batch_enqueue("u1", [], "d1")
    with pytest.raises(InvalidArgument):
        engine.batch_enqueue("u1", [_create(), _create(), _create()], "d1")


def test_batch_enqueue_respects_capacity(store):
    engine = SyncEngine(store, SyncSettings(queue_capacity=3))
    engine.batch_enqueue("u1", [_create(), _create()], "d1")

    with pytest.raises(QueueFull):
        engine.batch_enqueue("u1", [_create(), _create()], "d1")

    assert store.count(SYNC_QUEUE_COLLECTION) == 2


def test_clear_queue_drops_only_pending(engine):
    engine.enqueue("u1", {"operationType": "UPDATE", "collection": "missing", "documentId": "x", "data": {}})
    engine.process("u1")
    engine.enqueue("u1", _create())
    engine.enqueue("u1", _create())

    removed = engine.clear_queue("u1")

    assert removed == 2
    remaining = engine.list_operations("u1")
    assert [record.status for record in remaining] == [SyncStatus.FAILED]
    assert engine.sync_state("u1").pending_operations == 0


def test_list_operations_filters_by_status(engine):
    engine.enqueue("u1", _create())
    engine.enqueue("u2", _create())

    assert len(engine.list_operations("u1", "pending")) == 1
    assert engine.list_operations("u1", "COMPLETED") == []
    with pytest.raises(InvalidArgument):
        engine.list_operations("u1", "DONE")


@pytest.mark.parametrize("collection", sorted(RESERVED_COLLECTIONS))
def test_enqueue_rejects_engine_collections(engine, store, collection):
    victim = engine.enqueue("alice", _create())

    with pytest.raises(InvalidArgument, match="reserved"):
        engine.enqueue(
            "mallory",
            {"operationType": "DELETE", "collection": collection, "documentId": victim},
        )
    with pytest.raises(InvalidArgument, match="reserved"):
        engine.enqueue(
            "mallory",
            {
                "operationType": "UPDATE",
                "collection": collection,
                "documentId": victim,
                "data": {"status": "COMPLETED"},
            },
        )

    assert store.count(SYNC_QUEUE_COLLECTION) == 1
    assert engine.get_operation("alice", victim).status is SyncStatus.PENDING


@pytest.mark.parametrize("collection", sorted(RESERVED_COLLECTIONS))
def test_batch_sub_operations_cannot_target_engine_collections(engine, store, collection):
    batch = {
        "operationType": "BATCH",
        "collection": "notes",
        "data": {
            "operations": [
                {"type": "create", "collection": "notes", "data": {"title": "ok"}},
                {"type": "delete", "collection": collection, "documentId": "x"},
            ]
        },
    }

    with pytest.raises(InvalidArgument, match="reserved"):
        engine.enqueue("mallory", batch)
    with pytest.raises(InvalidArgument, match="reserved"):
        engine.batch_enqueue("mallory", [_create(), batch], "d1")

    assert store.count(SYNC_QUEUE_COLLECTION) == 0
