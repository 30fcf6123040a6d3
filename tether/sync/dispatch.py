"""Apply a queued operation to the document store."""

from __future__ import annotations

import logging
from typing import Callable, Dict, Optional

from ..errors import InvalidArgument, NotFound, TransientStoreError, VersionConflict
from ..store import DocumentStore
from .conflict import ConflictDetector, document_version
from .models import (
    BatchPayload,
    DocumentPayload,
    OperationRecord,
    OperationType,
    SubOperationType,
    utc_now,
)

logger = logging.getLogger("tether.sync.dispatch")

ApplyHandler = Callable[[OperationRecord], Optional[str]]


class OperationApplier:
    """Dispatches an operation record by type.

    Each handler returns the id of the document it touched (BATCH returns
    None). A version mismatch on UPDATE raises VersionConflict after the
    conflict has been stored.
    """

    def __init__(self, store: DocumentStore, detector: ConflictDetector):
        self.store = store
        self.detector = detector
        self._handlers: Dict[OperationType, ApplyHandler] = {
            OperationType.CREATE: self.apply_create,
            OperationType.UPDATE: self.apply_update,
            OperationType.DELETE: self.apply_delete,
            OperationType.BATCH: self.apply_batch,
        }

    def prepare(self, record: OperationRecord) -> None:
        """Pin a generated id on a CREATE before its claim is persisted."""
        if record.operation_type is OperationType.CREATE and not record.document_id:
            record.document_id = self.store.create_id()

    def apply(self, record: OperationRecord) -> Optional[str]:
        return self._handlers[record.operation_type](record)

    def apply_create(self, record: OperationRecord) -> str:
        self.prepare(record)
        doc_id = record.document_id
        if self.store.exists(record.collection, doc_id):
            # Replayed CREATE after a timeout that actually landed.
            logger.info("CREATE %s/%s already applied; skipping", record.collection, doc_id)
            return doc_id

        fields = _document_fields(record)
        self.store.set(
            record.collection,
            doc_id,
            {
                **fields,
                "created_at": utc_now(),
                "created_by": record.user_id,
                "version": 1,
            },
        )
        return doc_id

    def apply_update(self, record: OperationRecord) -> str:
        doc_id = _require_document_id(record)
        current = self.store.get(record.collection, doc_id)
        if current is None:
            raise NotFound("Document not found")

        fields = _document_fields(record)
        if record.client_version is not None:
            detection = self.detector.compare(
                record.user_id,
                record.collection,
                doc_id,
                record.client_version,
                fields,
                current,
                operation_id=record.id,
            )
            if detection.has_conflict:
                raise VersionConflict("Version conflict detected", conflict=detection.conflict)

        live_version = document_version(current)
        try:
            self.store.update(
                record.collection,
                doc_id,
                {
                    **fields,
                    "version": live_version + 1,
                    "last_modified": utc_now(),
                    "last_modified_by": record.user_id,
                },
                expected_version=live_version,
            )
        except VersionConflict:
            # Another writer landed between the read and the write.
            self._raise_lost_race(record, doc_id, fields)
        return doc_id

    def _raise_lost_race(self, record: OperationRecord, doc_id: str, fields: Dict) -> None:
        latest = self.store.get(record.collection, doc_id)
        if latest is None:
            raise NotFound("Document not found")
        if record.client_version is None:
            raise TransientStoreError("Document changed during update; retrying on next pass")
        detection = self.detector.compare(
            record.user_id,
            record.collection,
            doc_id,
            record.client_version,
            fields,
            latest,
            operation_id=record.id,
        )
        if not detection.has_conflict:
            raise TransientStoreError("Document changed during update; retrying on next pass")
        raise VersionConflict("Version conflict detected", conflict=detection.conflict)

    def apply_delete(self, record: OperationRecord) -> str:
        # No version check: deletes are last-writer-wins.
        doc_id = _require_document_id(record)
        self.store.delete(record.collection, doc_id)
        return doc_id

    def apply_batch(self, record: OperationRecord) -> None:
        if not isinstance(record.payload, BatchPayload):
            raise InvalidArgument("Batch operation requires operations array")

        batch = self.store.batch()
        for sub in record.payload.operations:
            if sub.type is SubOperationType.CREATE:
                batch.set(sub.collection, sub.document_id or self.store.create_id(), sub.data)
            elif sub.type is SubOperationType.UPDATE:
                batch.update(sub.collection, sub.document_id, sub.data)
            else:
                batch.delete(sub.collection, sub.document_id)
        batch.commit()
        logger.debug("Applied batch %s with %d write(s)", record.id, len(batch))
        return None


def _require_document_id(record: OperationRecord) -> str:
    if not record.document_id:
        raise InvalidArgument(
            f"Document ID required for {record.operation_type.value.lower()} operation"
        )
    return record.document_id


def _document_fields(record: OperationRecord) -> Dict[str, object]:
    if not isinstance(record.payload, DocumentPayload):
        raise InvalidArgument(f"{record.operation_type.value} operation requires document data")
    return dict(record.payload.fields)


__all__ = ["OperationApplier"]
