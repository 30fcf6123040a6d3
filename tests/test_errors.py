"""Tests for the error taxonomy."""

from __future__ import annotations

from tether.errors import (
    InvalidArgument,
    NotFound,
    QueueFull,
    SyncError,
    TransientStoreError,
    VersionConflict,
    is_retryable,
)


def test_error_payload_carries_code_and_details():
    exc = QueueFull("Sync queue is full", pending=3, capacity=3)

    assert exc.to_dict() == {
        "error": "Sync queue is full",
        "code": "sync-queue-full",
        "details": {"pending": 3, "capacity": 3},
    }
    assert exc.http_status == 429


def test_error_defaults_message_to_docstring():
    exc = NotFound()

    assert exc.message == "The requested resource was not found."
    assert "details" not in exc.to_dict()


def test_version_conflict_keeps_conflict_reference():
    marker = object()
    exc = VersionConflict("Version conflict detected", conflict=marker)

    assert exc.conflict is marker
    assert exc.code == "version-conflict"
    assert isinstance(exc, SyncError)


def test_retryable_classification():
    assert is_retryable(TransientStoreError("busy"))
    assert is_retryable(TimeoutError("timed out"))
    assert is_retryable(RuntimeError("boom"))
    assert not is_retryable(NotFound("gone"))
    assert not is_retryable(InvalidArgument("bad"))
