"""Tether: an offline-first sync engine with optimistic versioning."""

from __future__ import annotations

from .errors import (
    InvalidArgument,
    NotFound,
    QueueFull,
    SyncError,
    TransientStoreError,
    VersionConflict,
)
from .sync import OperationRequest, SyncEngine, SyncSettings

__version__ = "0.1.0"

__all__ = [
    "SyncEngine",
    "SyncSettings",
    "OperationRequest",
    "SyncError",
    "InvalidArgument",
    "QueueFull",
    "NotFound",
    "VersionConflict",
    "TransientStoreError",
    "__version__",
]
