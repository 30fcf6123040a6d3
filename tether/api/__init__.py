"""Tether HTTP API server module."""

from __future__ import annotations

from .auth import APIKeyManager
from .server import TetherAPIServer, APIServerState

__all__ = ["TetherAPIServer", "APIServerState", "APIKeyManager"]
