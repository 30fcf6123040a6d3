"""Per-user API keys for the Tether API."""

from __future__ import annotations

import hashlib
import json
import logging
import secrets
import threading
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, Optional

logger = logging.getLogger("tether.api.auth")


@dataclass
class APIKeyManager:
    """Issues API keys and maps presented keys back to a user id.

    Only SHA-256 digests are written to disk; the plain key is returned once,
    at issue time.
    """

    data_dir: Path
    _lock: threading.Lock = field(default_factory=threading.Lock, init=False, repr=False)

    @property
    def key_file_path(self) -> Path:
        """Path to the stored key digests."""
        return self.data_dir / "config" / "api_keys.json"

    def issue_key(self, user_id: str) -> str:
        """Generate a new key for ``user_id``, replacing any previous one."""
        if not user_id:
            raise ValueError("A user id is required to issue an API key")

        key = secrets.token_hex(32)
        with self._lock:
            keys = {
                digest: owner
                for digest, owner in self._load().items()
                if owner != user_id
            }
            keys[hash_key(key)] = user_id
            self._save(keys)
        logger.info("Issued API key for user %s", user_id)
        return key

    def revoke(self, user_id: str) -> bool:
        """Drop every key belonging to ``user_id``."""
        with self._lock:
            keys = self._load()
            remaining = {digest: owner for digest, owner in keys.items() if owner != user_id}
            if len(remaining) == len(keys):
                return False
            self._save(remaining)
        logger.info("Revoked API key for user %s", user_id)
        return True

    def resolve_user(self, provided_key: str) -> Optional[str]:
        """Return the user owning ``provided_key``, or None."""
        if not provided_key:
            return None

        digest = hash_key(provided_key)
        for stored, owner in self._load().items():
            # Constant-time comparison to prevent timing attacks
            if secrets.compare_digest(stored, digest):
                return owner
        return None

    def users(self) -> Dict[str, int]:
        """Count of active keys per user."""
        counts: Dict[str, int] = {}
        for owner in self._load().values():
            counts[owner] = counts.get(owner, 0) + 1
        return counts

    def _load(self) -> Dict[str, str]:
        if not self.key_file_path.exists():
            return {}
        try:
            data = json.loads(self.key_file_path.read_text(encoding="utf-8"))
        except json.JSONDecodeError:
            logger.error("API key file %s is corrupt; treating as empty", self.key_file_path)
            return {}
        return {str(k): str(v) for k, v in data.items()} if isinstance(data, dict) else {}

    def _save(self, keys: Dict[str, str]) -> None:
        self.key_file_path.parent.mkdir(parents=True, exist_ok=True)
        self.key_file_path.write_text(json.dumps(keys, indent=2), encoding="utf-8")
        # Owner read/write only
        self.key_file_path.chmod(0o600)


def hash_key(key: str) -> str:
    """One-way hash of an API key."""
    return hashlib.sha256(key.encode()).hexdigest()


__all__ = ["APIKeyManager", "hash_key"]
