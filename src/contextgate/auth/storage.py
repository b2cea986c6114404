# File-backed persistence for clients, grants and issued tokens.
# Created: 2026-10-12
#
# Every store keeps a JSON list on disk and serializes read-modify-write
# cycles behind a lock, so concurrent upserts for one key resolve to the last
# writer. Used authorization-code ids stay in memory (5 min TTL).

from __future__ import annotations

import json
import logging
import threading
from datetime import datetime
from pathlib import Path

from contextgate.auth.errors import StorageError
from contextgate.auth.models import TokenRecord

logger = logging.getLogger(__name__)


class JsonFile:
    """A JSON list persisted to one file, guarded by a re-entrant lock."""

    def __init__(self, path: Path):
        self.path = path
        self.lock = threading.RLock()

    def load(self) -> list[dict]:
        if not self.path.exists():
            return []
        try:
            data = json.loads(self.path.read_text())
        except (json.JSONDecodeError, OSError) as exc:
            logger.error("Failed to read %s: %s", self.path, exc)
            raise StorageError(f"unreadable store {self.path.name}") from exc
        if not isinstance(data, list):
            raise StorageError(f"corrupt store {self.path.name}")
        return data

    def save(self, records: list[dict]) -> None:
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            tmp = self.path.with_suffix(self.path.suffix + ".tmp")
            tmp.write_text(json.dumps(records, indent=2))
            try:
                tmp.chmod(0o600)
            except OSError:
                pass
            tmp.replace(self.path)
        except OSError as exc:
            logger.error("Failed to write %s: %s", self.path, exc)
            raise StorageError(f"unwritable store {self.path.name}") from exc


class TokenStore:
    """Issued access tokens keyed by token id."""

    def __init__(self, path: Path):
        self._file = JsonFile(path)

    def add(self, record: TokenRecord) -> None:
        with self._file.lock:
            records = self._file.load()
            records.append(record.model_dump(mode="json"))
            self._file.save(records)

    def get(self, jti: str) -> TokenRecord | None:
        with self._file.lock:
            for rec in self._file.load():
                if rec["jti"] == jti:
                    return TokenRecord(**rec)
        return None

    def revoke(self, jti: str) -> bool:
        with self._file.lock:
            records = self._file.load()
            for rec in records:
                if rec["jti"] == jti and not rec["revoked"]:
                    rec["revoked"] = True
                    self._file.save(records)
                    return True
        return False

    def revoke_for(self, user_id: str, client_id: str) -> int:
        """Revoke every live token a client holds for a user."""
        with self._file.lock:
            records = self._file.load()
            count = 0
            for rec in records:
                if (
                    rec["user_id"] == user_id
                    and rec["client_id"] == client_id
                    and not rec["revoked"]
                ):
                    rec["revoked"] = True
                    count += 1
            if count:
                self._file.save(records)
            return count

    def cleanup_expired(self, now: datetime) -> int:
        """Drop tokens past expiry. Returns count removed."""
        with self._file.lock:
            records = self._file.load()
            keep = [r for r in records if datetime.fromisoformat(r["expires_at"]) > now]
            removed = len(records) - len(keep)
            if removed:
                self._file.save(keep)
            return removed


class CodeLedger:
    """In-memory record of consumed authorization-code ids."""

    def __init__(self):
        self._used: dict[str, datetime] = {}
        self._lock = threading.Lock()

    def consume(self, jti: str, expires_at: datetime) -> bool:
        """Mark *jti* used. Returns False if it was already consumed."""
        with self._lock:
            if jti in self._used:
                return False
            self._used[jti] = expires_at
            return True

    def cleanup(self, now: datetime) -> int:
        with self._lock:
            stale = [k for k, exp in self._used.items() if exp <= now]
            for k in stale:
                del self._used[k]
            return len(stale)
