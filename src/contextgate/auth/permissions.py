# Permission Store and Scope Evaluator.
# Created: 2026-10-12
#
# One grant row per (user, client); a new decision overwrites the old one in
# place. Revocation only clears is_active so the audit trail keeps its
# references. Reads always go to storage, never to a cache, so a revoke is
# seen by the very next exchange or resource call.
# Storage: ~/.contextgate/permissions.json

from __future__ import annotations

import logging
from collections.abc import Callable
from datetime import UTC, datetime, timedelta
from pathlib import Path

from contextgate.auth.clients import ClientRegistry
from contextgate.auth.errors import ScopeNotAllowed
from contextgate.auth.models import Client, GrantFilters, PermissionGrant
from contextgate.auth.storage import JsonFile

logger = logging.getLogger(__name__)

DEFAULT_GRANT_TTL = timedelta(days=30)


def _utcnow() -> datetime:
    return datetime.now(UTC)


class PermissionStore:
    """Consent grants with file-based persistence."""

    def __init__(
        self,
        registry: ClientRegistry,
        storage_path: Path | None = None,
        default_ttl: timedelta = DEFAULT_GRANT_TTL,
        clock: Callable[[], datetime] | None = None,
    ):
        if storage_path is None:
            from contextgate.config import get_config_dir

            storage_path = get_config_dir() / "permissions.json"
        self._file = JsonFile(storage_path)
        self.registry = registry
        self.default_ttl = default_ttl
        self.clock = clock or _utcnow

    def upsert(
        self,
        user_id: str,
        client_id: str,
        scopes: list[str],
        filters: GrantFilters | dict | None = None,
        granted: bool = True,
        ttl: timedelta | None = None,
    ) -> PermissionGrant:
        """Create or overwrite the grant for (user, client)."""
        client = self.registry.require(client_id)
        invalid = [s for s in scopes if s not in client.scopes]
        if invalid:
            raise ScopeNotAllowed(f"Invalid scopes for this client: {', '.join(invalid)}")

        if isinstance(filters, dict):
            filters = GrantFilters(**filters)
        now = self.clock()

        with self._file.lock:
            records = self._file.load()
            existing = next(
                (
                    i
                    for i, r in enumerate(records)
                    if r["user_id"] == user_id and r["client_id"] == client_id
                ),
                None,
            )
            fields = {
                "user_id": user_id,
                "client_id": client_id,
                "scopes": list(dict.fromkeys(scopes)),
                "filters": filters or GrantFilters(),
                "granted": granted,
                "expires_at": now + (ttl if ttl is not None else self.default_ttl),
                "granted_at": now,
                "is_active": True,
            }
            if existing is None:
                grant = PermissionGrant(**fields)
                records.append(grant.model_dump(mode="json"))
            else:
                prior = records[existing]
                grant = PermissionGrant(
                    id=prior["id"], last_used_at=prior.get("last_used_at"), **fields
                )
                records[existing] = grant.model_dump(mode="json")
            self._file.save(records)

        logger.debug(
            "Grant %s: user=%s client=%s granted=%s", grant.id, user_id, client_id, granted
        )
        return grant

    def find(self, user_id: str, client_id: str) -> PermissionGrant | None:
        """Return the active, unexpired grant for (user, client), if any."""
        now = self.clock()
        for rec in self._file.load():
            if rec["user_id"] == user_id and rec["client_id"] == client_id:
                grant = PermissionGrant(**rec)
                return grant if grant.is_live(now) else None
        return None

    def revoke(
        self,
        user_id: str,
        client_id: str | None = None,
        grant_id: str | None = None,
    ) -> list[PermissionGrant]:
        """Deactivate the user's grant(s) matching the selector.

        Idempotent: revoking an already inactive grant is a no-op. Returns the
        grants that were deactivated by this call.
        """
        if client_id is None and grant_id is None:
            raise ValueError("Either grant_id or client_id is required")

        revoked: list[PermissionGrant] = []
        with self._file.lock:
            records = self._file.load()
            for rec in records:
                if rec["user_id"] != user_id or not rec["is_active"]:
                    continue
                if grant_id is not None and rec["id"] != grant_id:
                    continue
                if client_id is not None and rec["client_id"] != client_id:
                    continue
                rec["is_active"] = False
                revoked.append(PermissionGrant(**rec))
            if revoked:
                self._file.save(records)
        return revoked

    def list(
        self, user_id: str, client_id: str | None = None
    ) -> list[tuple[PermissionGrant, Client]]:
        """Active grants for a user, each paired with its client."""
        result = []
        for rec in self._file.load():
            if rec["user_id"] != user_id or not rec["is_active"]:
                continue
            if client_id is not None and rec["client_id"] != client_id:
                continue
            client = self.registry.lookup(rec["client_id"])
            if client is None:
                continue
            result.append((PermissionGrant(**rec), client))
        return result

    def touch(self, user_id: str, client_id: str) -> None:
        """Record that a client just used its grant."""
        with self._file.lock:
            records = self._file.load()
            for rec in records:
                if rec["user_id"] == user_id and rec["client_id"] == client_id:
                    rec["last_used_at"] = self.clock().isoformat()
                    self._file.save(records)
                    return


class ScopeEvaluator:
    """Fail-closed scope decisions over the permission store."""

    def __init__(self, store: PermissionStore):
        self.store = store

    def permits(self, user_id: str, client_id: str, required_scope: str) -> bool:
        try:
            grant = self.store.find(user_id, client_id)
        except Exception:
            logger.exception("Permission lookup failed for client %s", client_id)
            return False
        if grant is None or not grant.is_usable(self.store.clock()):
            return False
        return required_scope in grant.scopes
