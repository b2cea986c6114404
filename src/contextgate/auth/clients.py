# Client Registry: register, look up and authenticate integrations.
# Created: 2026-10-12
#
# client_id is 16 random bytes, client_secret 32 random bytes, both hex.
# Only the sha256 of the secret is stored; the plaintext is returned once at
# registration (like the API key manager does for keys).
# Storage: ~/.contextgate/clients.json

from __future__ import annotations

import hashlib
import hmac
import logging
import secrets
from pathlib import Path

from contextgate.auth.errors import InvalidClient, InvalidScope, UnknownClient
from contextgate.auth.models import VALID_SCOPES, Client
from contextgate.auth.storage import JsonFile

logger = logging.getLogger(__name__)


def _hash_secret(secret: str) -> str:
    return hashlib.sha256(secret.encode()).hexdigest()


def validate_scopes(scopes: list[str]) -> None:
    """Raise InvalidScope unless every scope is in the recognized set."""
    if not scopes:
        raise InvalidScope("At least one scope is required")
    invalid = sorted(set(scopes) - VALID_SCOPES)
    if invalid:
        raise InvalidScope(f"Invalid scopes: {', '.join(invalid)}")


class ClientRegistry:
    """Registered clients with file-based persistence."""

    def __init__(self, storage_path: Path | None = None):
        if storage_path is None:
            from contextgate.config import get_config_dir

            storage_path = get_config_dir() / "clients.json"
        self._file = JsonFile(storage_path)

    def register(
        self,
        name: str,
        redirect_uri: str,
        scopes: list[str],
        description: str = "",
        created_by: str | None = None,
    ) -> tuple[Client, str]:
        """Register a client. Returns (client, plaintext_secret).

        The secret cannot be retrieved later.
        """
        if not name or not redirect_uri:
            raise ValueError("name and redirect_uri are required")
        validate_scopes(scopes)

        client_id = secrets.token_hex(16)
        secret = secrets.token_hex(32)
        client = Client(
            client_id=client_id,
            secret_hash=_hash_secret(secret),
            name=name,
            description=description or "",
            redirect_uri=redirect_uri,
            scopes=list(dict.fromkeys(scopes)),
            created_by=created_by,
        )

        with self._file.lock:
            records = self._file.load()
            records.append(client.model_dump(mode="json"))
            self._file.save(records)

        logger.info("Registered client %s (%s)", client.name, client_id)
        return client, secret

    def lookup(self, client_id: str) -> Client | None:
        for rec in self._file.load():
            if rec["client_id"] == client_id:
                return Client(**rec)
        return None

    def require(self, client_id: str) -> Client:
        client = self.lookup(client_id)
        if client is None:
            raise UnknownClient()
        return client

    def authenticate(self, client_id: str, client_secret: str) -> Client:
        """Return the client only if both id and secret match."""
        client = self.lookup(client_id)
        if client is None:
            # Hash anyway so unknown ids cost the same as bad secrets
            _hash_secret(client_secret)
            raise InvalidClient()
        if not hmac.compare_digest(client.secret_hash, _hash_secret(client_secret)):
            raise InvalidClient()
        return client

    def list_clients(self, created_by: str | None = None) -> list[Client]:
        clients = [Client(**r) for r in self._file.load()]
        if created_by is not None:
            clients = [c for c in clients if c.created_by == created_by]
        return clients
