# CLI API client: httpx calls against a contextgate server.
# Created: 2026-10-14
#
# Connection details are an explicit ClientConfig value passed in by the
# caller. Saving one to disk (save/load/clear) is opt-in and lives in the
# contextgate config dir, owner-only.

from __future__ import annotations

import json
import logging
import urllib.parse
from dataclasses import asdict, dataclass, fields
from pathlib import Path
from typing import Any

import httpx

logger = logging.getLogger(__name__)

_API_PREFIX = "/api/v1"


@dataclass(frozen=True)
class ClientConfig:
    """Where the server lives and who this client is."""

    base_url: str
    client_id: str
    client_secret: str = ""
    redirect_uri: str = ""
    access_token: str = ""
    timeout: float = 15.0

    def save(self, path: Path | None = None) -> Path:
        """Write this config (secret and token included) to an owner-only file."""
        from contextgate.config import _chmod_safe

        path = path or default_config_path()
        path.write_text(json.dumps(asdict(self), indent=2))
        _chmod_safe(path, 0o600)
        return path

    @classmethod
    def load(cls, path: Path | None = None) -> ClientConfig | None:
        """Read a saved config. Returns None when nothing usable is saved."""
        path = path or default_config_path()
        if not path.exists():
            return None
        try:
            data = json.loads(path.read_text())
        except (json.JSONDecodeError, OSError) as exc:
            logger.warning("Ignoring unreadable client config %s: %s", path, exc)
            return None
        if not isinstance(data, dict):
            logger.warning("Ignoring malformed client config %s", path)
            return None
        known = {f.name for f in fields(cls)}
        try:
            return cls(**{k: v for k, v in data.items() if k in known})
        except TypeError as exc:
            logger.warning("Ignoring incomplete client config %s: %s", path, exc)
            return None

    @staticmethod
    def clear(path: Path | None = None) -> bool:
        """Delete the saved config. Returns False if there was none."""
        path = path or default_config_path()
        if not path.exists():
            return False
        path.unlink()
        return True


def default_config_path() -> Path:
    from contextgate.config import get_config_dir

    return get_config_dir() / "cli.json"


class ApiError(Exception):
    """Non-2xx answer from the server, carrying its error envelope."""

    def __init__(self, status_code: int, error: str, message: str):
        super().__init__(f"{status_code} {error}: {message}")
        self.status_code = status_code
        self.error = error
        self.message = message


def _raise_for_error(resp: httpx.Response) -> None:
    if resp.is_success:
        return
    try:
        detail = resp.json().get("detail", {})
    except ValueError:
        detail = {}
    if not isinstance(detail, dict):
        detail = {"message": str(detail)}
    raise ApiError(
        resp.status_code,
        detail.get("error", "http_error"),
        detail.get("message", resp.reason_phrase),
    )


class ContextGateClient:
    """Async client for the CLI endpoints.

    Args:
        config: Server location and client credentials.
        access_token: Bearer token for the protected endpoints.
        transport: Optional httpx transport (tests pass a MockTransport).
    """

    def __init__(
        self,
        config: ClientConfig,
        access_token: str | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.config = config
        self.access_token = access_token or config.access_token or None
        self._transport = transport

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            base_url=self.config.base_url.rstrip("/") + _API_PREFIX,
            timeout=self.config.timeout,
            transport=self._transport,
        )

    def _auth_headers(self) -> dict[str, str]:
        if not self.access_token:
            raise ApiError(401, "unauthorized", "No access token; run the login flow first")
        return {"Authorization": f"Bearer {self.access_token}"}

    def authorize_url(self, scopes: list[str], state: str = "") -> str:
        """URL the user opens in a browser to approve this client."""
        params = {
            "client_id": self.config.client_id,
            "redirect_uri": self.config.redirect_uri,
            "scope": ",".join(scopes),
        }
        if state:
            params["state"] = state
        base = self.config.base_url.rstrip("/") + _API_PREFIX
        return f"{base}/cli/auth/authorize?{urllib.parse.urlencode(params)}"

    async def exchange_code(self, code: str) -> dict[str, Any]:
        """Trade an authorization code for a bearer token and keep it."""
        async with self._client() as client:
            resp = await client.post(
                "/cli/auth/token",
                json={
                    "clientId": self.config.client_id,
                    "clientSecret": self.config.client_secret,
                    "code": code,
                    "grantType": "authorization_code",
                },
            )
        _raise_for_error(resp)
        data = resp.json()
        self.access_token = data["access_token"]
        logger.info("Access token obtained for client %s", self.config.client_id)
        return data

    async def revoke(self) -> bool:
        if not self.access_token:
            return False
        async with self._client() as client:
            resp = await client.post("/cli/auth/revoke", json={"token": self.access_token})
        _raise_for_error(resp)
        self.access_token = None
        return bool(resp.json().get("revoked"))

    async def list_projects(self) -> list[dict[str, Any]]:
        async with self._client() as client:
            resp = await client.get("/cli/projects", headers=self._auth_headers())
        _raise_for_error(resp)
        return resp.json()["projects"]

    async def list_crawls(self, project_id: str | None = None) -> list[dict[str, Any]]:
        params = {"projectId": project_id} if project_id else None
        async with self._client() as client:
            resp = await client.get("/cli/crawls", params=params, headers=self._auth_headers())
        _raise_for_error(resp)
        return resp.json()["crawls"]

    async def search(
        self, query: str, scope: str = "all", limit: int = 10, offset: int = 0
    ) -> dict[str, Any]:
        async with self._client() as client:
            resp = await client.post(
                "/cli/search",
                json={"query": query, "scope": scope, "limit": limit, "offset": offset},
                headers=self._auth_headers(),
            )
        _raise_for_error(resp)
        return resp.json()

    async def export(
        self, resource_type: str, resource_id: str, fmt: str = "zip"
    ) -> dict[str, Any]:
        async with self._client() as client:
            resp = await client.post(
                "/cli/export",
                json={"resourceType": resource_type, "resourceId": resource_id, "format": fmt},
                headers=self._auth_headers(),
            )
        _raise_for_error(resp)
        return resp.json()

    # Permission management runs as the signed-in user, not as the client

    async def grant_permission(
        self,
        session_token: str,
        scopes: list[str],
        filters: dict[str, Any] | None = None,
        expires_in: int | None = None,
        client_id: str | None = None,
    ) -> dict[str, Any]:
        """Grant *scopes* to this client (or *client_id*). Returns the permission."""
        body: dict[str, Any] = {
            "clientId": client_id or self.config.client_id,
            "scopes": scopes,
        }
        if filters is not None:
            body["filters"] = filters
        if expires_in is not None:
            body["expiresIn"] = expires_in
        async with self._client() as client:
            resp = await client.post(
                "/cli/auth/permissions", json=body, headers=_session_headers(session_token)
            )
        _raise_for_error(resp)
        return resp.json()["permission"]

    async def list_permissions(
        self, session_token: str, client_id: str | None = None
    ) -> list[dict[str, Any]]:
        params = {"clientId": client_id} if client_id else None
        async with self._client() as client:
            resp = await client.get(
                "/cli/auth/permissions", params=params, headers=_session_headers(session_token)
            )
        _raise_for_error(resp)
        return resp.json()["permissions"]

    async def revoke_permission(
        self,
        session_token: str,
        permission_id: str | None = None,
        client_id: str | None = None,
    ) -> int:
        """Revoke by permission id, or by client (defaults to this client)."""
        if permission_id:
            params = {"permissionId": permission_id}
        else:
            params = {"clientId": client_id or self.config.client_id}
        async with self._client() as client:
            resp = await client.delete(
                "/cli/auth/permissions", params=params, headers=_session_headers(session_token)
            )
        _raise_for_error(resp)
        return resp.json()["revoked"]


def _session_headers(session_token: str) -> dict[str, str]:
    return {"Authorization": f"Bearer {session_token}"}


async def register_client(
    base_url: str,
    session_token: str,
    name: str,
    redirect_uri: str,
    scopes: list[str],
    description: str = "",
    transport: httpx.AsyncBaseTransport | None = None,
) -> dict[str, Any]:
    """Register a new CLI client as a signed-in user. Returns the client incl. secret."""
    async with httpx.AsyncClient(
        base_url=base_url.rstrip("/") + _API_PREFIX, timeout=15, transport=transport
    ) as client:
        resp = await client.post(
            "/cli/auth/register",
            json={
                "name": name,
                "description": description,
                "redirectUri": redirect_uri,
                "scopes": scopes,
            },
            headers=_session_headers(session_token),
        )
    _raise_for_error(resp)
    return resp.json()["client"]
