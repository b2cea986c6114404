# Shared fixtures: isolated config home, a controllable clock, a fully wired
# authorization server and a TestClient over the v1 API.
# Created: 2026-10-14

from datetime import UTC, datetime, timedelta

import pytest
from fastapi.testclient import TestClient

from contextgate.auth.clients import ClientRegistry
from contextgate.auth.models import RequestContext
from contextgate.auth.permissions import PermissionStore
from contextgate.auth.server import AuthorizationServer
from contextgate.auth.storage import TokenStore
from contextgate.security.audit import AuditLogger
from contextgate.security.rate_limiter import RateLimiter, Window, WindowRateLimiter

USER = "alice"
REDIRECT_URI = "http://localhost:8765/callback"
CLIENT_SCOPES = ["read:projects", "read:crawls", "search:chunks"]


class FakeClock:
    """Wall clock that only moves when told to."""

    def __init__(self, start: datetime | None = None):
        self.now = start or datetime.now(UTC).replace(microsecond=0)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now += timedelta(**kwargs)


@pytest.fixture(autouse=True)
def isolated_home(tmp_path, monkeypatch):
    """Point every default path at a temp dir and drop cached singletons."""
    import contextgate.auth.server as server_mod
    import contextgate.resources as resources_mod
    import contextgate.security.audit as audit_mod
    import contextgate.security.rate_limiter as limiter_mod
    from contextgate.config import get_settings

    home = tmp_path / "home"
    monkeypatch.setenv("CONTEXTGATE_HOME", str(home))
    monkeypatch.setattr(server_mod, "_server", None)
    monkeypatch.setattr(audit_mod, "_audit_logger", None)
    monkeypatch.setattr(limiter_mod, "_window_limiter", None)
    monkeypatch.setattr(resources_mod, "_provider", None)
    get_settings.cache_clear()
    yield home
    get_settings.cache_clear()


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def limiter():
    return WindowRateLimiter([Window(60, 60), Window(3600, 1000), Window(86400, 10000)])


@pytest.fixture
def server(tmp_path, clock, limiter):
    registry = ClientRegistry(tmp_path / "clients.json")
    permissions = PermissionStore(registry, tmp_path / "permissions.json", clock=clock)
    return AuthorizationServer(
        registry=registry,
        permissions=permissions,
        token_store=TokenStore(tmp_path / "tokens.json"),
        audit=AuditLogger(tmp_path / "audit.jsonl"),
        limiter=limiter,
        secret="test-signing-secret",
        clock=clock,
    )


@pytest.fixture
def ctx():
    return RequestContext(endpoint="/test", ip_address="127.0.0.1", user_agent="pytest")


@pytest.fixture
def registered(server, ctx):
    """A client owned by alice: (client, secret)."""
    return server.register_client(
        user_id=USER,
        name="my-cli",
        redirect_uri=REDIRECT_URI,
        scopes=CLIENT_SCOPES,
        ctx=ctx,
        description="Test CLI",
    )


@pytest.fixture
def make_token(server, ctx, registered):
    """Consent for *scope* as *user* and exchange the code for a bearer token."""

    def _make(scope: str = "read:projects", user: str = USER) -> str:
        client, secret = registered
        code = server.consent(user, client.client_id, client.redirect_uri, scope, True, ctx)
        result = server.exchange(client.client_id, secret, code, "authorization_code", ctx)
        return result["access_token"]

    return _make


@pytest.fixture
def app(server, monkeypatch):
    import contextgate.auth.server as server_mod
    import contextgate.security.rate_limiter as limiter_mod
    from contextgate.api.serve import create_api_app

    monkeypatch.setattr(server_mod, "_server", server)
    monkeypatch.setattr(limiter_mod, "auth_limiter", RateLimiter(rate=100.0, capacity=1000))
    return create_api_app()


@pytest.fixture
def api(app):
    return TestClient(app)


@pytest.fixture
def user_headers(server):
    """Authorization header carrying alice's session token."""
    return {"Authorization": f"Bearer {server.create_session(USER)}"}


@pytest.fixture
def audit_actions(server):
    """Actions written to the audit log so far, oldest first."""

    def _actions() -> list[str]:
        return [r.action for r in server.audit.read(limit=1000)]

    return _actions
