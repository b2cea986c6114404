# Tests for the API app factory.
# Created: 2026-10-14

from fastapi.testclient import TestClient

from contextgate.api.serve import create_api_app


def test_routes_mounted_under_v1():
    paths = {route.path for route in create_api_app().routes}
    for path in (
        "/api/v1/cli/auth/authorize",
        "/api/v1/cli/auth/token",
        "/api/v1/cli/auth/revoke",
        "/api/v1/cli/auth/register",
        "/api/v1/cli/auth/clients",
        "/api/v1/cli/auth/permissions",
        "/api/v1/cli/projects",
        "/api/v1/cli/crawls",
        "/api/v1/cli/search",
        "/api/v1/cli/export",
    ):
        assert path in paths


def test_openapi_served():
    client = TestClient(create_api_app())
    resp = client.get("/api/v1/openapi.json")
    assert resp.status_code == 200
    assert resp.json()["info"]["title"] == "contextgate API"


def test_cors_localhost_allowed():
    client = TestClient(create_api_app())
    resp = client.options(
        "/api/v1/cli/auth/token",
        headers={
            "Origin": "http://localhost:5173",
            "Access-Control-Request-Method": "POST",
        },
    )
    assert resp.headers["access-control-allow-origin"] == "http://localhost:5173"


def test_cors_foreign_origin_rejected():
    client = TestClient(create_api_app())
    resp = client.options(
        "/api/v1/cli/auth/token",
        headers={
            "Origin": "https://evil.example",
            "Access-Control-Request-Method": "POST",
        },
    )
    assert "access-control-allow-origin" not in resp.headers


def test_cors_configured_origin(monkeypatch):
    from contextgate.config import get_settings

    monkeypatch.setenv("CONTEXTGATE_API_CORS_ALLOWED_ORIGINS", '["https://app.example"]')
    get_settings.cache_clear()
    client = TestClient(create_api_app())
    resp = client.options(
        "/api/v1/cli/projects",
        headers={"Origin": "https://app.example", "Access-Control-Request-Method": "GET"},
    )
    assert resp.headers["access-control-allow-origin"] == "https://app.example"


def test_malformed_json_is_400(api):
    resp = api.post(
        "/api/v1/cli/auth/token",
        content=b"{not json",
        headers={"Content-Type": "application/json"},
    )
    assert resp.status_code == 400
    assert resp.json()["detail"]["error"] == "invalid_request"
