# Tests for the protected CLI resource endpoints.
# Created: 2026-10-14

import pytest

from contextgate.resources import InMemoryResourceProvider, set_resource_provider
from contextgate.security.rate_limiter import Window, WindowRateLimiter


@pytest.fixture
def provider():
    p = InMemoryResourceProvider()
    p.add_project("alice", {"id": "p1", "name": "Docs site", "created_at": "2026-03-01"})
    p.add_project("alice", {"id": "p2", "name": "Blog", "created_at": "2026-08-01"})
    p.add_project("bob", {"id": "p9", "name": "Bob's docs", "created_at": "2026-03-01"})
    p.add_crawl("alice", {"id": "c1", "project_id": "p1", "root_url": "https://docs.example"})
    p.add_crawl("alice", {"id": "c2", "project_id": "p2", "root_url": "https://blog.example"})
    set_resource_provider(p)
    return p


def _bearer(token):
    return {"Authorization": f"Bearer {token}"}


class TestProjects:
    def test_lists_own_projects(self, api, provider, make_token):
        resp = api.get("/api/v1/cli/projects", headers=_bearer(make_token("read:projects")))
        assert resp.status_code == 200
        assert [p["id"] for p in resp.json()["projects"]] == ["p1", "p2"]

    def test_project_filter_applies(self, api, server, provider, make_token, registered):
        client, _ = registered
        token = make_token("read:projects")
        server.permissions.upsert(
            "alice", client.client_id, ["read:projects"], filters={"project_ids": ["p2"]}
        )
        resp = api.get("/api/v1/cli/projects", headers=_bearer(token))
        assert [p["id"] for p in resp.json()["projects"]] == ["p2"]

    def test_date_range_filter(self, api, server, provider, make_token, registered):
        client, _ = registered
        token = make_token("read:projects")
        server.permissions.upsert(
            "alice",
            client.client_id,
            ["read:projects"],
            filters={"date_range": {"start": "2026-01-01", "end": "2026-06-30"}},
        )
        resp = api.get("/api/v1/cli/projects", headers=_bearer(token))
        assert [p["id"] for p in resp.json()["projects"]] == ["p1"]

    def test_no_token(self, api, provider, audit_actions):
        resp = api.get("/api/v1/cli/projects")
        assert resp.status_code == 401
        assert resp.headers["WWW-Authenticate"] == "Bearer"
        assert audit_actions()[-1] == "list_projects_denied"

    def test_wrong_scope(self, api, provider, make_token):
        resp = api.get("/api/v1/cli/projects", headers=_bearer(make_token("read:crawls")))
        assert resp.status_code == 403
        assert resp.json()["detail"]["message"] == (
            "Insufficient permissions: read:projects required"
        )

    def test_success_audited(self, api, server, provider, make_token):
        api.get("/api/v1/cli/projects", headers=_bearer(make_token()))
        rec = server.audit.read(limit=1)[0]
        assert rec.action == "list_projects"
        assert rec.success is True
        assert rec.endpoint == "/api/v1/cli/projects"
        assert rec.user_agent == "testclient"


class TestCrawls:
    def test_by_project(self, api, provider, make_token):
        token = make_token("read:crawls")
        resp = api.get("/api/v1/cli/crawls", params={"projectId": "p1"}, headers=_bearer(token))
        assert resp.status_code == 200
        assert [c["id"] for c in resp.json()["crawls"]] == ["c1"]

    def test_all(self, api, provider, make_token):
        resp = api.get("/api/v1/cli/crawls", headers=_bearer(make_token("read:crawls")))
        assert len(resp.json()["crawls"]) == 2


class TestSearch:
    def test_search(self, api, provider, make_token):
        resp = api.post(
            "/api/v1/cli/search",
            json={"query": "docs", "scope": "all"},
            headers=_bearer(make_token("search:chunks")),
        )
        assert resp.status_code == 200
        data = resp.json()
        assert data["query"] == "docs"
        assert data["total"] == 2
        assert {r["type"] for r in data["results"]} == {"project", "crawl"}

    def test_limit_bounds(self, api, provider, make_token):
        resp = api.post(
            "/api/v1/cli/search",
            json={"query": "docs", "limit": 500},
            headers=_bearer(make_token("search:chunks")),
        )
        assert resp.status_code == 400

    def test_unknown_scope_value(self, api, provider, make_token):
        resp = api.post(
            "/api/v1/cli/search",
            json={"query": "docs", "scope": "everything"},
            headers=_bearer(make_token("search:chunks")),
        )
        assert resp.status_code == 400


class TestExport:
    def _exporter_token(self, server, ctx, filters=None):
        client, secret = server.register_client(
            "alice", "exporter", "http://localhost:7001/cb", ["export:data"], ctx
        )
        code = server.consent(
            "alice", client.client_id, client.redirect_uri, "export:data", True, ctx
        )
        token = server.exchange(client.client_id, secret, code, "authorization_code", ctx)
        if filters is not None:
            server.permissions.upsert(
                "alice", client.client_id, ["export:data"], filters=filters
            )
        return token["access_token"]

    def test_denied_without_export_scope(self, api, server, provider, make_token):
        token = make_token("read:projects")
        resp = api.post(
            "/api/v1/cli/export",
            json={"resourceType": "project", "resourceId": "p1", "format": "json"},
            headers=_bearer(token),
        )
        assert resp.status_code == 403
        assert resp.json()["detail"]["error"] == "access_not_granted"
        rec = server.audit.read(limit=1)[0]
        assert rec.action == "export_denied"
        assert rec.success is False
        assert rec.resource_type == "project"
        assert rec.resource_id == "p1"

    def test_export(self, api, server, provider, ctx):
        token = self._exporter_token(server, ctx)
        resp = api.post(
            "/api/v1/cli/export",
            json={"resourceType": "project", "resourceId": "p1", "format": "csv"},
            headers=_bearer(token),
        )
        assert resp.status_code == 200
        data = resp.json()
        assert data["format"] == "csv"
        assert data["downloadUrl"].endswith(".csv")

        resp = api.post(
            "/api/v1/cli/export",
            json={"resourceType": "project", "resourceId": "p9"},
            headers=_bearer(token),
        )
        assert resp.status_code == 404
        rec = server.audit.read(limit=1)[0]
        assert rec.action == "export"
        assert rec.success is False
        assert rec.error_message == "project not found"

    def test_export_outside_project_filter(self, api, server, provider, ctx):
        token = self._exporter_token(server, ctx, filters={"project_ids": ["p1"]})
        allowed = api.post(
            "/api/v1/cli/export",
            json={"resourceType": "project", "resourceId": "p1"},
            headers=_bearer(token),
        )
        assert allowed.status_code == 200

        resp = api.post(
            "/api/v1/cli/export",
            json={"resourceType": "project", "resourceId": "p2"},
            headers=_bearer(token),
        )
        assert resp.status_code == 404
        assert resp.json()["detail"]["error"] == "not_found"

    def test_export_outside_data_types(self, api, server, provider, ctx):
        token = self._exporter_token(server, ctx, filters={"data_types": ["crawl"]})
        resp = api.post(
            "/api/v1/cli/export",
            json={"resourceType": "project", "resourceId": "p1"},
            headers=_bearer(token),
        )
        assert resp.status_code == 404
        resp = api.post(
            "/api/v1/cli/export",
            json={"resourceType": "crawl", "resourceId": "c1"},
            headers=_bearer(token),
        )
        assert resp.status_code == 200


class TestRateLimit:
    def test_third_call_limited(self, api, server, provider, make_token):
        server.limiter = WindowRateLimiter([Window(60, 2)])
        token = make_token()
        for _ in range(2):
            assert api.get("/api/v1/cli/projects", headers=_bearer(token)).status_code == 200
        resp = api.get("/api/v1/cli/projects", headers=_bearer(token))
        assert resp.status_code == 429
        assert int(resp.headers["Retry-After"]) >= 1
        assert resp.headers["X-RateLimit-Remaining"] == "0"
        # other endpoints keep their own counters
        token2 = make_token("read:projects read:crawls")
        assert api.get("/api/v1/cli/crawls", headers=_bearer(token2)).status_code == 200


class TestProviderFailure:
    def test_crash_is_audited_generic_500(self, api, server, make_token):
        class BrokenProvider(InMemoryResourceProvider):
            def list_projects(self, user_id, filters):
                raise RuntimeError("backing store offline")

        set_resource_provider(BrokenProvider())
        resp = api.get("/api/v1/cli/projects", headers=_bearer(make_token()))
        assert resp.status_code == 500
        assert resp.json()["detail"] == {
            "error": "server_error",
            "message": "Internal server error",
        }
        rec = server.audit.read(limit=1)[0]
        assert rec.action == "list_projects"
        assert rec.success is False
        assert rec.error_message == "Internal server error"
