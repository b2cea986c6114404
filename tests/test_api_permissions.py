# Tests for client registration and permission management over HTTP.
# Created: 2026-10-14

import re

PERMISSIONS = "/api/v1/cli/auth/permissions"
REGISTER = "/api/v1/cli/auth/register"


def _register_body(**overrides):
    body = {
        "name": "deploy-bot",
        "description": "Ships things",
        "redirectUri": "http://localhost:7000/cb",
        "scopes": ["read:projects", "export:data"],
    }
    body.update(overrides)
    return body


class TestRegisterEndpoint:
    def test_register_returns_secret_once(self, api, user_headers):
        resp = api.post(REGISTER, json=_register_body(), headers=user_headers)
        assert resp.status_code == 200
        client = resp.json()["client"]
        assert re.fullmatch(r"[0-9a-f]{32}", client["clientId"])
        assert re.fullmatch(r"[0-9a-f]{64}", client["clientSecret"])
        assert client["redirectUri"] == "http://localhost:7000/cb"
        assert client["scopes"] == ["read:projects", "export:data"]

        listed = api.get("/api/v1/cli/auth/clients", headers=user_headers).json()
        assert [c["clientId"] for c in listed] == [client["clientId"]]
        assert "clientSecret" not in listed[0]
        assert "secretHash" not in listed[0]

    def test_register_audited(self, api, server, user_headers):
        api.post(REGISTER, json=_register_body(), headers=user_headers)
        [rec] = [r for r in server.audit.read() if r.action == "register"]
        assert rec.user_id == "alice"
        assert rec.endpoint == REGISTER

    def test_requires_user(self, api):
        resp = api.post(REGISTER, json=_register_body())
        assert resp.status_code == 401

    def test_invalid_scope(self, api, user_headers, audit_actions):
        resp = api.post(REGISTER, json=_register_body(scopes=["root"]), headers=user_headers)
        assert resp.status_code == 400
        assert resp.json()["detail"] == {
            "error": "invalid_scope",
            "message": "Invalid scopes: root",
        }
        assert audit_actions()[-1] == "register_denied"

    def test_empty_scopes(self, api, user_headers):
        resp = api.post(REGISTER, json=_register_body(scopes=[]), headers=user_headers)
        assert resp.status_code == 400

    def test_snake_case_aliases_accepted(self, api, user_headers):
        body = _register_body()
        body["redirect_uri"] = body.pop("redirectUri")
        resp = api.post(REGISTER, json=body, headers=user_headers)
        assert resp.status_code == 200


class TestPermissionsEndpoint:
    def test_grant_list_revoke(self, api, server, registered, user_headers, clock):
        client, _ = registered
        resp = api.post(
            PERMISSIONS,
            json={
                "clientId": client.client_id,
                "scopes": ["read:projects"],
                "filters": {"projectIds": ["p1"]},
                "expiresIn": 7200,
            },
            headers=user_headers,
        )
        assert resp.status_code == 200
        perm = resp.json()["permission"]
        assert perm["clientName"] == "my-cli"
        assert perm["filters"]["projectIds"] == ["p1"]
        assert perm["granted"] is True

        grant = server.permissions.find("alice", client.client_id)
        assert (grant.expires_at - clock.now).total_seconds() == 7200

        listed = api.get(PERMISSIONS, headers=user_headers).json()["permissions"]
        assert [p["id"] for p in listed] == [perm["id"]]

        resp = api.delete(PERMISSIONS, params={"clientId": client.client_id}, headers=user_headers)
        assert resp.json()["revoked"] == 1
        assert api.get(PERMISSIONS, headers=user_headers).json()["permissions"] == []

        # second revoke is harmless
        resp = api.delete(PERMISSIONS, params={"clientId": client.client_id}, headers=user_headers)
        assert resp.status_code == 200
        assert resp.json()["revoked"] == 0

    def test_revoke_by_permission_id(self, api, server, registered, user_headers):
        client, _ = registered
        grant = server.permissions.upsert("alice", client.client_id, ["read:projects"])
        resp = api.delete(PERMISSIONS, params={"permissionId": grant.id}, headers=user_headers)
        assert resp.json()["revoked"] == 1

    def test_revoke_needs_selector(self, api, user_headers):
        resp = api.delete(PERMISSIONS, headers=user_headers)
        assert resp.status_code == 400
        assert resp.json()["detail"]["error"] == "invalid_request"

    def test_scope_not_declared_by_client(self, api, registered, user_headers):
        client, _ = registered
        resp = api.post(
            PERMISSIONS,
            json={"clientId": client.client_id, "scopes": ["export:data"]},
            headers=user_headers,
        )
        assert resp.status_code == 400
        assert "export:data" in resp.json()["detail"]["message"]

    def test_unknown_client(self, api, user_headers):
        resp = api.post(
            PERMISSIONS,
            json={"clientId": "nope", "scopes": ["read:projects"]},
            headers=user_headers,
        )
        assert resp.status_code == 400
        assert resp.json()["detail"]["error"] == "invalid_client_id"

    def test_other_users_grants_hidden(self, api, server, registered):
        client, _ = registered
        server.permissions.upsert("alice", client.client_id, ["read:projects"])
        bob = {"Authorization": f"Bearer {server.create_session('bob')}"}
        assert api.get(PERMISSIONS, headers=bob).json()["permissions"] == []

    def test_revoke_kills_live_tokens(self, api, registered, user_headers, make_token):
        client, _ = registered
        token = make_token()
        api.delete(PERMISSIONS, params={"clientId": client.client_id}, headers=user_headers)
        resp = api.get("/api/v1/cli/projects", headers={"Authorization": f"Bearer {token}"})
        assert resp.status_code == 401

    def test_requires_user(self, api):
        assert api.get(PERMISSIONS).status_code == 401

    def test_storage_failure_is_generic_500(self, api, server, user_headers, tmp_path):
        (tmp_path / "permissions.json").write_text("{corrupt")
        resp = api.get(PERMISSIONS, headers=user_headers)
        assert resp.status_code == 500
        assert resp.json()["detail"] == {
            "error": "server_error",
            "message": "Internal server error",
        }
