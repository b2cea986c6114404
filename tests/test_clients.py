# Tests for the client registry.
# Created: 2026-10-14

import json
import re
import stat

import pytest

from contextgate.auth.clients import ClientRegistry, validate_scopes
from contextgate.auth.errors import InvalidClient, InvalidScope, UnknownClient


@pytest.fixture
def registry(tmp_path):
    return ClientRegistry(tmp_path / "clients.json")


def _register(registry, **overrides):
    kwargs = {
        "name": "my-cli",
        "redirect_uri": "http://localhost:8765/callback",
        "scopes": ["read:projects"],
        "created_by": "alice",
    }
    kwargs.update(overrides)
    return registry.register(**kwargs)


class TestRegister:
    def test_credentials_shape(self, registry):
        client, secret = _register(registry)
        assert re.fullmatch(r"[0-9a-f]{32}", client.client_id)
        assert re.fullmatch(r"[0-9a-f]{64}", secret)
        assert client.created_by == "alice"

    def test_secret_not_stored(self, registry, tmp_path):
        client, secret = _register(registry)
        raw = (tmp_path / "clients.json").read_text()
        assert secret not in raw
        assert client.secret_hash in raw

    def test_ids_are_unique(self, registry):
        a, _ = _register(registry)
        b, _ = _register(registry)
        assert a.client_id != b.client_id

    def test_duplicate_scopes_collapsed(self, registry):
        client, _ = _register(registry, scopes=["read:projects", "read:projects"])
        assert client.scopes == ["read:projects"]

    def test_unknown_scope_rejected(self, registry):
        with pytest.raises(InvalidScope, match="admin"):
            _register(registry, scopes=["read:projects", "admin"])

    def test_empty_scopes_rejected(self, registry):
        with pytest.raises(InvalidScope):
            _register(registry, scopes=[])

    def test_name_required(self, registry):
        with pytest.raises(ValueError):
            _register(registry, name="")

    def test_file_permissions(self, registry, tmp_path):
        _register(registry)
        mode = (tmp_path / "clients.json").stat().st_mode
        assert mode & stat.S_IRUSR
        assert not (mode & stat.S_IRGRP)
        assert not (mode & stat.S_IROTH)

    def test_persisted_across_instances(self, registry, tmp_path):
        client, secret = _register(registry)
        reloaded = ClientRegistry(tmp_path / "clients.json")
        assert reloaded.authenticate(client.client_id, secret).name == "my-cli"


class TestLookupAndAuthenticate:
    def test_lookup(self, registry):
        client, _ = _register(registry)
        assert registry.lookup(client.client_id).redirect_uri == client.redirect_uri
        assert registry.lookup("missing") is None

    def test_require_unknown(self, registry):
        with pytest.raises(UnknownClient):
            registry.require("missing")

    def test_authenticate_ok(self, registry):
        client, secret = _register(registry)
        assert registry.authenticate(client.client_id, secret).client_id == client.client_id

    def test_authenticate_bad_secret(self, registry):
        client, _ = _register(registry)
        with pytest.raises(InvalidClient):
            registry.authenticate(client.client_id, "0" * 64)

    def test_authenticate_unknown_client(self, registry):
        with pytest.raises(InvalidClient):
            registry.authenticate("missing", "whatever")

    def test_list_clients_by_owner(self, registry):
        _register(registry, created_by="alice")
        _register(registry, created_by="bob")
        assert len(registry.list_clients()) == 2
        assert [c.created_by for c in registry.list_clients(created_by="bob")] == ["bob"]

    def test_corrupt_store_raises_storage_error(self, tmp_path):
        from contextgate.auth.errors import StorageError

        path = tmp_path / "clients.json"
        path.write_text(json.dumps({"not": "a list"}))
        with pytest.raises(StorageError):
            ClientRegistry(path).lookup("x")


class TestValidateScopes:
    def test_all_known_scopes(self):
        validate_scopes(
            [
                "read:projects",
                "read:crawls",
                "read:chunks",
                "search:chunks",
                "export:data",
                "read:metadata",
            ]
        )

    def test_message_lists_invalid(self):
        with pytest.raises(InvalidScope, match="Invalid scopes: admin, write:all"):
            validate_scopes(["write:all", "admin", "read:projects"])
