# Tests for user session tokens.
# Created: 2026-10-14

import pytest

from contextgate.security.session_tokens import create_session_token, verify_session_token

SECRET = "session-secret"


def test_roundtrip():
    token = create_session_token("alice", SECRET)
    assert verify_session_token(token, SECRET) == "alice"


def test_expired():
    token = create_session_token("alice", SECRET, ttl_hours=-1)
    assert verify_session_token(token, SECRET) is None


def test_wrong_secret():
    token = create_session_token("alice", SECRET)
    assert verify_session_token(token, "rotated") is None


def test_forged_user():
    token = create_session_token("alice", SECRET)
    _, expires, sig = token.split(":")
    assert verify_session_token(f"mallory:{expires}:{sig}", SECRET) is None


@pytest.mark.parametrize("token", ["", "alice", "alice:notanumber:sig", "a:b:c:d"])
def test_malformed(token):
    assert verify_session_token(token, SECRET) is None


@pytest.mark.parametrize("user_id", ["", "a:b"])
def test_bad_user_id(user_id):
    with pytest.raises(ValueError):
        create_session_token(user_id, SECRET)
