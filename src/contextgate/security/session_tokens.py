"""HMAC-based stateless user session tokens with TTL.

Token format: ``{user_id}:{expires_unix}:{hex_hmac}``

Minted by the login collaborator once a user has signed in; the API reads
them from the ``contextgate_session`` cookie or an ``Authorization: Bearer``
header on user-facing endpoints (authorize, consent, register, permissions).
Rotating the signing secret invalidates every outstanding session.
"""

import hashlib
import hmac
import time

__all__ = ["SESSION_COOKIE", "create_session_token", "verify_session_token"]

SESSION_COOKIE = "contextgate_session"


def create_session_token(user_id: str, secret: str, ttl_hours: int = 24) -> str:
    """Issue a session token for *user_id* that expires after *ttl_hours*."""
    if not user_id or ":" in user_id:
        raise ValueError("user_id must be non-empty and contain no ':'")
    expires = int(time.time()) + ttl_hours * 3600
    sig = _sign(secret, f"{user_id}:{expires}")
    return f"{user_id}:{expires}:{sig}"


def verify_session_token(token: str, secret: str) -> str | None:
    """Return the user id if the token is valid and not expired."""
    parts = token.split(":")
    if len(parts) != 3:
        return None

    user_id, expires_str, sig = parts
    try:
        expires = int(expires_str)
    except ValueError:
        return None

    if not user_id or time.time() > expires:
        return None

    expected = _sign(secret, f"{user_id}:{expires_str}")
    if not hmac.compare_digest(sig, expected):
        return None
    return user_id


def _sign(key: str, message: str) -> str:
    return hmac.new(key.encode(), message.encode(), hashlib.sha256).hexdigest()
