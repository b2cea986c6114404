"""Signed, self-contained authorization codes and access tokens.

Value format: ``{prefix}{b64url(json claims)}.{b64url(hmac_sha256)}``

Codes carry ``sub`` (user id), ``cid`` (client id), ``iat`` (unix seconds) and
``jti`` (random id). Access tokens add ``scope``. The HMAC key is the server's
signing secret, so a value that decodes here was minted by this server and
has not been altered.
"""

from __future__ import annotations

import base64
import binascii
import hashlib
import hmac
import json
import secrets
from dataclasses import dataclass, field

__all__ = [
    "CODE_PREFIX",
    "TOKEN_PREFIX",
    "Claims",
    "MalformedCredential",
    "decode",
    "encode",
    "new_claims",
]

CODE_PREFIX = "cgc_"
TOKEN_PREFIX = "cgat_"


class MalformedCredential(ValueError):
    """Raised when a value cannot be decoded or its signature is wrong."""


@dataclass(frozen=True)
class Claims:
    sub: str
    cid: str
    iat: int
    jti: str
    scope: list[str] = field(default_factory=list)


def new_claims(
    user_id: str, client_id: str, issued_at: int, scope: list[str] | None = None
) -> Claims:
    return Claims(
        sub=user_id,
        cid=client_id,
        iat=issued_at,
        jti=secrets.token_urlsafe(16),
        scope=list(scope or []),
    )


def encode(claims: Claims, secret: str, prefix: str) -> str:
    body = {"sub": claims.sub, "cid": claims.cid, "iat": claims.iat, "jti": claims.jti}
    if claims.scope:
        body["scope"] = claims.scope
    payload = _b64encode(json.dumps(body, separators=(",", ":"), sort_keys=True).encode())
    return f"{prefix}{payload}.{_sign(secret, prefix + payload)}"


def decode(value: str, secret: str, prefix: str) -> Claims:
    """Verify and unpack a code or token. Raises MalformedCredential."""
    if not isinstance(value, str) or not value.startswith(prefix):
        raise MalformedCredential("wrong prefix")

    parts = value[len(prefix) :].split(".")
    if len(parts) != 2:
        raise MalformedCredential("wrong shape")
    payload, sig = parts

    if not hmac.compare_digest(sig, _sign(secret, prefix + payload)):
        raise MalformedCredential("bad signature")

    try:
        body = json.loads(_b64decode(payload))
    except (binascii.Error, UnicodeDecodeError, json.JSONDecodeError) as exc:
        raise MalformedCredential("undecodable payload") from exc

    if not isinstance(body, dict):
        raise MalformedCredential("payload is not an object")
    sub, cid, iat, jti = (body.get(k) for k in ("sub", "cid", "iat", "jti"))
    if not (isinstance(sub, str) and sub and isinstance(cid, str) and cid):
        raise MalformedCredential("missing subject or client")
    if not isinstance(iat, int) or isinstance(iat, bool):
        raise MalformedCredential("missing issue time")
    if not isinstance(jti, str) or not jti:
        raise MalformedCredential("missing id")
    scope = body.get("scope", [])
    if not isinstance(scope, list) or not all(isinstance(s, str) for s in scope):
        raise MalformedCredential("bad scope")

    return Claims(sub=sub, cid=cid, iat=iat, jti=jti, scope=scope)


def _sign(key: str, message: str) -> str:
    return _b64encode(hmac.new(key.encode(), message.encode(), hashlib.sha256).digest())


def _b64encode(raw: bytes) -> str:
    return base64.urlsafe_b64encode(raw).rstrip(b"=").decode()


def _b64decode(text: str) -> bytes:
    return base64.urlsafe_b64decode(text + "=" * (-len(text) % 4))
