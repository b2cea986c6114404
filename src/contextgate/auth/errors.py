# Error taxonomy for the delegated-authorization flow.
# Created: 2026-10-12
#
# Each error carries a stable machine code and the HTTP status the router
# layer answers with. Messages are safe to show to external callers.

from __future__ import annotations

from fastapi import HTTPException


class OAuthError(Exception):
    """Base class for every failure surfaced to clients."""

    code = "server_error"
    status_code = 500
    default_message = "Internal server error"

    def __init__(self, message: str | None = None, headers: dict[str, str] | None = None):
        self.message = message or self.default_message
        self.headers = dict(headers or {})
        super().__init__(self.message)

    def to_http(self) -> HTTPException:
        headers = dict(self.headers)
        if self.status_code == 401:
            headers.setdefault("WWW-Authenticate", "Bearer")
        return HTTPException(
            status_code=self.status_code,
            detail={"error": self.code, "message": self.message},
            headers=headers or None,
        )


class UnknownClient(OAuthError):
    code = "invalid_client_id"
    status_code = 400
    default_message = "Invalid client_id"


class RedirectMismatch(OAuthError):
    code = "invalid_redirect_uri"
    status_code = 400
    default_message = "Invalid redirect_uri"


class InvalidScope(OAuthError):
    code = "invalid_scope"
    status_code = 400
    default_message = "Invalid scopes"


class ScopeNotAllowed(InvalidScope):
    default_message = "Invalid scopes for this client"


class UnsupportedGrant(OAuthError):
    code = "unsupported_grant_type"
    status_code = 400
    default_message = "Unsupported grant type. Only authorization_code is supported"


class InvalidClient(OAuthError):
    code = "invalid_client"
    status_code = 401
    default_message = "Invalid client credentials"


class InvalidCode(OAuthError):
    code = "invalid_code"
    status_code = 400
    default_message = "Invalid authorization code"


class CodeExpired(InvalidCode):
    code = "code_expired"
    default_message = "Authorization code expired"


class ClientMismatch(InvalidCode):
    code = "client_mismatch"
    default_message = "Authorization code was issued to another client"


class CodeAlreadyUsed(InvalidCode):
    code = "code_already_used"
    default_message = "Authorization code already used"


class AccessNotGranted(OAuthError):
    code = "access_not_granted"
    status_code = 403
    default_message = "Access not granted"


class AccessDenied(AccessNotGranted):
    code = "access_denied"
    default_message = "Access denied by user"


class RateLimited(OAuthError):
    code = "rate_limited"
    status_code = 429
    default_message = "Rate limit exceeded"


class Unauthenticated(OAuthError):
    code = "unauthenticated"
    status_code = 401
    default_message = "Missing or invalid credentials"


class InternalFailure(OAuthError):
    pass


class StorageError(Exception):
    """Persistence failure. Never shown to callers as-is."""
