# Shared FastAPI dependencies for the API layer.
# Created: 2026-10-13

from __future__ import annotations

import logging
from collections.abc import Iterator
from contextlib import contextmanager

from fastapi import HTTPException, Request

from contextgate.auth.errors import InternalFailure, OAuthError, StorageError, Unauthenticated
from contextgate.auth.models import RequestContext
from contextgate.security.session_tokens import SESSION_COOKIE

logger = logging.getLogger(__name__)


def request_context(request: Request) -> RequestContext:
    """Caller details for audit records."""
    return RequestContext(
        endpoint=request.url.path,
        ip_address=request.client.host if request.client else None,
        user_agent=request.headers.get("user-agent"),
    )


def bearer_token(request: Request) -> str | None:
    auth_header = request.headers.get("Authorization", "")
    if not auth_header.startswith("Bearer "):
        return None
    return auth_header.removeprefix("Bearer ").strip() or None


def current_user(request: Request) -> str | None:
    """The signed-in end user, from the session cookie or a Bearer session token."""
    from contextgate.auth.server import get_auth_server

    server = get_auth_server()
    token = request.cookies.get(SESSION_COOKIE) or bearer_token(request)
    return server.user_from_session(token)


def require_user(request: Request) -> str:
    """FastAPI dependency for endpoints that need a signed-in user.

    Usage::

        @router.get("/cli/auth/permissions")
        async def list_permissions(user_id: str = Depends(require_user)): ...
    """
    user_id = current_user(request)
    if user_id is None:
        raise Unauthenticated("Unauthorized").to_http()
    return user_id


def rate_limit_ip(request: Request) -> None:
    """Per-IP throttle for the unauthenticated OAuth endpoints."""
    from contextgate.security.rate_limiter import auth_limiter

    client_ip = request.client.host if request.client else "unknown"
    info = auth_limiter.check(client_ip)
    if not info.allowed:
        raise HTTPException(
            status_code=429,
            detail={"error": "rate_limited", "message": "Too many requests"},
            headers=info.headers(),
        )


@contextmanager
def oauth_errors() -> Iterator[None]:
    """Translate domain errors into HTTP errors at the router seam.

    Storage failures are logged with detail and answered with a bare 500.
    """
    try:
        yield
    except OAuthError as exc:
        raise exc.to_http() from None
    except StorageError:
        logger.exception("Persistence failure")
        raise InternalFailure().to_http() from None

