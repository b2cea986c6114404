# CLI OAuth router: authorize, consent, token, revoke.
# Created: 2026-10-13

from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, Query, Request
from fastapi.responses import JSONResponse, RedirectResponse

from contextgate.api.deps import (
    current_user,
    oauth_errors,
    rate_limit_ip,
    request_context,
    require_user,
)
from contextgate.api.v1.schemas.oauth import (
    ConsentRequest,
    ConsentResponse,
    RevokeRequest,
    TokenRequest,
    TokenResponse,
)
from contextgate.auth.errors import AccessDenied

logger = logging.getLogger(__name__)

router = APIRouter(tags=["OAuth"])


@router.get("/cli/auth/authorize", dependencies=[Depends(rate_limit_ip)])
async def authorize(
    request: Request,
    client_id: str = Query(..., min_length=1),
    redirect_uri: str = Query(..., min_length=1),
    scope: str = Query(..., min_length=1),
    state: str | None = Query(None),
):
    """Start the authorization-code flow.

    Redirects to login, to consent, or back to the client with a code.
    """
    from contextgate.auth.server import get_auth_server

    server = get_auth_server()
    with oauth_errors():
        result = server.authorize(
            client_id=client_id,
            redirect_uri=redirect_uri,
            scope=scope,
            state=state,
            user_id=current_user(request),
            ctx=request_context(request),
            return_to=str(request.url),
        )
    return RedirectResponse(result.redirect_to, status_code=302)


@router.post(
    "/cli/auth/authorize",
    response_model=ConsentResponse,
    dependencies=[Depends(rate_limit_ip)],
)
async def authorize_consent(
    body: ConsentRequest, request: Request, user_id: str = Depends(require_user)
):
    """Record the user's consent decision and issue a code when granted."""
    from contextgate.auth.server import get_auth_server

    server = get_auth_server()
    with oauth_errors():
        try:
            code = server.consent(
                user_id=user_id,
                client_id=body.client_id,
                redirect_uri=body.redirect_uri,
                scope=body.scope,
                decision=body.user_decision,
                ctx=request_context(request),
            )
        except AccessDenied as exc:
            return JSONResponse(
                status_code=exc.status_code,
                content={
                    "success": False,
                    "error": exc.code,
                    "message": exc.message,
                    "redirect_uri": body.redirect_uri,
                    "state": body.state,
                },
            )

    return ConsentResponse(
        success=True,
        authorization_code=code,
        redirect_uri=body.redirect_uri,
        state=body.state,
    )


@router.post(
    "/cli/auth/token", response_model=TokenResponse, dependencies=[Depends(rate_limit_ip)]
)
async def token_exchange(body: TokenRequest, request: Request):
    """Exchange an authorization code for a bearer token."""
    from contextgate.auth.server import get_auth_server

    server = get_auth_server()
    with oauth_errors():
        result = server.exchange(
            client_id=body.client_id,
            client_secret=body.client_secret,
            code=body.code,
            grant_type=body.grant_type,
            ctx=request_context(request),
        )
    return TokenResponse(**result)


@router.post("/cli/auth/revoke", dependencies=[Depends(rate_limit_ip)])
async def revoke_token(body: RevokeRequest):
    """Revoke an access token before it expires."""
    from contextgate.auth.server import get_auth_server

    server = get_auth_server()
    with oauth_errors():
        revoked = server.revoke_token(body.token)
    return {"revoked": revoked}
