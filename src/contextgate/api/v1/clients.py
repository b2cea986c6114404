# Client registration router.
# Created: 2026-10-13

from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, Request

from contextgate.api.deps import oauth_errors, request_context, require_user
from contextgate.api.v1.schemas.clients import (
    ClientInfo,
    RegisterClientRequest,
    RegisterClientResponse,
    RegisteredClient,
)

logger = logging.getLogger(__name__)

router = APIRouter(tags=["Clients"])


@router.post("/cli/auth/register", response_model=RegisterClientResponse)
async def register_client(
    body: RegisterClientRequest, request: Request, user_id: str = Depends(require_user)
):
    """Register a CLI client. The client secret is returned only once."""
    from contextgate.auth.server import get_auth_server

    server = get_auth_server()
    with oauth_errors():
        client, secret = server.register_client(
            user_id=user_id,
            name=body.name,
            redirect_uri=body.redirect_uri,
            scopes=body.scopes,
            description=body.description,
            ctx=request_context(request),
        )

    logger.info("CLI client registered: %s (%s)", client.name, client.client_id)
    return RegisterClientResponse(
        client=RegisteredClient(
            **ClientInfo.model_validate(client).model_dump(), client_secret=secret
        )
    )


@router.get("/cli/auth/clients", response_model=list[ClientInfo])
async def list_clients(user_id: str = Depends(require_user)):
    """List clients registered by the signed-in user (no secrets)."""
    from contextgate.auth.server import get_auth_server

    server = get_auth_server()
    with oauth_errors():
        clients = server.registry.list_clients(created_by=user_id)
    return [ClientInfo.model_validate(c) for c in clients]
