# Permission grants router: create, list, revoke for the signed-in user.
# Created: 2026-10-13

from __future__ import annotations

import logging
from datetime import timedelta

from fastapi import APIRouter, Depends, HTTPException, Query, Request

from contextgate.api.deps import oauth_errors, request_context, require_user
from contextgate.api.v1.schemas.permissions import (
    FiltersInfo,
    GrantPermissionRequest,
    PermissionInfo,
    PermissionListResponse,
    PermissionResponse,
    RevokePermissionResponse,
)
from contextgate.auth.models import Client, GrantFilters, PermissionGrant

logger = logging.getLogger(__name__)

router = APIRouter(tags=["Permissions"])


def _to_info(grant: PermissionGrant, client: Client | None = None) -> PermissionInfo:
    return PermissionInfo(
        id=grant.id,
        client_id=grant.client_id,
        client_name=client.name if client else None,
        client_description=client.description if client else None,
        scopes=grant.scopes,
        filters=FiltersInfo(**grant.filters.model_dump()),
        granted=grant.granted,
        expires_at=grant.expires_at,
        granted_at=grant.granted_at,
        last_used=grant.last_used_at,
    )


@router.post("/cli/auth/permissions", response_model=PermissionResponse)
async def grant_permission(
    body: GrantPermissionRequest, request: Request, user_id: str = Depends(require_user)
):
    """Grant a client scoped access to the signed-in user's data."""
    from contextgate.auth.server import get_auth_server

    server = get_auth_server()
    filters = GrantFilters(**body.filters.model_dump()) if body.filters else None
    ttl = timedelta(seconds=body.expires_in) if body.expires_in else None
    with oauth_errors():
        grant = server.grant_permission(
            user_id=user_id,
            client_id=body.client_id,
            scopes=body.scopes,
            filters=filters,
            ttl=ttl,
            ctx=request_context(request),
        )
        client = server.registry.lookup(grant.client_id)

    logger.info("Permission granted: user %s -> client %s", user_id, body.client_id)
    return PermissionResponse(permission=_to_info(grant, client))


@router.get("/cli/auth/permissions", response_model=PermissionListResponse)
async def list_permissions(
    client_id: str | None = Query(None, alias="clientId"),
    user_id: str = Depends(require_user),
):
    """List the signed-in user's active grants."""
    from contextgate.auth.server import get_auth_server

    server = get_auth_server()
    with oauth_errors():
        pairs = server.permissions.list(user_id, client_id=client_id)
    return PermissionListResponse(permissions=[_to_info(g, c) for g, c in pairs])


@router.delete("/cli/auth/permissions", response_model=RevokePermissionResponse)
async def revoke_permission(
    request: Request,
    permission_id: str | None = Query(None, alias="permissionId"),
    client_id: str | None = Query(None, alias="clientId"),
    user_id: str = Depends(require_user),
):
    """Revoke grants by id or by client. Revoking twice is harmless."""
    from contextgate.auth.server import get_auth_server

    if not permission_id and not client_id:
        raise HTTPException(
            status_code=400,
            detail={
                "error": "invalid_request",
                "message": "Either permissionId or clientId is required",
            },
        )

    server = get_auth_server()
    with oauth_errors():
        revoked = server.revoke_permission(
            user_id,
            ctx=request_context(request),
            client_id=client_id,
            grant_id=permission_id,
        )
    logger.info("Permission revoked: user %s (%d grants)", user_id, revoked)
    return RevokePermissionResponse(revoked=revoked)
