# Protected CLI resources: projects, crawls, search, export.
# Created: 2026-10-14
#
# Every handler goes through AuthorizationServer.authorize_resource before
# touching data, and records the outcome in the audit log afterwards.

from __future__ import annotations

import logging
from collections.abc import Iterator
from contextlib import contextmanager

from fastapi import APIRouter, HTTPException, Query, Request

from contextgate.api.deps import bearer_token, oauth_errors, request_context
from contextgate.api.v1.schemas.resources import (
    CrawlsResponse,
    ExportRequest,
    ExportResponse,
    ProjectsResponse,
    SearchRequest,
    SearchResponse,
)
from contextgate.auth.errors import InternalFailure
from contextgate.auth.models import RequestContext, TokenRecord

logger = logging.getLogger(__name__)

router = APIRouter(tags=["Resources"])


@contextmanager
def _provider_call(
    record: TokenRecord,
    operation: str,
    resource_type: str,
    ctx: RequestContext,
    resource_id: str | None = None,
) -> Iterator[None]:
    """Audit and hide provider failures that happen after the gate passed."""
    from contextgate.auth.server import get_auth_server

    try:
        yield
    except Exception:
        logger.exception("Resource provider failed during %s", operation)
        failure = InternalFailure()
        get_auth_server().record_access(
            record, operation, resource_type, ctx, resource_id, failure.message
        )
        raise failure.to_http() from None


@router.get("/cli/projects", response_model=ProjectsResponse)
async def list_projects(request: Request):
    """Projects visible to the calling client (requires ``read:projects``)."""
    from contextgate.auth.server import get_auth_server
    from contextgate.resources import get_resource_provider

    server = get_auth_server()
    ctx = request_context(request)
    with oauth_errors():
        record = server.authorize_resource(
            bearer_token(request), "list_projects", "read:projects", "project", ctx
        )
    with _provider_call(record, "list_projects", "project", ctx):
        projects = get_resource_provider().list_projects(
            record.user_id, server.grant_filters(record)
        )
    server.record_access(record, "list_projects", "project", ctx)
    return ProjectsResponse(projects=projects)


@router.get("/cli/crawls", response_model=CrawlsResponse)
async def list_crawls(
    request: Request,
    project_id: str | None = Query(None, alias="projectId"),
):
    """Crawls visible to the calling client (requires ``read:crawls``)."""
    from contextgate.auth.server import get_auth_server
    from contextgate.resources import get_resource_provider

    server = get_auth_server()
    ctx = request_context(request)
    with oauth_errors():
        record = server.authorize_resource(
            bearer_token(request), "list_crawls", "read:crawls", "crawl", ctx, project_id
        )
    with _provider_call(record, "list_crawls", "crawl", ctx, project_id):
        crawls = get_resource_provider().list_crawls(
            record.user_id, project_id, server.grant_filters(record)
        )
    server.record_access(record, "list_crawls", "crawl", ctx, project_id)
    return CrawlsResponse(crawls=crawls)


@router.post("/cli/search", response_model=SearchResponse)
async def search(body: SearchRequest, request: Request):
    """Search the user's data (requires ``search:chunks``)."""
    from contextgate.auth.server import get_auth_server
    from contextgate.resources import get_resource_provider

    server = get_auth_server()
    ctx = request_context(request)
    with oauth_errors():
        record = server.authorize_resource(
            bearer_token(request), "search", "search:chunks", body.scope, ctx
        )
    with _provider_call(record, "search", body.scope, ctx):
        results = get_resource_provider().search(
            record.user_id,
            body.query,
            body.scope,
            server.grant_filters(record),
            limit=body.limit,
            offset=body.offset,
        )
    server.record_access(record, "search", body.scope, ctx)
    return SearchResponse(
        query=body.query, scope=body.scope, results=results, total=len(results)
    )


@router.post("/cli/export", response_model=ExportResponse)
async def export(body: ExportRequest, request: Request):
    """Prepare an export bundle (requires ``export:data``).

    Resources outside the grant's filters are reported as not found.
    """
    from contextgate.auth.server import get_auth_server
    from contextgate.resources import get_resource_provider

    server = get_auth_server()
    ctx = request_context(request)
    with oauth_errors():
        record = server.authorize_resource(
            bearer_token(request),
            "export",
            "export:data",
            body.resource_type,
            ctx,
            body.resource_id,
        )
    with _provider_call(record, "export", body.resource_type, ctx, body.resource_id):
        bundle = get_resource_provider().export(
            record.user_id,
            body.resource_type,
            body.resource_id,
            body.format,
            server.grant_filters(record),
        )
    if bundle is None:
        message = f"{body.resource_type} not found"
        server.record_access(record, "export", body.resource_type, ctx, body.resource_id, message)
        raise HTTPException(status_code=404, detail={"error": "not_found", "message": message})
    server.record_access(record, "export", body.resource_type, ctx, body.resource_id)

    logger.info("Export prepared: %s %s", body.resource_type, body.resource_id)
    return ExportResponse(
        resource_type=body.resource_type,
        resource_id=body.resource_id,
        format=body.format,
        **bundle,
    )
