# Protected resource schemas.
# Created: 2026-10-13

from __future__ import annotations

from typing import Any, Literal

from pydantic import Field

from contextgate.api.v1.schemas.common import CamelRequestModel, CamelResponseModel


class SearchRequest(CamelRequestModel):
    query: str = Field(..., min_length=1)
    scope: Literal["projects", "crawls", "chunks", "all"] = "all"
    limit: int = Field(default=10, ge=1, le=100)
    offset: int = Field(default=0, ge=0)


class ExportRequest(CamelRequestModel):
    resource_type: Literal["project", "crawl", "user-data"]
    resource_id: str = Field(..., min_length=1)
    format: Literal["zip", "json", "csv"] = "zip"


class ProjectsResponse(CamelResponseModel):
    success: bool = True
    projects: list[dict[str, Any]]


class CrawlsResponse(CamelResponseModel):
    success: bool = True
    crawls: list[dict[str, Any]]


class SearchResponse(CamelResponseModel):
    success: bool = True
    query: str
    scope: str
    results: list[dict[str, Any]]
    total: int


class ExportResponse(CamelResponseModel):
    success: bool = True
    resource_type: str
    resource_id: str
    format: str
    bundle_id: str
    download_url: str
    expires_at: str
