# Permission grant schemas.
# Created: 2026-10-13

from __future__ import annotations

from datetime import datetime

from pydantic import Field

from contextgate.api.v1.schemas.common import CamelRequestModel, CamelResponseModel


class DateRangeSchema(CamelRequestModel):
    start: str
    end: str


class FiltersSchema(CamelRequestModel):
    project_ids: list[str] | None = None
    date_range: DateRangeSchema | None = None
    data_types: list[str] | None = None


class GrantPermissionRequest(CamelRequestModel):
    client_id: str = Field(..., min_length=1)
    scopes: list[str] = Field(..., min_length=1)
    filters: FiltersSchema | None = None
    expires_in: int | None = Field(default=None, gt=0, description="Seconds")


class FiltersInfo(CamelResponseModel):
    project_ids: list[str] | None = None
    date_range: dict[str, str] | None = None
    data_types: list[str] | None = None


class PermissionInfo(CamelResponseModel):
    """Public view of a grant."""

    id: str
    client_id: str
    client_name: str | None = None
    client_description: str | None = None
    scopes: list[str]
    filters: FiltersInfo
    granted: bool
    expires_at: datetime
    granted_at: datetime
    last_used: datetime | None = None


class PermissionResponse(CamelResponseModel):
    success: bool = True
    permission: PermissionInfo


class PermissionListResponse(CamelResponseModel):
    success: bool = True
    permissions: list[PermissionInfo]


class RevokePermissionResponse(CamelResponseModel):
    success: bool = True
    revoked: int
    message: str = "Permission revoked successfully"
