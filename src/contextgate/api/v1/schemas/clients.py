# Client registration schemas.
# Created: 2026-10-13

from __future__ import annotations

from datetime import datetime

from pydantic import Field

from contextgate.api.v1.schemas.common import CamelRequestModel, CamelResponseModel


class RegisterClientRequest(CamelRequestModel):
    name: str = Field(..., min_length=1, max_length=100)
    description: str = Field(default="", max_length=500)
    redirect_uri: str = Field(..., min_length=1)
    scopes: list[str] = Field(..., min_length=1)


class ClientInfo(CamelResponseModel):
    """Client record without credentials."""

    id: str
    name: str
    description: str
    client_id: str
    redirect_uri: str
    scopes: list[str]
    created_at: datetime


class RegisteredClient(ClientInfo):
    """Registration result; the secret is shown once."""

    client_secret: str


class RegisterClientResponse(CamelResponseModel):
    success: bool = True
    client: RegisteredClient
