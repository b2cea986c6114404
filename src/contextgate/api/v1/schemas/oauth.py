# Authorization and token schemas.
# Created: 2026-10-13

from __future__ import annotations

from pydantic import BaseModel, Field, StrictBool

from contextgate.api.v1.schemas.common import CamelRequestModel, RequestModel


class ConsentRequest(RequestModel):
    """User decision posted by the consent page."""

    client_id: str = Field(..., min_length=1)
    redirect_uri: str = Field(..., min_length=1)
    scope: str = Field(..., min_length=1)
    state: str | None = None
    user_decision: StrictBool


class ConsentResponse(BaseModel):
    success: bool
    authorization_code: str | None = None
    redirect_uri: str
    state: str | None = None


class TokenRequest(CamelRequestModel):
    """Code exchange request (camelCase on the wire)."""

    client_id: str = Field(..., min_length=1)
    client_secret: str = Field(..., min_length=1)
    code: str = Field(..., min_length=1)
    grant_type: str = Field(..., min_length=1)


class TokenResponse(BaseModel):
    access_token: str
    token_type: str = "Bearer"
    expires_in: int
    scope: str


class RevokeRequest(RequestModel):
    token: str = Field(..., min_length=1)
