# Delegated-authorization data models.
# Created: 2026-10-12

from __future__ import annotations

import uuid
from dataclasses import dataclass
from datetime import UTC, datetime
from enum import Enum

from pydantic import BaseModel, Field

# Recognized scope enumeration, shared by registration and consent.
VALID_SCOPES = frozenset(
    {
        "read:projects",
        "read:crawls",
        "read:chunks",
        "search:chunks",
        "export:data",
        "read:metadata",
    }
)

GRANT_TYPE_AUTHORIZATION_CODE = "authorization_code"


def _utcnow() -> datetime:
    return datetime.now(UTC)


def _new_id() -> str:
    return uuid.uuid4().hex


def parse_scopes(scope: str | list[str] | None) -> list[str]:
    """Split a scope string on commas and whitespace, dropping duplicates."""
    if scope is None:
        return []
    if isinstance(scope, str):
        scope = scope.replace(",", " ").split()
    seen: list[str] = []
    for s in scope:
        s = s.strip()
        if s and s not in seen:
            seen.append(s)
    return seen


class Client(BaseModel):
    """Registered integration. The plaintext secret is never stored."""

    id: str = Field(default_factory=_new_id)
    client_id: str
    secret_hash: str
    name: str
    description: str = ""
    redirect_uri: str
    scopes: list[str]
    created_by: str | None = None
    created_at: datetime = Field(default_factory=_utcnow)


class DateRange(BaseModel):
    start: str
    end: str


class GrantFilters(BaseModel):
    """Optional restrictions a user attaches to a grant."""

    project_ids: list[str] | None = None
    date_range: DateRange | None = None
    data_types: list[str] | None = None


class PermissionGrant(BaseModel):
    """A user's consent decision for one client."""

    id: str = Field(default_factory=_new_id)
    user_id: str
    client_id: str
    scopes: list[str]
    filters: GrantFilters = Field(default_factory=GrantFilters)
    granted: bool = True
    expires_at: datetime
    granted_at: datetime = Field(default_factory=_utcnow)
    last_used_at: datetime | None = None
    is_active: bool = True

    def is_live(self, now: datetime) -> bool:
        """Active and not yet expired, whatever the decision was."""
        return self.is_active and now < self.expires_at

    def is_usable(self, now: datetime) -> bool:
        return self.granted and self.is_live(now)


class TokenRecord(BaseModel):
    """Issued access token, keyed by its token id for revocation."""

    jti: str
    user_id: str
    client_id: str
    scopes: list[str]
    issued_at: datetime
    expires_at: datetime
    revoked: bool = False


class AuditRecord(BaseModel):
    """One append-only audit entry."""

    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    user_id: str | None = None
    client_id: str | None = None
    action: str
    resource_type: str
    resource_id: str | None = None
    endpoint: str
    ip_address: str | None = None
    user_agent: str | None = None
    success: bool
    error_message: str | None = None
    timestamp: datetime = Field(default_factory=_utcnow)


class AuthorizeStep(str, Enum):
    LOGIN = "login"
    CONSENT = "consent"
    CODE = "code"


@dataclass
class AuthorizeResult:
    """Outcome of an authorize request that did not fail."""

    step: AuthorizeStep
    redirect_to: str
    code: str | None = None


@dataclass
class RequestContext:
    """Caller details copied into audit records."""

    endpoint: str
    ip_address: str | None = None
    user_agent: str | None = None
