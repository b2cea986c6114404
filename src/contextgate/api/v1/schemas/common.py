# Common API schemas.
# Created: 2026-10-13

from __future__ import annotations

from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel


class RequestModel(BaseModel):
    """Request body: unknown fields are rejected."""

    model_config = ConfigDict(extra="forbid")


class CamelRequestModel(RequestModel):
    """Request body whose wire names are camelCase."""

    model_config = ConfigDict(extra="forbid", alias_generator=to_camel, populate_by_name=True)


class CamelResponseModel(BaseModel):
    """Response body serialized with camelCase keys."""

    model_config = ConfigDict(
        alias_generator=to_camel, populate_by_name=True, from_attributes=True
    )

