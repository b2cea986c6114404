# Resource providers: business logic behind the protected CLI endpoints.
# Created: 2026-10-13
#
# The gateway only decides *whether* a client may read a user's data; what
# the data is comes from a provider. The in-memory provider serves tests and
# local development; deployments plug in one backed by their data store.

from __future__ import annotations

import logging
import secrets
from datetime import UTC, datetime, timedelta
from typing import Any, Protocol

from contextgate.auth.models import GrantFilters

logger = logging.getLogger(__name__)


class ResourceProvider(Protocol):
    """What the protected endpoints need from the data layer."""

    def list_projects(self, user_id: str, filters: GrantFilters) -> list[dict[str, Any]]: ...

    def list_crawls(
        self, user_id: str, project_id: str | None, filters: GrantFilters
    ) -> list[dict[str, Any]]: ...

    def search(
        self,
        user_id: str,
        query: str,
        scope: str,
        filters: GrantFilters,
        limit: int = 10,
        offset: int = 0,
    ) -> list[dict[str, Any]]: ...

    def export(
        self,
        user_id: str,
        resource_type: str,
        resource_id: str,
        fmt: str,
        filters: GrantFilters,
    ) -> dict[str, Any] | None: ...


def _in_date_range(item: dict[str, Any], filters: GrantFilters) -> bool:
    if filters.date_range is None or "created_at" not in item:
        return True
    created = str(item["created_at"])
    return filters.date_range.start <= created <= filters.date_range.end


def _allowed_project(project_id: str | None, filters: GrantFilters) -> bool:
    return filters.project_ids is None or project_id in filters.project_ids


class InMemoryResourceProvider:
    """Dict-backed provider keyed by owner user id."""

    def __init__(self):
        self.projects: dict[str, list[dict[str, Any]]] = {}
        self.crawls: dict[str, list[dict[str, Any]]] = {}

    def add_project(self, user_id: str, project: dict[str, Any]) -> None:
        self.projects.setdefault(user_id, []).append(project)

    def add_crawl(self, user_id: str, crawl: dict[str, Any]) -> None:
        self.crawls.setdefault(user_id, []).append(crawl)

    def list_projects(self, user_id: str, filters: GrantFilters) -> list[dict[str, Any]]:
        return [
            p
            for p in self.projects.get(user_id, [])
            if _allowed_project(p.get("id"), filters) and _in_date_range(p, filters)
        ]

    def list_crawls(
        self, user_id: str, project_id: str | None, filters: GrantFilters
    ) -> list[dict[str, Any]]:
        return [
            c
            for c in self.crawls.get(user_id, [])
            if (project_id is None or c.get("project_id") == project_id)
            and _allowed_project(c.get("project_id"), filters)
            and _in_date_range(c, filters)
        ]

    def search(
        self,
        user_id: str,
        query: str,
        scope: str,
        filters: GrantFilters,
        limit: int = 10,
        offset: int = 0,
    ) -> list[dict[str, Any]]:
        needle = query.lower()
        results: list[dict[str, Any]] = []
        if scope in ("projects", "all"):
            for p in self.list_projects(user_id, filters):
                if needle in str(p.get("name", "")).lower():
                    results.append({"type": "project", **p})
        if scope in ("crawls", "all"):
            for c in self.list_crawls(user_id, None, filters):
                if needle in str(c.get("root_url", "")).lower():
                    results.append({"type": "crawl", **c})
        return results[offset : offset + limit]

    def export(
        self,
        user_id: str,
        resource_type: str,
        resource_id: str,
        fmt: str,
        filters: GrantFilters,
    ) -> dict[str, Any] | None:
        """Bundle one resource, or None when it is missing or outside *filters*."""
        if filters.data_types is not None and resource_type not in filters.data_types:
            return None
        if resource_type == "project":
            visible = self.list_projects(user_id, filters)
        elif resource_type == "crawl":
            visible = self.list_crawls(user_id, None, filters)
        else:
            visible = [{"id": user_id}]
        if not any(item.get("id") == resource_id for item in visible):
            return None

        bundle_id = secrets.token_hex(8)
        return {
            "bundle_id": bundle_id,
            "download_url": f"/bundles/{bundle_id}.{fmt}",
            "expires_at": (datetime.now(UTC) + timedelta(hours=24)).isoformat(),
        }


# Singleton
_provider: ResourceProvider | None = None


def get_resource_provider() -> ResourceProvider:
    global _provider
    if _provider is None:
        logger.debug("No resource provider configured, using in-memory provider")
        _provider = InMemoryResourceProvider()
    return _provider


def set_resource_provider(provider: ResourceProvider | None) -> None:
    global _provider
    _provider = provider
