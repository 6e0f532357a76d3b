"""Project repository with domain-specific operations."""

import uuid
from collections.abc import Iterable
from typing import Any

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from src.models import Project

from .base import BaseRepository

# Fields owned by user configuration; everything else is sync bookkeeping
CONFIGURABLE_FIELDS = frozenset(
    {
        "display_name",
        "enabled",
        "fetch_mode",
        "track_pull_requests",
        "track_issues",
        "pr_visibility",
        "issue_visibility",
    }
)


class ProjectRepository(BaseRepository[Project]):
    """Repository for Project operations."""

    def __init__(self, session: AsyncSession):
        """Initialize with session."""
        super().__init__(session, Project)

    async def get_by_full_name(self, full_name: str) -> Project | None:
        """Get project by its ``owner/name``."""
        query = select(Project).where(Project.full_name == full_name)
        return await self._execute_single_query(query)

    async def list_all(self) -> list[Project]:
        """List all projects ordered by name."""
        query = select(Project).order_by(Project.full_name)
        return await self._execute_query(query)

    async def list_enabled(self) -> list[Project]:
        """List enabled projects ordered by name."""
        query = (
            select(Project)
            .where(Project.enabled.is_(True))
            .order_by(Project.full_name)
        )
        return await self._execute_query(query)

    async def upsert(self, full_name: str, **settings: Any) -> Project:
        """Create a project or update its configurable fields.

        Sync bookkeeping (cursor, failure counters) of an existing project is
        left untouched.
        """
        unknown = set(settings) - CONFIGURABLE_FIELDS
        if unknown:
            raise ValueError(f"Unknown project settings: {sorted(unknown)}")

        project = await self.get_by_full_name(full_name)
        if project is None:
            settings.setdefault("display_name", full_name)
            return await self.create(full_name=full_name, **settings)

        for key, value in settings.items():
            setattr(project, key, value)
        await self.flush()
        return project

    async def disable_missing(self, full_names: Iterable[str]) -> int:
        """Disable every project not named, keeping its stored items."""
        keep = set(full_names)
        disabled = 0
        for project in await self.list_all():
            if project.full_name not in keep and project.enabled:
                project.enabled = False
                disabled += 1
        await self.flush()
        return disabled

    async def set_enabled(self, project_id: uuid.UUID, enabled: bool) -> Project:
        """Enable or disable a project."""
        project = await self.get_by_id_or_raise(project_id)
        project.enabled = enabled
        await self.flush()
        return project

    async def record_failure(self, project_id: uuid.UUID, reason: str) -> Project:
        """Record a failed sync cycle."""
        project = await self.get_by_id_or_raise(project_id)
        project.record_failure(reason)
        await self.flush()
        return project
