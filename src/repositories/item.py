"""Item repository with domain-specific operations."""

import uuid
from collections.abc import Collection
from datetime import datetime

from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from src.models import Item

from .base import ProjectScopedRepository


class ItemRepository(ProjectScopedRepository[Item]):
    """Repository for Item operations."""

    def __init__(self, session: AsyncSession):
        """Initialize with session."""
        super().__init__(session, Item)

    async def list_for_project(
        self,
        project_id: uuid.UUID,
        remote_ids: Collection[str] | None = None,
    ) -> list[Item]:
        """List a project's items with comments, reviews and status checks loaded.

        Args:
            project_id: Project to list
            remote_ids: Restrict to these remote ids when given
        """
        query = (
            self._scoped(project_id)
            .options(
                selectinload(Item.comments),
                selectinload(Item.reviews),
                selectinload(Item.status_checks),
            )
            .order_by(Item.number)
        )
        if remote_ids is not None:
            query = query.where(Item.remote_id.in_(list(remote_ids)))
        return await self._execute_query(query)

    async def get_by_remote_id(
        self, project_id: uuid.UUID, remote_id: str
    ) -> Item | None:
        """Get item by project and remote id."""
        query = self._scoped(project_id).where(Item.remote_id == remote_id)
        return await self._execute_single_query(query)

    async def unread_counts(self) -> dict[uuid.UUID, int]:
        """Count unread items per project; projects without any are omitted."""
        query = (
            select(Item.project_id, func.count(Item.id))
            .where(Item.unread.is_(True))
            .group_by(Item.project_id)
        )
        result = await self.session.execute(query)
        return {project_id: count for project_id, count in result.all()}

    async def mark_seen(
        self,
        project_id: uuid.UUID,
        seen_at: datetime,
        remote_id: str | None = None,
    ) -> int:
        """Clear the unread state of one item, or of every item in the project.

        Returns:
            Number of items that were unread
        """
        query = (
            update(Item)
            .where(Item.project_id == project_id, Item.unread.is_(True))
            .values(unread=False, unread_comments=0, last_seen_at=seen_at)
        )
        if remote_id is not None:
            query = query.where(Item.remote_id == remote_id)
        result = await self.session.execute(query)
        return result.rowcount or 0
