"""Base repositories shared by the store's tables."""

import uuid
from typing import Any, Generic, TypeVar

from sqlalchemy import Select, func, select
from sqlalchemy.ext.asyncio import AsyncSession

from src.models.base import BaseModel

ModelType = TypeVar("ModelType", bound=BaseModel)


class EntityNotFoundError(ValueError):
    """Raised when a row looked up by id does not exist."""

    def __init__(self, model_name: str, entity_id: uuid.UUID):
        super().__init__(f"{model_name} with id {entity_id} not found")
        self.model_name = model_name
        self.entity_id = entity_id


class BaseRepository(Generic[ModelType]):
    """Common lookups and query helpers.

    Repositories only flush; the session owner decides when to commit, so one
    sync cycle's writes can share a single transaction.
    """

    def __init__(self, session: AsyncSession, model_class: type[ModelType]):
        """Initialize repository with database session and model class."""
        self.session = session
        self.model_class = model_class

    async def create(self, **kwargs: Any) -> ModelType:
        """Add a new row and flush it so its id is usable."""
        entity = self.model_class(**kwargs)
        self.session.add(entity)
        await self.session.flush()
        return entity

    async def get_by_id(self, entity_id: uuid.UUID) -> ModelType | None:
        """Get entity by ID."""
        return await self.session.get(self.model_class, entity_id)

    async def get_by_id_or_raise(self, entity_id: uuid.UUID) -> ModelType:
        """Get entity by ID.

        Raises:
            EntityNotFoundError: If no row has this id
        """
        entity = await self.get_by_id(entity_id)
        if entity is None:
            raise EntityNotFoundError(self.model_class.__name__, entity_id)
        return entity

    async def flush(self) -> None:
        """Flush pending changes to database."""
        await self.session.flush()

    async def _execute_query(self, query: Select[tuple[ModelType]]) -> list[ModelType]:
        result = await self.session.execute(query)
        return list(result.scalars().all())

    async def _execute_single_query(
        self, query: Select[tuple[ModelType]]
    ) -> ModelType | None:
        result = await self.session.execute(query)
        return result.scalar_one_or_none()

    async def _execute_count_query(self, query: Select[tuple[int]]) -> int:
        result = await self.session.execute(query)
        return result.scalar_one()


class ProjectScopedRepository(BaseRepository[ModelType]):
    """Repository for rows owned by a project.

    The model must have a ``project_id`` column; every query built here is
    restricted to one project.
    """

    def _scoped(self, project_id: uuid.UUID) -> Select[tuple[ModelType]]:
        """Select the project's rows."""
        return select(self.model_class).where(
            self.model_class.project_id == project_id  # type: ignore[attr-defined]
        )

    async def count_for_project(self, project_id: uuid.UUID) -> int:
        """Count the project's rows."""
        query = select(func.count(self.model_class.id)).where(
            self.model_class.project_id == project_id  # type: ignore[attr-defined]
        )
        return await self._execute_count_query(query)
