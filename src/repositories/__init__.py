"""Repository layer for database operations."""

from .base import BaseRepository, EntityNotFoundError, ProjectScopedRepository
from .item import ItemRepository
from .item_store import ItemStore, apply_snapshot, snapshot_from_item
from .project import CONFIGURABLE_FIELDS, ProjectRepository

__all__ = [
    "CONFIGURABLE_FIELDS",
    "BaseRepository",
    "EntityNotFoundError",
    "ItemRepository",
    "ItemStore",
    "ProjectRepository",
    "ProjectScopedRepository",
    "apply_snapshot",
    "snapshot_from_item",
]
