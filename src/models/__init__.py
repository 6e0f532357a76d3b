"""SQLAlchemy models for the repository watch store."""

from .base import Base, BaseModel, ItemChildModel
from .comment import Comment
from .enums import (
    CheckState,
    DisplayPolicy,
    FetchMode,
    ItemKind,
    ItemState,
    ReviewState,
)
from .item import Item
from .project import Project
from .review import Review
from .status_check import StatusCheck

__all__ = [
    # Base classes
    "Base",
    "BaseModel",
    "ItemChildModel",
    # Enums
    "CheckState",
    "DisplayPolicy",
    "FetchMode",
    "ItemKind",
    "ItemState",
    "ReviewState",
    # Core models
    "Project",
    "Item",
    "Comment",
    "Review",
    "StatusCheck",
]
