"""Item SQLAlchemy model (pull request or issue)."""

import uuid
from datetime import datetime
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from . import Comment, Project, Review, StatusCheck

from sqlalchemy import (
    JSON,
    Boolean,
    DateTime,
    ForeignKey,
    Integer,
    String,
    UniqueConstraint,
    Uuid,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from .base import BaseModel
from .enums import ItemKind, ItemState


class Item(BaseModel):
    """Last-known state of a tracked pull request or issue."""

    __tablename__ = "items"

    project_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("projects.id", ondelete="CASCADE"), nullable=False
    )

    # Remote identity and display fields
    remote_id: Mapped[str] = mapped_column(String(100), nullable=False)
    number: Mapped[int] = mapped_column(Integer, nullable=False)
    kind: Mapped[ItemKind] = mapped_column(nullable=False)
    title: Mapped[str] = mapped_column(String(500), nullable=False)
    author: Mapped[str | None] = mapped_column(String(100), nullable=True)
    state: Mapped[ItemState] = mapped_column(nullable=False)
    url: Mapped[str | None] = mapped_column(String(500), nullable=True)
    draft: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    head_sha: Mapped[str | None] = mapped_column(String(40), nullable=True)
    labels: Mapped[list[str]] = mapped_column(JSON, default=list, nullable=False)
    requested_reviewers: Mapped[list[str]] = mapped_column(
        JSON, default=list, nullable=False
    )
    remote_created_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    remote_updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False
    )

    # Local read tracking
    unread: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    unread_comments: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    last_seen_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )

    # Relationships
    project: Mapped["Project"] = relationship("Project", back_populates="items")
    comments: Mapped[list["Comment"]] = relationship(
        "Comment", back_populates="item", cascade="all, delete-orphan"
    )
    reviews: Mapped[list["Review"]] = relationship(
        "Review", back_populates="item", cascade="all, delete-orphan"
    )
    status_checks: Mapped[list["StatusCheck"]] = relationship(
        "StatusCheck", back_populates="item", cascade="all, delete-orphan"
    )

    __table_args__ = (
        UniqueConstraint("project_id", "remote_id", name="uq_item_project_remote"),
    )

    def __repr__(self) -> str:
        """Return string representation."""
        return (
            f"<Item(id={self.id}, project_id={self.project_id}, "
            f"number={self.number}, state={self.state})>"
        )
