"""Project SQLAlchemy model."""

from datetime import UTC, datetime
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from . import Item

from sqlalchemy import Boolean, DateTime, Integer, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from .base import BaseModel
from .enums import DisplayPolicy, FetchMode, ItemKind


class Project(BaseModel):
    """A watched remote repository and its sync bookkeeping."""

    __tablename__ = "projects"

    # Identification
    full_name: Mapped[str] = mapped_column(String(300), nullable=False)  # owner/repo
    display_name: Mapped[str] = mapped_column(String(300), nullable=False)

    # User configuration
    enabled: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    fetch_mode: Mapped[FetchMode] = mapped_column(
        default=FetchMode.INCREMENTAL, nullable=False
    )
    track_pull_requests: Mapped[bool] = mapped_column(
        Boolean, default=True, nullable=False
    )
    track_issues: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    pr_visibility: Mapped[DisplayPolicy] = mapped_column(
        default=DisplayPolicy.ALL, nullable=False
    )
    issue_visibility: Mapped[DisplayPolicy] = mapped_column(
        default=DisplayPolicy.ALL, nullable=False
    )

    # Sync state, mutated only by the scheduler
    last_synced_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    sync_cursor: Mapped[str | None] = mapped_column(String(100), nullable=True)

    # Failure tracking
    failure_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    last_failure_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    last_failure_reason: Mapped[str | None] = mapped_column(String(500), nullable=True)

    # Relationships
    items: Mapped[list["Item"]] = relationship(
        "Item", back_populates="project", cascade="all, delete-orphan"
    )

    __table_args__ = (UniqueConstraint("full_name", name="uq_project_full_name"),)

    def __repr__(self) -> str:
        """Return string representation."""
        return f"<Project(id={self.id}, full_name={self.full_name}, enabled={self.enabled})>"

    def visibility_for(self, kind: ItemKind) -> DisplayPolicy:
        """Get the display policy for an item kind."""
        if kind is ItemKind.PULL_REQUEST:
            return self.pr_visibility
        return self.issue_visibility

    def record_success(self, cursor: str | None, synced_at: datetime | None = None) -> None:
        """Record a committed sync cycle."""
        self.last_synced_at = synced_at or datetime.now(UTC)
        self.sync_cursor = cursor
        self.failure_count = 0
        self.last_failure_at = None
        self.last_failure_reason = None

    def record_failure(self, reason: str | None = None) -> None:
        """Increment failure count and update failure details."""
        self.failure_count += 1
        self.last_failure_at = datetime.now(UTC)
        if reason:
            self.last_failure_reason = reason[:500]  # Truncate if too long
