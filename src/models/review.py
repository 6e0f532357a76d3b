"""Review SQLAlchemy model."""

from datetime import datetime
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from . import Item

from sqlalchemy import DateTime, String, Text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from .base import ItemChildModel
from .enums import ReviewState


class Review(ItemChildModel):
    """Model for pull request review tracking."""

    __tablename__ = "reviews"

    remote_id: Mapped[str] = mapped_column(String(100), nullable=False)
    author: Mapped[str | None] = mapped_column(String(100), nullable=True)
    state: Mapped[ReviewState] = mapped_column(nullable=False)
    body: Mapped[str] = mapped_column(Text, default="", nullable=False)
    submitted_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )

    item: Mapped["Item"] = relationship("Item", back_populates="reviews")

    def __repr__(self) -> str:
        """Return string representation."""
        return f"<Review(id={self.id}, item_id={self.item_id}, state={self.state})>"
