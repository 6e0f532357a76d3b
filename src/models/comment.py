"""Comment SQLAlchemy model."""

from datetime import datetime
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from . import Item

from sqlalchemy import DateTime, String, Text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from .base import ItemChildModel


class Comment(ItemChildModel):
    """Conversation comment on an item."""

    __tablename__ = "comments"

    remote_id: Mapped[str] = mapped_column(String(100), nullable=False)
    author: Mapped[str | None] = mapped_column(String(100), nullable=True)
    body: Mapped[str] = mapped_column(Text, default="", nullable=False)
    posted_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )

    item: Mapped["Item"] = relationship("Item", back_populates="comments")
