"""StatusCheck SQLAlchemy model."""

from datetime import datetime
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from . import Item

from sqlalchemy import DateTime, String
from sqlalchemy.orm import Mapped, mapped_column, relationship

from .base import ItemChildModel
from .enums import CheckState


class StatusCheck(ItemChildModel):
    """Commit status context reported for a pull request head."""

    __tablename__ = "status_checks"

    context: Mapped[str] = mapped_column(String(200), nullable=False)
    state: Mapped[CheckState] = mapped_column(nullable=False)
    description: Mapped[str | None] = mapped_column(String(500), nullable=True)
    target_url: Mapped[str | None] = mapped_column(String(500), nullable=True)
    reported_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )

    item: Mapped["Item"] = relationship("Item", back_populates="status_checks")
