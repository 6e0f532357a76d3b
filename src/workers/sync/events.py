"""Callbacks the sync engine makes towards its host application.

A host subclasses ``SyncEventListener`` and overrides what it cares about;
every hook defaults to doing nothing. The listener is also a notification
sink, so notifications reach the host through ``deliver``.
"""

import uuid
from dataclasses import dataclass, field
from datetime import datetime
from typing import TYPE_CHECKING

from ...github.exceptions import AuthError
from .notifications import Notification, NotificationDeliveryError, NotificationSink
from .registry import WatchedProject

if TYPE_CHECKING:
    from .scheduler import SweepResult


@dataclass(frozen=True)
class BadgeCounts:
    """Unread item counts, per project and in total."""

    per_project: dict[uuid.UUID, int] = field(default_factory=dict)

    @property
    def total(self) -> int:
        """Unread items across all projects."""
        return sum(self.per_project.values())

    def for_project(self, project_id: uuid.UUID) -> int:
        """Unread items of one project."""
        return self.per_project.get(project_id, 0)


class SyncEventListener(NotificationSink):
    """Receives everything the engine reports; all hooks are optional."""

    async def deliver(self, notification: Notification) -> None:
        """A notification passed display policy and rate limiting."""
        pass

    async def on_delivery_failure(self, error: NotificationDeliveryError) -> None:
        """A notification sink failed."""
        pass

    async def on_badge_counts(self, counts: BadgeCounts) -> None:
        """Unread counts changed."""
        pass

    async def on_activity_changed(self, in_flight: int) -> None:
        """The number of in-flight fetches changed."""
        pass

    async def on_project_health(
        self, project: WatchedProject, failing: bool, reason: str | None
    ) -> None:
        """A project started or stopped failing persistently."""
        pass

    async def on_auth_failure(self, error: AuthError) -> None:
        """The credential was rejected or is missing; syncing is halted."""
        pass

    async def on_rate_limit_deferred(self, until: datetime) -> None:
        """Sweeps are deferred for longer than the notice threshold."""
        pass

    async def on_sweep_complete(self, result: "SweepResult") -> None:
        """Every project of a sweep finished, failed or was skipped."""
        pass
