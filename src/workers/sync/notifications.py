"""Notification emission for committed change events.

The emitter receives the events of one committed reconciliation, drops the
ones the project's display policy hides, folds several new comments on the
same item into one notification, holds back items that notify too often, and
hands the rest to every registered sink. A failing sink never affects the
store: the failure is logged and reported in the ``EmissionResult``.
"""

import logging
import time
import uuid
from abc import ABC, abstractmethod
from collections import deque
from collections.abc import Callable, Iterable
from dataclasses import dataclass, field
from datetime import datetime

from ...models.enums import DisplayPolicy, ItemKind
from .models import ChangeEvent, ChangeKind
from .registry import WatchedProject

logger = logging.getLogger(__name__)


class NotificationDeliveryError(Exception):
    """A sink failed to deliver a notification."""

    def __init__(self, message: str, notification: "Notification", sink: str):
        super().__init__(message)
        self.notification = notification
        self.sink = sink


@dataclass(frozen=True)
class Notification:
    """User-facing message about one item."""

    project_id: uuid.UUID
    project_name: str
    remote_id: str
    number: int
    item_kind: ItemKind
    title: str
    change_kind: ChangeKind
    message: str
    occurred_at: datetime
    url: str | None = None
    count: int = 1  # Events folded into this notification

    def __str__(self) -> str:
        """Return human-readable string representation."""
        return f"[{self.project_name}] {self.message}"


class NotificationSink(ABC):
    """Destination for notifications."""

    @abstractmethod
    async def deliver(self, notification: Notification) -> None:
        """Deliver one notification.

        Raises:
            Exception: Any failure; the emitter records it
        """
        pass


class LoggingNotificationSink(NotificationSink):
    """Writes notifications to the log."""

    def __init__(self, log: logging.Logger | None = None):
        self.log = log or logger

    async def deliver(self, notification: Notification) -> None:
        """Log the notification at INFO level."""
        self.log.info(f"Notification: {notification}")


@dataclass
class EmissionResult:
    """What happened to one batch of events."""

    delivered: list[Notification] = field(default_factory=list)
    suppressed: int = 0  # Hidden by display policy or disabled notifications
    rate_limited: int = 0
    failures: list[NotificationDeliveryError] = field(default_factory=list)

    @property
    def has_failures(self) -> bool:
        """Whether any sink failed."""
        return bool(self.failures)


def _noun(kind: ItemKind) -> str:
    return "pull request" if kind is ItemKind.PULL_REQUEST else "issue"


class NotificationEmitter:
    """Turns change events into notifications and delivers them."""

    def __init__(
        self,
        sinks: Iterable[NotificationSink] = (),
        viewer_login: str | None = None,
        enabled: bool = True,
        noisy_item_window_seconds: float = 300,
        max_notifications_per_item: int = 5,
        clock: Callable[[], float] = time.monotonic,
    ):
        """Initialize the emitter.

        Args:
            sinks: Delivery destinations
            viewer_login: Local user's login, needed by the mine and
                participated display policies
            enabled: Whether to deliver anything at all
            noisy_item_window_seconds: Window of the per-item limit
            max_notifications_per_item: Notifications allowed per item per window
            clock: Monotonic time source
        """
        self.sinks = list(sinks)
        self.viewer_login = viewer_login
        self.enabled = enabled
        self.noisy_item_window_seconds = noisy_item_window_seconds
        self.max_notifications_per_item = max_notifications_per_item
        self.clock = clock
        self._recent: dict[tuple[uuid.UUID, str], deque[float]] = {}

    def add_sink(self, sink: NotificationSink) -> None:
        """Register another delivery destination."""
        self.sinks.append(sink)

    def is_visible(self, project: WatchedProject, event: ChangeEvent) -> bool:
        """Apply the project's display policy to an event."""
        policy = project.visibility_for(event.item_kind)
        if policy is DisplayPolicy.ALL:
            return True
        if policy is DisplayPolicy.HIDE or not self.viewer_login:
            return False

        viewer = self.viewer_login.lower()
        author = (event.item_author or "").lower()
        if policy is DisplayPolicy.MINE:
            return author == viewer
        return author == viewer or viewer in {
            name.lower() for name in event.participants
        }

    def build(
        self, project: WatchedProject, events: list[ChangeEvent]
    ) -> tuple[list[Notification], int]:
        """Build notifications for the visible events.

        New comments on the same item collapse into one notification placed
        where the first of them was.

        Returns:
            Notifications in event order and the number of hidden events
        """
        notifications: list[Notification] = []
        comment_groups: dict[str, list[ChangeEvent]] = {}
        comment_slots: dict[str, int] = {}
        hidden = 0

        for event in events:
            if not self.is_visible(project, event):
                hidden += 1
                continue

            if event.kind is ChangeKind.COMMENT_ADDED:
                group = comment_groups.setdefault(event.remote_id, [])
                if not group:
                    comment_slots[event.remote_id] = len(notifications)
                    notifications.append(self._notification(project, event))
                group.append(event)
                continue

            notifications.append(self._notification(project, event))

        for remote_id, group in comment_groups.items():
            if len(group) > 1:
                slot = comment_slots[remote_id]
                notifications[slot] = self._comment_digest(project, group)

        return notifications, hidden

    def _notification(self, project: WatchedProject, event: ChangeEvent) -> Notification:
        return Notification(
            project_id=project.id,
            project_name=project.display_name,
            remote_id=event.remote_id,
            number=event.number,
            item_kind=event.item_kind,
            title=event.title,
            change_kind=event.kind,
            message=event.get_change_summary(),
            occurred_at=event.occurred_at,
            url=event.url,
        )

    def _comment_digest(
        self, project: WatchedProject, group: list[ChangeEvent]
    ) -> Notification:
        first, last = group[0], group[-1]
        return Notification(
            project_id=project.id,
            project_name=project.display_name,
            remote_id=first.remote_id,
            number=first.number,
            item_kind=first.item_kind,
            title=first.title,
            change_kind=ChangeKind.COMMENT_ADDED,
            message=(
                f"{len(group)} new comments on {_noun(first.item_kind)} "
                f"#{first.number} {first.title}"
            ),
            occurred_at=last.occurred_at,
            url=first.url,
            count=len(group),
        )

    def _forget_quiet_items(self) -> None:
        """Drop the history of items with nothing left in their window."""
        now = self.clock()
        for key in list(self._recent):
            recent = self._recent[key]
            while recent and now - recent[0] >= self.noisy_item_window_seconds:
                recent.popleft()
            if not recent:
                del self._recent[key]

    def _admit(self, notification: Notification) -> bool:
        """Apply the per-item limit, recording the notification if admitted."""
        now = self.clock()
        key = (notification.project_id, notification.remote_id)
        recent = self._recent.setdefault(key, deque())
        while recent and now - recent[0] >= self.noisy_item_window_seconds:
            recent.popleft()
        if len(recent) >= self.max_notifications_per_item:
            return False
        recent.append(now)
        return True

    async def emit(
        self, project: WatchedProject, events: list[ChangeEvent]
    ) -> EmissionResult:
        """Deliver notifications for a committed batch of events."""
        result = EmissionResult()
        if not events:
            return result

        if not self.enabled:
            result.suppressed = len(events)
            return result

        self._forget_quiet_items()
        notifications, result.suppressed = self.build(project, events)
        for notification in notifications:
            if not self._admit(notification):
                result.rate_limited += 1
                logger.info(
                    f"Holding back notification for {project.full_name} "
                    f"#{notification.number}: item is notifying too often"
                )
                continue
            await self._deliver(notification, result)

        if result.suppressed:
            logger.debug(
                f"{result.suppressed} event(s) for {project.full_name} hidden "
                "by display policy"
            )
        return result

    async def _deliver(self, notification: Notification, result: EmissionResult) -> None:
        delivered = True
        for sink in self.sinks:
            try:
                await sink.deliver(notification)
            except Exception as e:
                delivered = False
                sink_name = type(sink).__name__
                logger.error(
                    f"Notification sink {sink_name} failed for "
                    f"#{notification.number}: {e}",
                    exc_info=True,
                )
                result.failures.append(
                    NotificationDeliveryError(str(e), notification, sink_name)
                )
        if delivered:
            result.delivered.append(notification)
