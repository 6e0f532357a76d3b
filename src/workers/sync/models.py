"""Data models for the sync engine.

Snapshots are immutable, plain-data views of an item's last-known state. The
reconciler compares the stored snapshot of a project with freshly fetched
records and produces a ``ChangeSet`` for the store plus the ``ChangeEvent``
list that describes it. Nothing in this module touches the network or the
database.
"""

import uuid
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum
from typing import Any

from ...models.enums import CheckState, ItemKind, ItemState, ReviewState


class ChangeKind(str, Enum):
    """Kinds of change the reconciler reports."""

    ITEM_CREATED = "item_created"
    ITEM_UPDATED = "item_updated"
    ITEM_STATUS_CHANGED = "item_status_changed"
    ITEM_CLOSED = "item_closed"
    ITEM_MERGED = "item_merged"
    COMMENT_ADDED = "comment_added"


class ReconciliationAnomaly(Exception):
    """A fetched record that cannot be applied.

    Raised for malformed records and for records whose update timestamp is
    older than the stored one. The record is skipped; the rest of the cycle
    proceeds.
    """

    def __init__(self, message: str, remote_id: str | None = None):
        super().__init__(message)
        self.message = message
        self.remote_id = remote_id


def parse_timestamp(value: Any) -> datetime | None:
    """Parse an ISO 8601 timestamp into an aware UTC datetime."""
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return as_utc(value)
    if not isinstance(value, str):
        raise ValueError(f"Not a timestamp: {value!r}")
    return as_utc(datetime.fromisoformat(value.replace("Z", "+00:00")))


def as_utc(value: datetime) -> datetime:
    """Attach UTC to naive datetimes (SQLite drops the offset)."""
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value.astimezone(UTC)


def _required_timestamp(record: dict[str, Any], key: str, remote_id: str) -> datetime:
    try:
        parsed = parse_timestamp(record.get(key))
    except ValueError as e:
        raise ReconciliationAnomaly(
            f"Item {remote_id} has malformed {key}: {e}", remote_id
        ) from e
    if parsed is None:
        raise ReconciliationAnomaly(f"Item {remote_id} is missing {key}", remote_id)
    return parsed


@dataclass(frozen=True)
class CommentSnapshot:
    """A conversation comment on an item."""

    remote_id: str
    author: str | None
    body: str
    posted_at: datetime


@dataclass(frozen=True)
class ReviewSnapshot:
    """A submitted pull request review."""

    remote_id: str
    author: str | None
    state: ReviewState
    body: str
    submitted_at: datetime


@dataclass(frozen=True)
class StatusCheckSnapshot:
    """One context of the combined commit status of a pull request head."""

    context: str
    state: CheckState
    description: str | None = None
    target_url: str | None = None
    reported_at: datetime | None = None


@dataclass(frozen=True)
class ItemSnapshot:
    """Last-known state of one pull request or issue.

    Read-tracking fields are excluded from equality, so two snapshots compare
    equal exactly when the remote content is the same.
    """

    remote_id: str
    number: int
    kind: ItemKind
    title: str
    state: ItemState
    updated_at: datetime
    author: str | None = None
    created_at: datetime | None = None
    url: str | None = None
    draft: bool = False
    head_sha: str | None = None
    labels: tuple[str, ...] = ()
    requested_reviewers: tuple[str, ...] = ()
    comments: tuple[CommentSnapshot, ...] = ()
    reviews: tuple[ReviewSnapshot, ...] = ()
    status_checks: tuple[StatusCheckSnapshot, ...] = ()

    # Local read tracking
    unread: bool = field(default=False, compare=False)
    unread_comments: int = field(default=0, compare=False)

    def __str__(self) -> str:
        """Return human-readable string representation."""
        return f"ItemSnapshot({self.kind.value} #{self.number}, {self.state.value})"

    @property
    def participants(self) -> frozenset[str]:
        """Everyone who authored, commented on, reviewed or was asked to review."""
        names = {self.author, *self.requested_reviewers}
        names.update(comment.author for comment in self.comments)
        names.update(review.author for review in self.reviews)
        return frozenset(name for name in names if name)

    def display_fields(self) -> dict[str, Any]:
        """Fields whose change is reported as an update."""
        return {
            "title": self.title,
            "draft": self.draft,
            "head_sha": self.head_sha,
            "labels": self.labels,
            "requested_reviewers": self.requested_reviewers,
            "status_checks": tuple(
                (check.context, check.state) for check in self.status_checks
            ),
        }

    @classmethod
    def from_record(cls, record: Any) -> "ItemSnapshot":
        """Build a snapshot from a normalized fetch record.

        Raises:
            ReconciliationAnomaly: If the record is malformed
        """
        if not isinstance(record, dict):
            raise ReconciliationAnomaly(f"Item record is not a mapping: {record!r}")

        remote_id = record.get("remote_id")
        if not remote_id:
            raise ReconciliationAnomaly("Item record has no remote id")
        remote_id = str(remote_id)

        number = record.get("number")
        if not isinstance(number, int) or isinstance(number, bool):
            raise ReconciliationAnomaly(
                f"Item {remote_id} has no valid number", remote_id
            )

        title = record.get("title")
        if not isinstance(title, str):
            raise ReconciliationAnomaly(f"Item {remote_id} has no title", remote_id)

        try:
            kind = ItemKind(record.get("kind"))
            state = ItemState(record.get("state"))
        except ValueError as e:
            raise ReconciliationAnomaly(f"Item {remote_id}: {e}", remote_id) from e

        updated_at = _required_timestamp(record, "updated_at", remote_id)
        try:
            created_at = parse_timestamp(record.get("created_at"))
        except ValueError:
            created_at = None

        comments = []
        for raw in record.get("comments") or []:
            comments.append(
                CommentSnapshot(
                    remote_id=str(raw.get("id")),
                    author=raw.get("author"),
                    body=raw.get("body") or "",
                    posted_at=_required_timestamp(raw, "created_at", remote_id),
                )
            )

        reviews = []
        for raw in record.get("reviews") or []:
            if not raw.get("submitted_at"):
                continue  # Pending reviews are private to their author
            try:
                review_state = ReviewState(str(raw.get("state", "")).lower())
            except ValueError:
                review_state = ReviewState.COMMENTED
            reviews.append(
                ReviewSnapshot(
                    remote_id=str(raw.get("id")),
                    author=raw.get("author"),
                    state=review_state,
                    body=raw.get("body") or "",
                    submitted_at=_required_timestamp(raw, "submitted_at", remote_id),
                )
            )

        checks = []
        for raw in record.get("status_checks") or []:
            if not raw.get("context"):
                continue
            try:
                check_state = CheckState(raw.get("state"))
            except ValueError:
                check_state = CheckState.PENDING
            try:
                reported_at = parse_timestamp(raw.get("updated_at"))
            except ValueError:
                reported_at = None
            checks.append(
                StatusCheckSnapshot(
                    context=raw["context"],
                    state=check_state,
                    description=raw.get("description"),
                    target_url=raw.get("target_url"),
                    reported_at=reported_at,
                )
            )

        return cls(
            remote_id=remote_id,
            number=number,
            kind=kind,
            title=title,
            state=state,
            updated_at=updated_at,
            author=record.get("author"),
            created_at=created_at,
            url=record.get("url"),
            draft=bool(record.get("draft", False)),
            head_sha=record.get("head_sha"),
            labels=tuple(sorted(record.get("labels") or [])),
            requested_reviewers=tuple(sorted(record.get("requested_reviewers") or [])),
            comments=tuple(sorted(comments, key=lambda c: (c.posted_at, c.remote_id))),
            reviews=tuple(sorted(reviews, key=lambda r: (r.submitted_at, r.remote_id))),
            status_checks=tuple(sorted(checks, key=lambda c: c.context)),
        )


@dataclass
class ProjectSnapshot:
    """Everything the store holds for one project at one instant."""

    project_id: uuid.UUID
    cursor: str | None
    items: dict[str, ItemSnapshot] = field(default_factory=dict)


@dataclass(frozen=True)
class ItemUpsert:
    """Write instruction for one item.

    Read tracking is expressed as a delta so that an acknowledgment committed
    between snapshot load and changeset commit is never undone.
    """

    snapshot: ItemSnapshot
    mark_unread: bool = False
    added_unread_comments: int = 0


@dataclass
class ChangeSet:
    """All mutations of one reconciliation, committed atomically."""

    project_id: uuid.UUID
    new_cursor: str | None
    upserts: list[ItemUpsert] = field(default_factory=list)
    deletions: list[str] = field(default_factory=list)

    @property
    def is_empty(self) -> bool:
        """Whether no item is written or deleted."""
        return not self.upserts and not self.deletions


@dataclass(frozen=True)
class ChangeEvent:
    """One observable change to a watched item."""

    kind: ChangeKind
    project_id: uuid.UUID
    remote_id: str
    number: int
    item_kind: ItemKind
    title: str
    occurred_at: datetime
    url: str | None = None
    item_author: str | None = None
    participants: frozenset[str] = frozenset()

    # Lifecycle and update details
    old_state: ItemState | None = None
    new_state: ItemState | None = None
    changed_fields: tuple[str, ...] = ()

    # Comment or review details
    comment_id: str | None = None
    comment_author: str | None = None
    comment_kind: str | None = None  # "comment" or "review"

    def __str__(self) -> str:
        """Return human-readable string representation."""
        return f"ChangeEvent({self.kind.value} on #{self.number})"

    def get_change_summary(self) -> str:
        """Get a human-readable summary of the change."""
        noun = "Pull request" if self.item_kind is ItemKind.PULL_REQUEST else "Issue"
        label = f"{noun} #{self.number} {self.title}"
        if self.kind is ChangeKind.ITEM_CREATED:
            return f"New {noun.lower()} #{self.number} {self.title}"
        if self.kind is ChangeKind.ITEM_CLOSED:
            return f"{label} was closed"
        if self.kind is ChangeKind.ITEM_MERGED:
            return f"{label} was merged"
        if self.kind is ChangeKind.ITEM_STATUS_CHANGED:
            old = self.old_state.value if self.old_state else "unknown"
            new = self.new_state.value if self.new_state else "unknown"
            return f"{label} changed from {old} to {new}"
        if self.kind is ChangeKind.COMMENT_ADDED:
            what = "reviewed" if self.comment_kind == "review" else "commented on"
            return f"{self.comment_author or 'Someone'} {what} {label}"
        return f"{label} updated: {', '.join(self.changed_fields)}"


@dataclass
class ReconciliationResult:
    """Outcome of one reconciliation for one project."""

    project_id: uuid.UUID
    events: list[ChangeEvent] = field(default_factory=list)
    anomalies: list[ReconciliationAnomaly] = field(default_factory=list)
    new_cursor: str | None = None
    items_written: int = 0
    items_deleted: int = 0
    committed: bool = False

    def __str__(self) -> str:
        """Return human-readable string representation."""
        return (
            f"ReconciliationResult(events={len(self.events)}, "
            f"written={self.items_written}, deleted={self.items_deleted}, "
            f"anomalies={len(self.anomalies)})"
        )

    @property
    def has_changes(self) -> bool:
        """Whether the store was modified."""
        return self.items_written > 0 or self.items_deleted > 0
