"""Enums for database models."""

import enum


class ItemKind(str, enum.Enum):
    """Kind of tracked item."""

    PULL_REQUEST = "pull_request"
    ISSUE = "issue"


class ItemState(str, enum.Enum):
    """Remote state of a pull request or issue."""

    OPEN = "open"
    CLOSED = "closed"
    MERGED = "merged"

    @property
    def is_terminal(self) -> bool:
        """Closed and merged items are no longer active."""
        return self is not ItemState.OPEN


class FetchMode(str, enum.Enum):
    """How a project's listing relates to the full remote item set."""

    COMPLETE = "complete"  # Every open item is listed
    INCREMENTAL = "incremental"  # Only items updated since the cursor


class DisplayPolicy(str, enum.Enum):
    """Which items of a project surface notifications."""

    HIDE = "hide"
    MINE = "mine"
    PARTICIPATED = "participated"
    ALL = "all"


class ReviewState(str, enum.Enum):
    """Pull request review state."""

    APPROVED = "approved"
    CHANGES_REQUESTED = "changes_requested"
    COMMENTED = "commented"
    DISMISSED = "dismissed"
    PENDING = "pending"


class CheckState(str, enum.Enum):
    """Commit status context state."""

    PENDING = "pending"
    SUCCESS = "success"
    FAILURE = "failure"
    ERROR = "error"
