"""
Factory functions for creating test data for the sync engine.

Records mirror what ``GitHubClient.fetch_project`` produces, so reconciler and
scheduler tests can feed them straight into a ``FetchResult``. Defaults are
deterministic; every field can be overridden.
"""

from datetime import UTC, datetime, timedelta
from typing import Any

from src.github.client import FetchResult
from src.models.enums import FetchMode, ItemKind

BASE_TIME = datetime(2024, 5, 1, 12, 0, tzinfo=UTC)


def iso(minutes: int = 0) -> str:
    """ISO timestamp ``minutes`` after BASE_TIME, in GitHub's Z form."""
    value = BASE_TIME + timedelta(minutes=minutes)
    return value.isoformat().replace("+00:00", "Z")


class ItemRecordFactory:
    """Factory for normalized item records."""

    @staticmethod
    def pull_request(number: int = 1, **overrides: Any) -> dict[str, Any]:
        """
        Why: Provides a valid pull request record with customizable fields
        What: Creates the dict shape the client emits for a pull request
        How: Deterministic defaults derived from the number
        """
        record: dict[str, Any] = {
            "remote_id": f"pr-{number}",
            "number": number,
            "kind": ItemKind.PULL_REQUEST.value,
            "title": f"Pull request {number}",
            "author": "alice",
            "state": "open",
            "created_at": iso(0),
            "updated_at": iso(1),
            "url": f"https://github.com/octo/widgets/pull/{number}",
            "labels": [],
            "draft": False,
            "head_sha": f"{number:040d}",
            "requested_reviewers": [],
            "comments": [],
            "reviews": [],
            "status_checks": [],
        }
        record.update(overrides)
        return record

    @staticmethod
    def issue(number: int = 100, **overrides: Any) -> dict[str, Any]:
        """
        Why: Provides a valid issue record with customizable fields
        What: Creates the dict shape the client emits for an issue
        How: Deterministic defaults derived from the number
        """
        record: dict[str, Any] = {
            "remote_id": f"issue-{number}",
            "number": number,
            "kind": ItemKind.ISSUE.value,
            "title": f"Issue {number}",
            "author": "alice",
            "state": "open",
            "created_at": iso(0),
            "updated_at": iso(1),
            "url": f"https://github.com/octo/widgets/issues/{number}",
            "labels": [],
            "draft": False,
            "head_sha": None,
            "requested_reviewers": [],
            "comments": [],
            "reviews": [],
            "status_checks": [],
        }
        record.update(overrides)
        return record

    @staticmethod
    def comment(
        comment_id: str, author: str = "bob", minutes: int = 2, body: str = "LGTM"
    ) -> dict[str, Any]:
        """Create a conversation comment entry."""
        return {
            "id": comment_id,
            "author": author,
            "created_at": iso(minutes),
            "body": body,
        }

    @staticmethod
    def review(
        review_id: str,
        author: str = "carol",
        minutes: int = 2,
        state: str = "APPROVED",
    ) -> dict[str, Any]:
        """Create a submitted review entry."""
        return {
            "id": review_id,
            "author": author,
            "submitted_at": iso(minutes),
            "state": state,
            "body": "",
        }


class FetchResultFactory:
    """Factory for FetchResult instances."""

    @staticmethod
    def complete(
        items: list[dict[str, Any]],
        new_cursor: str | None = None,
        listed_kinds: frozenset[ItemKind] = frozenset(ItemKind),
    ) -> FetchResult:
        """
        Why: Complete listings are the only ones allowed to close absent items
        What: Creates a FetchResult for a full listing of open items
        How: Marks it complete with both kinds listed by default
        """
        return FetchResult(
            items=items,
            new_cursor=new_cursor,
            rate_limit_remaining=4000,
            rate_limit_reset_at=None,
            mode=FetchMode.COMPLETE,
            complete=True,
            listed_kinds=listed_kinds,
            pages_fetched=1,
        )

    @staticmethod
    def incremental(
        items: list[dict[str, Any]], new_cursor: str | None = None
    ) -> FetchResult:
        """
        Why: Incremental listings only carry items updated since the cursor
        What: Creates an incomplete FetchResult
        How: Leaves ``complete`` False so absence means nothing
        """
        return FetchResult(
            items=items,
            new_cursor=new_cursor,
            rate_limit_remaining=4000,
            rate_limit_reset_at=None,
            mode=FetchMode.INCREMENTAL,
            complete=False,
            listed_kinds=frozenset(ItemKind),
            pages_fetched=1,
        )
