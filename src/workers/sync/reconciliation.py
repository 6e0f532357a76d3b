"""Reconciliation of fetched records against the item store.

``Reconciler.diff`` is a pure function of the stored snapshot and the fetch
result; it decides every store mutation and every change event of the cycle.
``Reconciler.reconcile`` loads the snapshot, diffs, commits the changeset in
one transaction and only then returns the events.

Event order for one item is: lifecycle event (created, closed, merged or
status change), then the field update, then one event per new comment or
review in posting order. Items closed because they vanished from a complete
listing come after all listed items.
"""

import logging
import uuid
from collections.abc import Callable
from dataclasses import dataclass, field, replace
from datetime import UTC, datetime
from typing import Any

from ...github.client import FetchResult
from ...models.enums import ItemState
from ...repositories.item_store import ItemStore
from .models import (
    ChangeEvent,
    ChangeKind,
    ChangeSet,
    CommentSnapshot,
    ItemSnapshot,
    ItemUpsert,
    ReconciliationAnomaly,
    ReconciliationResult,
    ReviewSnapshot,
)
from .registry import WatchedProject

logger = logging.getLogger(__name__)


@dataclass
class ReconciliationPlan:
    """Everything one reconciliation will write and report."""

    changeset: ChangeSet
    events: list[ChangeEvent] = field(default_factory=list)
    anomalies: list[ReconciliationAnomaly] = field(default_factory=list)


def _utcnow() -> datetime:
    return datetime.now(UTC)


class Reconciler:
    """Diffs fetched snapshots against the store and commits them."""

    def __init__(
        self,
        store: ItemStore,
        viewer_login: str | None = None,
        mark_unread_on_new_commits: bool = False,
        keep_closed_items: bool = True,
        keep_merged_items: bool = True,
        clock: Callable[[], datetime] = _utcnow,
    ):
        """Initialize the reconciler.

        Args:
            store: Item store to read from and commit to
            viewer_login: Local user; their own activity never marks items unread
            mark_unread_on_new_commits: Whether a moved pull request head marks
                the item unread
            keep_closed_items: Keep closed items after reporting the closure
            keep_merged_items: Keep merged items after reporting the merge
            clock: Source of the current time
        """
        self.store = store
        self.viewer_login = viewer_login
        self.mark_unread_on_new_commits = mark_unread_on_new_commits
        self.keep_closed_items = keep_closed_items
        self.keep_merged_items = keep_merged_items
        self.clock = clock

    def _is_viewer(self, login: str | None) -> bool:
        return bool(login and self.viewer_login) and (
            login.lower() == self.viewer_login.lower()
        )

    def _retains(self, state: ItemState) -> bool:
        if state is ItemState.MERGED:
            return self.keep_merged_items
        if state is ItemState.CLOSED:
            return self.keep_closed_items
        return True

    def _event(
        self,
        kind: ChangeKind,
        project_id: uuid.UUID,
        item: ItemSnapshot,
        occurred_at: datetime,
        **details: Any,
    ) -> ChangeEvent:
        return ChangeEvent(
            kind=kind,
            project_id=project_id,
            remote_id=item.remote_id,
            number=item.number,
            item_kind=item.kind,
            title=item.title,
            occurred_at=occurred_at,
            url=item.url,
            item_author=item.author,
            participants=item.participants,
            **details,
        )

    def diff(
        self,
        project_id: uuid.UUID,
        previous: dict[str, ItemSnapshot],
        fetch: FetchResult,
    ) -> ReconciliationPlan:
        """Compute the changeset and events for one fetch.

        Args:
            project_id: Project being reconciled
            previous: Stored snapshots keyed by remote id
            fetch: Fetched records

        Returns:
            Plan with the changeset, ordered events and skipped records
        """
        plan = ReconciliationPlan(
            changeset=ChangeSet(project_id=project_id, new_cursor=fetch.new_cursor)
        )

        fetched: dict[str, ItemSnapshot] = {}
        for record in fetch.items:
            try:
                snapshot = ItemSnapshot.from_record(record)
            except ReconciliationAnomaly as anomaly:
                plan.anomalies.append(anomaly)
                continue
            # A listing that shifted between pages can repeat an item
            seen = fetched.get(snapshot.remote_id)
            if seen is None or snapshot.updated_at >= seen.updated_at:
                fetched[snapshot.remote_id] = snapshot

        for remote_id, current in fetched.items():
            stored = previous.get(remote_id)
            if stored is None:
                self._diff_new(plan, project_id, current)
            elif current.updated_at < stored.updated_at:
                plan.anomalies.append(
                    ReconciliationAnomaly(
                        f"Item {remote_id} went back in time: fetched "
                        f"{current.updated_at.isoformat()}, stored "
                        f"{stored.updated_at.isoformat()}",
                        remote_id,
                    )
                )
            else:
                self._diff_existing(plan, project_id, stored, current)

        if fetch.complete:
            for remote_id, stored in previous.items():
                if (
                    remote_id not in fetched
                    and stored.kind in fetch.listed_kinds
                    and stored.state is ItemState.OPEN
                ):
                    self._close_absent(plan, project_id, stored)

        return plan

    def _diff_new(
        self, plan: ReconciliationPlan, project_id: uuid.UUID, current: ItemSnapshot
    ) -> None:
        if not self._retains(current.state):
            logger.debug(
                f"Skipping finished item #{current.number} ({current.state.value}) "
                "excluded by retention"
            )
            return

        own = self._is_viewer(current.author)
        plan.changeset.upserts.append(
            ItemUpsert(snapshot=replace(current, unread=not own, unread_comments=0))
        )
        plan.events.append(
            self._event(
                ChangeKind.ITEM_CREATED,
                project_id,
                current,
                current.created_at or current.updated_at,
                new_state=current.state,
            )
        )

    def _diff_existing(
        self,
        plan: ReconciliationPlan,
        project_id: uuid.UUID,
        stored: ItemSnapshot,
        current: ItemSnapshot,
    ) -> None:
        if current == stored:
            return

        events: list[ChangeEvent] = []
        mark_unread = False

        state_changed = current.state is not stored.state
        if state_changed:
            if current.state is ItemState.MERGED:
                kind = ChangeKind.ITEM_MERGED
            elif current.state is ItemState.CLOSED:
                kind = ChangeKind.ITEM_CLOSED
            else:
                kind = ChangeKind.ITEM_STATUS_CHANGED
            events.append(
                self._event(
                    kind,
                    project_id,
                    current,
                    current.updated_at,
                    old_state=stored.state,
                    new_state=current.state,
                )
            )
            mark_unread = True

        old_fields = stored.display_fields()
        changed = tuple(
            name
            for name, value in current.display_fields().items()
            if old_fields[name] != value
        )
        # A closure or merge already says everything about the item
        if changed and not (state_changed and current.state.is_terminal):
            events.append(
                self._event(
                    ChangeKind.ITEM_UPDATED,
                    project_id,
                    current,
                    current.updated_at,
                    changed_fields=changed,
                )
            )
        if (
            "head_sha" in changed
            and stored.head_sha is not None
            and self.mark_unread_on_new_commits
        ):
            mark_unread = True

        added = 0
        for entry in self._new_entries(stored, current):
            if self._is_viewer(entry.author):
                continue
            if isinstance(entry, ReviewSnapshot):
                occurred_at, comment_kind = entry.submitted_at, "review"
            else:
                occurred_at, comment_kind = entry.posted_at, "comment"
            events.append(
                self._event(
                    ChangeKind.COMMENT_ADDED,
                    project_id,
                    current,
                    occurred_at,
                    comment_id=entry.remote_id,
                    comment_author=entry.author,
                    comment_kind=comment_kind,
                )
            )
            added += 1
        if added:
            mark_unread = True

        if state_changed and not self._retains(current.state):
            plan.changeset.deletions.append(current.remote_id)
        else:
            plan.changeset.upserts.append(
                ItemUpsert(
                    snapshot=current,
                    mark_unread=mark_unread,
                    added_unread_comments=added,
                )
            )
        plan.events.extend(events)

    @staticmethod
    def _new_entries(
        stored: ItemSnapshot, current: ItemSnapshot
    ) -> list[CommentSnapshot | ReviewSnapshot]:
        known_comments = {comment.remote_id for comment in stored.comments}
        known_reviews = {review.remote_id for review in stored.reviews}
        entries: list[tuple[datetime, str, CommentSnapshot | ReviewSnapshot]] = []
        for comment in current.comments:
            if comment.remote_id not in known_comments:
                entries.append((comment.posted_at, comment.remote_id, comment))
        for review in current.reviews:
            if review.remote_id not in known_reviews:
                entries.append((review.submitted_at, review.remote_id, review))
        entries.sort(key=lambda entry: (entry[0], entry[1]))
        return [entry for _, _, entry in entries]

    def _close_absent(
        self, plan: ReconciliationPlan, project_id: uuid.UUID, stored: ItemSnapshot
    ) -> None:
        closed = replace(stored, state=ItemState.CLOSED)
        plan.events.append(
            self._event(
                ChangeKind.ITEM_CLOSED,
                project_id,
                closed,
                self.clock(),
                old_state=stored.state,
                new_state=ItemState.CLOSED,
            )
        )
        if self._retains(ItemState.CLOSED):
            plan.changeset.upserts.append(ItemUpsert(snapshot=closed, mark_unread=True))
        else:
            plan.changeset.deletions.append(stored.remote_id)

    async def reconcile(
        self, project: WatchedProject, fetch: FetchResult
    ) -> ReconciliationResult:
        """Diff a fetch against the store and commit it atomically.

        Raises:
            TransactionError: If the commit failed; nothing was written and no
                events are returned
        """
        snapshot = await self.store.load_snapshot(project.id)
        plan = self.diff(project.id, snapshot.items, fetch)

        for anomaly in plan.anomalies:
            logger.warning(
                f"Skipping record for {project.full_name}: {anomaly.message}"
            )

        if plan.changeset.new_cursor is None:
            plan.changeset.new_cursor = snapshot.cursor

        await self.store.apply(plan.changeset, synced_at=self.clock())

        result = ReconciliationResult(
            project_id=project.id,
            events=plan.events,
            anomalies=plan.anomalies,
            new_cursor=plan.changeset.new_cursor,
            items_written=len(plan.changeset.upserts),
            items_deleted=len(plan.changeset.deletions),
            committed=True,
        )
        logger.info(f"Reconciled {project.full_name}: {result}")
        return result
