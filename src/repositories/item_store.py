"""Persistent item store used by the sync engine.

``ItemStore`` is the only way the engine reads or writes items. Each project
has its own lock: a snapshot load never interleaves with a commit for the
same project, so readers see either the state before a sync cycle's changeset
or the state after it, never a mix. Commits for different projects proceed
independently.
"""

import asyncio
import logging
import uuid
from datetime import UTC, datetime

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from src.database import DatabaseConnectionManager, DatabaseTransaction, TransactionError
from src.models import Comment, Item, Project, Review, StatusCheck
from src.workers.sync.models import (
    ChangeSet,
    CommentSnapshot,
    ItemSnapshot,
    ItemUpsert,
    ProjectSnapshot,
    ReviewSnapshot,
    StatusCheckSnapshot,
    as_utc,
)

from .item import ItemRepository
from .project import ProjectRepository

logger = logging.getLogger(__name__)


def snapshot_from_item(item: Item) -> ItemSnapshot:
    """Convert a stored item, with its children loaded, into a snapshot."""
    comments = sorted(
        (
            CommentSnapshot(
                remote_id=comment.remote_id,
                author=comment.author,
                body=comment.body,
                posted_at=as_utc(comment.posted_at),
            )
            for comment in item.comments
            if comment.posted_at is not None
        ),
        key=lambda c: (c.posted_at, c.remote_id),
    )
    reviews = sorted(
        (
            ReviewSnapshot(
                remote_id=review.remote_id,
                author=review.author,
                state=review.state,
                body=review.body,
                submitted_at=as_utc(review.submitted_at),
            )
            for review in item.reviews
            if review.submitted_at is not None
        ),
        key=lambda r: (r.submitted_at, r.remote_id),
    )
    checks = sorted(
        (
            StatusCheckSnapshot(
                context=check.context,
                state=check.state,
                description=check.description,
                target_url=check.target_url,
                reported_at=as_utc(check.reported_at) if check.reported_at else None,
            )
            for check in item.status_checks
        ),
        key=lambda c: c.context,
    )
    return ItemSnapshot(
        remote_id=item.remote_id,
        number=item.number,
        kind=item.kind,
        title=item.title,
        state=item.state,
        updated_at=as_utc(item.remote_updated_at),
        author=item.author,
        created_at=as_utc(item.remote_created_at) if item.remote_created_at else None,
        url=item.url,
        draft=item.draft,
        head_sha=item.head_sha,
        labels=tuple(item.labels or ()),
        requested_reviewers=tuple(item.requested_reviewers or ()),
        comments=tuple(comments),
        reviews=tuple(reviews),
        status_checks=tuple(checks),
        unread=item.unread,
        unread_comments=item.unread_comments,
    )


def apply_snapshot(item: Item, snapshot: ItemSnapshot) -> None:
    """Overwrite an item's remote fields and children with the snapshot's."""
    item.number = snapshot.number
    item.kind = snapshot.kind
    item.title = snapshot.title
    item.author = snapshot.author
    item.state = snapshot.state
    item.url = snapshot.url
    item.draft = snapshot.draft
    item.head_sha = snapshot.head_sha
    item.labels = list(snapshot.labels)
    item.requested_reviewers = list(snapshot.requested_reviewers)
    item.remote_created_at = snapshot.created_at
    item.remote_updated_at = snapshot.updated_at
    item.comments = [
        Comment(
            remote_id=comment.remote_id,
            author=comment.author,
            body=comment.body,
            posted_at=comment.posted_at,
        )
        for comment in snapshot.comments
    ]
    item.reviews = [
        Review(
            remote_id=review.remote_id,
            author=review.author,
            state=review.state,
            body=review.body,
            submitted_at=review.submitted_at,
        )
        for review in snapshot.reviews
    ]
    item.status_checks = [
        StatusCheck(
            context=check.context,
            state=check.state,
            description=check.description,
            target_url=check.target_url,
            reported_at=check.reported_at,
        )
        for check in snapshot.status_checks
    ]


class ItemStore:
    """Transactional, per-project view of the persisted items."""

    def __init__(self, connection_manager: DatabaseConnectionManager):
        """Initialize the store.

        Args:
            connection_manager: Source of database sessions
        """
        self.connection_manager = connection_manager
        self._locks: dict[uuid.UUID, asyncio.Lock] = {}

    def _lock_for(self, project_id: uuid.UUID) -> asyncio.Lock:
        lock = self._locks.get(project_id)
        if lock is None:
            lock = self._locks[project_id] = asyncio.Lock()
        return lock

    async def get_cursor(self, project_id: uuid.UUID) -> str | None:
        """Get the cursor committed by the project's last successful cycle."""
        async with self.connection_manager.get_session() as session:
            project = await ProjectRepository(session).get_by_id_or_raise(project_id)
            return project.sync_cursor

    async def load_snapshot(self, project_id: uuid.UUID) -> ProjectSnapshot:
        """Load the consistent current state of one project."""
        async with self._lock_for(project_id):
            async with self.connection_manager.get_session() as session:
                project = await ProjectRepository(session).get_by_id_or_raise(
                    project_id
                )
                items = await ItemRepository(session).list_for_project(project_id)
                return ProjectSnapshot(
                    project_id=project_id,
                    cursor=project.sync_cursor,
                    items={item.remote_id: snapshot_from_item(item) for item in items},
                )

    async def apply(
        self, changeset: ChangeSet, synced_at: datetime | None = None
    ) -> None:
        """Commit a changeset and the project's new cursor in one transaction.

        Raises:
            TransactionError: If the changeset could not be committed; nothing
                was written
        """
        project_id = changeset.project_id
        async with self._lock_for(project_id):
            try:
                async with self.connection_manager.get_transaction() as session:
                    async with DatabaseTransaction(
                        session, label=f"changeset for project {project_id}"
                    ):
                        await self._write(session, changeset, synced_at)
            except SQLAlchemyError as e:
                logger.error(f"Failed to commit changes for project {project_id}: {e}")
                raise TransactionError(
                    f"Failed to commit changes for project {project_id}: {e}"
                ) from e

        if changeset.is_empty:
            logger.debug(f"No item changes for project {project_id}; cursor recorded")
        else:
            logger.debug(
                f"Committed {len(changeset.upserts)} upsert(s) and "
                f"{len(changeset.deletions)} deletion(s) for project {project_id}"
            )

    async def _write(
        self, session: AsyncSession, changeset: ChangeSet, synced_at: datetime | None
    ) -> None:
        project = await ProjectRepository(session).get_by_id_or_raise(
            changeset.project_id
        )
        items = ItemRepository(session)

        touched = {upsert.snapshot.remote_id for upsert in changeset.upserts}
        touched.update(changeset.deletions)
        existing = {
            item.remote_id: item
            for item in await items.list_for_project(project.id, touched)
        }

        for upsert in changeset.upserts:
            item = existing.get(upsert.snapshot.remote_id)
            self._write_item(session, project, item, upsert)

        for remote_id in changeset.deletions:
            item = existing.get(remote_id)
            if item is not None:
                await session.delete(item)

        project.record_success(changeset.new_cursor, synced_at)
        await session.flush()

    @staticmethod
    def _write_item(
        session: AsyncSession, project: Project, item: Item | None, upsert: ItemUpsert
    ) -> None:
        snapshot = upsert.snapshot
        if item is None:
            item = Item(
                project_id=project.id,
                remote_id=snapshot.remote_id,
                unread=snapshot.unread,
                unread_comments=snapshot.unread_comments,
            )
            apply_snapshot(item, snapshot)
            session.add(item)
            return

        apply_snapshot(item, snapshot)
        # Read tracking only moves towards unread here
        if upsert.mark_unread:
            item.unread = True
        item.unread_comments += upsert.added_unread_comments

    async def record_failure(self, project_id: uuid.UUID, reason: str) -> None:
        """Persist a failed cycle's bookkeeping on the project."""
        async with self.connection_manager.get_session() as session:
            await ProjectRepository(session).record_failure(project_id, reason)

    async def acknowledge(
        self, project_id: uuid.UUID, remote_id: str | None = None
    ) -> int:
        """Mark one item, or every item of the project, as seen.

        Returns:
            Number of items that changed from unread to seen
        """
        async with self._lock_for(project_id):
            async with self.connection_manager.get_session() as session:
                return await ItemRepository(session).mark_seen(
                    project_id, datetime.now(UTC), remote_id
                )

    async def unread_counts(self) -> dict[uuid.UUID, int]:
        """Count unread items per project."""
        async with self.connection_manager.get_session() as session:
            return await ItemRepository(session).unread_counts()

    async def item_count(self, project_id: uuid.UUID) -> int:
        """Count a project's stored items."""
        async with self.connection_manager.get_session() as session:
            return await ItemRepository(session).count_for_project(project_id)
