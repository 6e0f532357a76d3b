"""
Unit tests for the item store.

Why: The store is the single source of truth the UI reads from; commits must
     be atomic per project and read tracking must survive sync cycles.

What: Tests changeset commits, snapshot loading, read tracking deltas,
      acknowledgement, unread counts and failure bookkeeping.

How: Uses a real SQLite database through the item_store fixture.
"""

import asyncio
from dataclasses import replace
from datetime import UTC, datetime

import pytest
from sqlalchemy import func, select

from src.models import Comment, Project
from src.repositories import ItemStore
from src.workers.sync.models import ChangeSet, ItemSnapshot, ItemUpsert
from src.workers.sync.registry import WatchedProject
from tests.fixtures.sync import ItemRecordFactory

SYNCED_AT = datetime(2024, 5, 1, 12, 30, tzinfo=UTC)


def snapshot(record: dict, unread: bool = True) -> ItemSnapshot:
    base = ItemSnapshot.from_record(record)
    return replace(
        base, unread=unread, unread_comments=len(base.comments) if unread else 0
    )


def pr_with_comments(number: int, *comment_ids: str) -> dict:
    return ItemRecordFactory.pull_request(
        number,
        comments=[ItemRecordFactory.comment(c) for c in comment_ids],
    )


async def count_comments(item_store: ItemStore) -> int:
    async with item_store.connection_manager.get_session() as session:
        result = await session.execute(select(func.count(Comment.id)))
        return result.scalar_one()


class TestApply:
    """Test committing changesets."""

    @pytest.mark.asyncio
    async def test_commit_is_visible_in_snapshot_with_cursor(
        self, item_store: ItemStore, watched_project: WatchedProject
    ) -> None:
        """Test that items, children and cursor land together."""
        record = pr_with_comments(1, "c1", "c2")
        changeset = ChangeSet(
            project_id=watched_project.id,
            new_cursor="2024-05-01T12:01:00Z",
            upserts=[ItemUpsert(snapshot(record))],
        )

        await item_store.apply(changeset, synced_at=SYNCED_AT)
        loaded = await item_store.load_snapshot(watched_project.id)

        assert loaded.cursor == "2024-05-01T12:01:00Z"
        assert await item_store.get_cursor(watched_project.id) == loaded.cursor
        stored = loaded.items["pr-1"]
        assert stored == ItemSnapshot.from_record(record)
        assert [c.remote_id for c in stored.comments] == ["c1", "c2"]
        assert stored.unread
        assert stored.unread_comments == 2

    @pytest.mark.asyncio
    async def test_empty_changeset_still_records_the_cycle(
        self, item_store: ItemStore, connection_manager, watched_project
    ) -> None:
        """Test that a no-op cycle updates cursor and last sync time."""
        await item_store.apply(
            ChangeSet(project_id=watched_project.id, new_cursor="cursor-1"),
            synced_at=SYNCED_AT,
        )

        async with connection_manager.get_session() as session:
            project = await session.get(Project, watched_project.id)

        assert project.sync_cursor == "cursor-1"
        assert project.last_synced_at is not None
        assert project.failure_count == 0

    @pytest.mark.asyncio
    async def test_update_only_moves_read_state_towards_unread(
        self, item_store: ItemStore, watched_project: WatchedProject
    ) -> None:
        """
        Why: An acknowledgement made while a cycle runs must not be undone
        What: Commit, acknowledge, then commit an update without mark_unread
        How: The stored item stays read; a later delta adds comments only
        """
        project_id = watched_project.id
        await item_store.apply(
            ChangeSet(
                project_id, None, upserts=[ItemUpsert(snapshot(pr_with_comments(1)))]
            )
        )
        await item_store.acknowledge(project_id, "pr-1")

        # Snapshot built before the acknowledgement still says unread
        stale = snapshot(ItemRecordFactory.pull_request(1, title="Renamed"))
        await item_store.apply(ChangeSet(project_id, None, upserts=[ItemUpsert(stale)]))

        loaded = (await item_store.load_snapshot(project_id)).items["pr-1"]
        assert loaded.title == "Renamed"
        assert not loaded.unread

        commented = snapshot(pr_with_comments(1, "c1"), unread=False)
        await item_store.apply(
            ChangeSet(
                project_id,
                None,
                upserts=[
                    ItemUpsert(commented, mark_unread=True, added_unread_comments=1)
                ],
            )
        )

        loaded = (await item_store.load_snapshot(project_id)).items["pr-1"]
        assert loaded.unread
        assert loaded.unread_comments == 1

    @pytest.mark.asyncio
    async def test_deletion_removes_item_and_children(
        self, item_store: ItemStore, watched_project: WatchedProject
    ) -> None:
        """Test that deleting an item cascades to its comments."""
        project_id = watched_project.id
        await item_store.apply(
            ChangeSet(
                project_id,
                None,
                upserts=[ItemUpsert(snapshot(pr_with_comments(1, "c1", "c2")))],
            )
        )
        assert await count_comments(item_store) == 2

        await item_store.apply(ChangeSet(project_id, None, deletions=["pr-1"]))

        assert await item_store.item_count(project_id) == 0
        assert await count_comments(item_store) == 0

    @pytest.mark.asyncio
    async def test_readers_never_see_a_partial_commit(
        self, item_store: ItemStore, watched_project: WatchedProject
    ) -> None:
        """Test that a concurrent load sees all or none of a changeset."""
        project_id = watched_project.id
        changeset = ChangeSet(
            project_id,
            "cursor-1",
            upserts=[
                ItemUpsert(snapshot(ItemRecordFactory.pull_request(n)))
                for n in range(1, 21)
            ],
        )

        _, loaded = await asyncio.gather(
            item_store.apply(changeset), item_store.load_snapshot(project_id)
        )

        assert len(loaded.items) in (0, 20)
        assert loaded.cursor == ("cursor-1" if loaded.items else None)


class TestReadTracking:
    """Test acknowledgement and unread counts."""

    @pytest.mark.asyncio
    async def test_acknowledge_one_and_all(
        self, item_store: ItemStore, project_factory
    ) -> None:
        """Test single and project-wide acknowledgement with counts."""
        first = await project_factory("octo/a")
        second = await project_factory("octo/b")
        for project, numbers in ((first, (1, 2, 3)), (second, (7,))):
            await item_store.apply(
                ChangeSet(
                    project.id,
                    None,
                    upserts=[
                        ItemUpsert(snapshot(ItemRecordFactory.pull_request(n)))
                        for n in numbers
                    ],
                )
            )

        assert await item_store.unread_counts() == {first.id: 3, second.id: 1}

        assert await item_store.acknowledge(first.id, "pr-1") == 1
        assert await item_store.acknowledge(first.id, "pr-1") == 0
        assert await item_store.unread_counts() == {first.id: 2, second.id: 1}

        assert await item_store.acknowledge(second.id) == 1
        assert await item_store.unread_counts() == {first.id: 2}

    @pytest.mark.asyncio
    async def test_acknowledge_clears_comment_count(
        self, item_store: ItemStore, watched_project: WatchedProject
    ) -> None:
        """Test that seeing an item also resets its unread comment count."""
        await item_store.apply(
            ChangeSet(
                watched_project.id,
                None,
                upserts=[ItemUpsert(snapshot(pr_with_comments(1, "c1")))],
            )
        )

        await item_store.acknowledge(watched_project.id)

        loaded = (await item_store.load_snapshot(watched_project.id)).items["pr-1"]
        assert loaded.unread_comments == 0


class TestFailureBookkeeping:
    """Test failure counters on the project row."""

    @pytest.mark.asyncio
    async def test_failures_accumulate_and_success_resets(
        self, item_store: ItemStore, connection_manager, watched_project
    ) -> None:
        """Test that failures are counted until the next commit."""
        await item_store.record_failure(watched_project.id, "timeout")
        await item_store.record_failure(watched_project.id, "timeout again")

        async with connection_manager.get_session() as session:
            project = await session.get(Project, watched_project.id)
            assert project.failure_count == 2
            assert project.last_failure_reason == "timeout again"

        await item_store.apply(ChangeSet(watched_project.id, "cursor"))

        async with connection_manager.get_session() as session:
            project = await session.get(Project, watched_project.id)
            assert project.failure_count == 0
