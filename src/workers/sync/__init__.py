"""Sync engine - data models.

The sync engine keeps a local store of pull requests and issues for each
watched project in step with the remote API:

- SyncScheduler: runs bounded-concurrency sync cycles on a timer or on demand
- Reconciler: diffs fetched records against the store and commits atomically
- NotificationEmitter: turns change events into user-facing notifications
- ActivityTracker: counts in-flight network fetches
- SyncEngine: wires everything together behind one lifecycle

Only the plain data models are re-exported here; import the components from
their own modules.
"""

from .models import (
    ChangeEvent,
    ChangeKind,
    ChangeSet,
    CommentSnapshot,
    ItemSnapshot,
    ItemUpsert,
    ProjectSnapshot,
    ReconciliationAnomaly,
    ReconciliationResult,
    ReviewSnapshot,
    StatusCheckSnapshot,
)

__all__ = [
    "ChangeEvent",
    "ChangeKind",
    "ChangeSet",
    "CommentSnapshot",
    "ItemSnapshot",
    "ItemUpsert",
    "ProjectSnapshot",
    "ReconciliationAnomaly",
    "ReconciliationResult",
    "ReviewSnapshot",
    "StatusCheckSnapshot",
]
