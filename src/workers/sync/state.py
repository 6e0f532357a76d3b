"""Per-project sync state machine.

Each project moves ``IDLE -> FETCHING -> RECONCILING -> IDLE``; a failure in
either active state returns it to ``IDLE``. A project that is not idle cannot
start another cycle, which is how duplicate concurrent fetches are ruled out.
"""

import logging
import uuid
from enum import Enum

logger = logging.getLogger(__name__)


class SyncState(str, Enum):
    """Where a project is in its sync cycle."""

    IDLE = "idle"
    FETCHING = "fetching"
    RECONCILING = "reconciling"

    @property
    def is_active(self) -> bool:
        """Whether a cycle is in flight."""
        return self is not SyncState.IDLE


class SyncTrigger(str, Enum):
    """Inputs that drive the state machine."""

    START = "start"
    FETCHED = "fetched"
    COMMITTED = "committed"
    FAILED = "failed"


class InvalidTransitionError(Exception):
    """Raised when a trigger is not allowed in the current state."""

    def __init__(self, state: SyncState, trigger: SyncTrigger):
        super().__init__(f"Cannot apply {trigger.value} while {state.value}")
        self.state = state
        self.trigger = trigger


_TRANSITIONS: dict[tuple[SyncState, SyncTrigger], SyncState] = {
    (SyncState.IDLE, SyncTrigger.START): SyncState.FETCHING,
    (SyncState.FETCHING, SyncTrigger.FETCHED): SyncState.RECONCILING,
    (SyncState.FETCHING, SyncTrigger.FAILED): SyncState.IDLE,
    (SyncState.RECONCILING, SyncTrigger.COMMITTED): SyncState.IDLE,
    (SyncState.RECONCILING, SyncTrigger.FAILED): SyncState.IDLE,
}


def transition(state: SyncState, trigger: SyncTrigger) -> SyncState:
    """Compute the next state.

    Raises:
        InvalidTransitionError: If the trigger is not valid in ``state``
    """
    try:
        return _TRANSITIONS[(state, trigger)]
    except KeyError:
        raise InvalidTransitionError(state, trigger) from None


class ProjectStateMachine:
    """Tracks the sync state of every project."""

    def __init__(self) -> None:
        self._states: dict[uuid.UUID, SyncState] = {}

    def state(self, project_id: uuid.UUID) -> SyncState:
        """Get a project's current state."""
        return self._states.get(project_id, SyncState.IDLE)

    def try_start(self, project_id: uuid.UUID) -> bool:
        """Move an idle project to fetching.

        Returns:
            False if the project already has a cycle in flight
        """
        if self.state(project_id).is_active:
            logger.debug(f"Project {project_id} already syncing; trigger dropped")
            return False
        self.advance(project_id, SyncTrigger.START)
        return True

    def advance(self, project_id: uuid.UUID, trigger: SyncTrigger) -> SyncState:
        """Apply a trigger to a project.

        Raises:
            InvalidTransitionError: If the trigger is not valid for the project
        """
        new_state = transition(self.state(project_id), trigger)
        if new_state is SyncState.IDLE:
            self._states.pop(project_id, None)
        else:
            self._states[project_id] = new_state
        return new_state

    def fail(self, project_id: uuid.UUID) -> None:
        """Return an active project to idle after a failure or cancellation."""
        if self.state(project_id).is_active:
            self.advance(project_id, SyncTrigger.FAILED)

    @property
    def active_count(self) -> int:
        """Number of projects fetching or reconciling."""
        return len(self._states)

    def active_projects(self) -> dict[uuid.UUID, SyncState]:
        """Snapshot of the projects with a cycle in flight."""
        return dict(self._states)
