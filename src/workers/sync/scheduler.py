"""Sync scheduling with bounded concurrency.

A sweep runs one fetch-and-reconcile pipeline per enabled project, at most
``max_concurrent_projects`` at a time. Sweeps start on a timer or on demand;
an on-demand request made while a sweep is running joins that sweep instead
of starting another one.

Failure handling per project:
- Network failures back off exponentially for that project only and flag it
  as failing after a configurable number of consecutive failures.
- A rejected or missing credential halts every project until the credential
  is replaced.
- An exhausted rate limit defers the whole sweep cadence until the quota
  resets.

Once a pipeline has started its store commit, the commit and the delivery of
its events run to completion even if the pipeline is cancelled; ``stop`` and
``cancel_sweep`` wait for them.
"""

import asyncio
import contextlib
import logging
import time
import uuid
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum

from ...github.client import FetchResult, GitHubClient
from ...github.exceptions import AuthError, GitHubError, NetworkError, RateLimitedError
from ...repositories.item_store import ItemStore
from .activity import ActivityTracker
from .events import BadgeCounts, SyncEventListener
from .models import ReconciliationResult
from .notifications import EmissionResult, NotificationEmitter
from .reconciliation import Reconciler
from .registry import ProjectRegistry, WatchedProject
from .state import ProjectStateMachine, SyncTrigger

logger = logging.getLogger(__name__)


class CycleOutcome(str, Enum):
    """How one project's cycle ended."""

    SUCCEEDED = "succeeded"
    FAILED = "failed"
    BACKING_OFF = "backing_off"  # Skipped: project is waiting out a failure backoff
    DEFERRED = "deferred"  # Skipped: rate limit exhausted
    HALTED = "halted"  # Skipped or aborted: credential missing or rejected
    SKIPPED = "skipped"  # Project already had a cycle in flight


@dataclass
class CycleResult:
    """Outcome of one project's cycle."""

    project_id: uuid.UUID
    outcome: CycleOutcome
    events: int = 0
    error: str | None = None
    reconciliation: ReconciliationResult | None = None

    def __str__(self) -> str:
        """Return human-readable string representation."""
        return f"CycleResult({self.project_id}, {self.outcome.value})"


@dataclass
class SweepResult:
    """Outcome of one sweep over all enabled projects."""

    started_at: datetime
    completed_at: datetime | None = None
    cycles: list[CycleResult] = field(default_factory=list)

    def __str__(self) -> str:
        """Return human-readable string representation."""
        counts: dict[str, int] = {}
        for cycle in self.cycles:
            counts[cycle.outcome.value] = counts.get(cycle.outcome.value, 0) + 1
        summary = ", ".join(f"{k}={v}" for k, v in sorted(counts.items()))
        return f"SweepResult({summary or 'no projects'})"

    def outcome_for(self, project_id: uuid.UUID) -> CycleOutcome | None:
        """Get the outcome of one project's cycle in this sweep."""
        for cycle in self.cycles:
            if cycle.project_id == project_id:
                return cycle.outcome
        return None

    @property
    def succeeded(self) -> int:
        """Number of cycles that committed."""
        return sum(1 for c in self.cycles if c.outcome is CycleOutcome.SUCCEEDED)

    @property
    def failed(self) -> int:
        """Number of cycles that failed."""
        return sum(1 for c in self.cycles if c.outcome is CycleOutcome.FAILED)


@dataclass
class ProjectHealth:
    """Failure bookkeeping for one project."""

    consecutive_failures: int = 0
    next_attempt_at: float = 0.0
    last_error: str | None = None
    failing: bool = False


class SyncScheduler:
    """Runs sync sweeps over the registry's enabled projects."""

    def __init__(
        self,
        registry: ProjectRegistry,
        client: GitHubClient,
        store: ItemStore,
        reconciler: Reconciler,
        emitter: NotificationEmitter,
        activity: ActivityTracker,
        listener: SyncEventListener | None = None,
        interval_seconds: float = 300,
        max_concurrent_projects: int = 4,
        failure_backoff_base_seconds: float = 30,
        failure_backoff_max_seconds: float = 1800,
        failure_escalation_threshold: int = 3,
        rate_limit_notice_threshold_seconds: float = 600,
        clock: Callable[[], float] = time.time,
    ):
        """Initialize the scheduler.

        Args:
            registry: Watched projects
            client: Remote API client; its rate limiter is shared by all pipelines
            store: Item store
            reconciler: Diffs and commits fetches
            emitter: Delivers notifications for committed events
            activity: In-flight fetch counter
            listener: Host callbacks
            interval_seconds: Time between timer sweeps
            max_concurrent_projects: Pipelines running at once
            failure_backoff_base_seconds: First delay after a network failure
            failure_backoff_max_seconds: Longest delay after network failures
            failure_escalation_threshold: Consecutive failures before a project
                is reported as failing
            rate_limit_notice_threshold_seconds: Deferrals longer than this are
                reported to the listener
            clock: Wall-clock time source in epoch seconds
        """
        self.registry = registry
        self.client = client
        self.store = store
        self.reconciler = reconciler
        self.emitter = emitter
        self.activity = activity
        self.listener = listener or SyncEventListener()
        self.interval_seconds = interval_seconds
        self.max_concurrent_projects = max_concurrent_projects
        self.failure_backoff_base_seconds = failure_backoff_base_seconds
        self.failure_backoff_max_seconds = failure_backoff_max_seconds
        self.failure_escalation_threshold = failure_escalation_threshold
        self.rate_limit_notice_threshold_seconds = rate_limit_notice_threshold_seconds
        self.clock = clock

        self.states = ProjectStateMachine()
        self._pool = asyncio.Semaphore(max_concurrent_projects)
        self._health: dict[uuid.UUID, ProjectHealth] = {}
        self._auth_halted = False
        self._deferred_until: float | None = None

        self._current_sweep: asyncio.Task[SweepResult] | None = None
        self._commit_tasks: dict[uuid.UUID, asyncio.Task[ReconciliationResult]] = {}
        self._loop_task: asyncio.Task[None] | None = None
        self._shutdown_event = asyncio.Event()
        self._wake_event = asyncio.Event()

    # Status

    @property
    def is_running(self) -> bool:
        """Whether the timer loop is running."""
        return self._loop_task is not None and not self._loop_task.done()

    @property
    def auth_halted(self) -> bool:
        """Whether syncing is halted on a credential problem."""
        return self._auth_halted

    @property
    def deferred_until(self) -> datetime | None:
        """When a rate-limit deferral ends, if one is in effect."""
        if self._deferred_until is None or self._deferred_until <= self.clock():
            return None
        return datetime.fromtimestamp(self._deferred_until, tz=UTC)

    def health(self, project_id: uuid.UUID) -> ProjectHealth:
        """Failure bookkeeping of a project."""
        return self._health.setdefault(project_id, ProjectHealth())

    def next_sweep_delay(self) -> float:
        """Seconds until the timer should start the next sweep."""
        delay = float(self.interval_seconds)
        if self._deferred_until is not None:
            delay = max(delay, self._deferred_until - self.clock())
        return delay

    # Triggers

    async def sweep(self) -> SweepResult:
        """Run a sweep, or join the one already running."""
        if self._current_sweep is None or self._current_sweep.done():
            self._current_sweep = asyncio.create_task(self._run_sweep())
        return await asyncio.shield(self._current_sweep)

    async def refresh_now(self) -> SweepResult:
        """Sweep immediately on user request.

        If the sweep is cancelled underneath the caller, for instance by a
        credential change, the caller gets an empty result instead of the
        cancellation; its own cancellation still propagates.
        """
        logger.info("Manual refresh requested")
        started_at = datetime.now(UTC)
        try:
            return await self.sweep()
        except asyncio.CancelledError:
            task = asyncio.current_task()
            if task is not None and task.cancelling():
                raise
            logger.info("Manual refresh ended early: sweep was cancelled")
            return SweepResult(started_at=started_at, completed_at=datetime.now(UTC))

    def wake(self) -> None:
        """Start the next timer sweep now instead of at its due time."""
        self._wake_event.set()

    def resume(self) -> None:
        """Lift a credential halt and forget quota tied to the old credential."""
        if self._auth_halted:
            logger.info("Resuming sync after credential change")
        self._auth_halted = False
        self._deferred_until = None
        self.client.rate_limiter.clear()

    async def cancel_sweep(self) -> None:
        """Cancel the sweep in flight; started commits still complete."""
        if self._current_sweep is not None and not self._current_sweep.done():
            self._current_sweep.cancel()
            try:
                await self._current_sweep
            except asyncio.CancelledError:
                logger.info("In-flight sweep cancelled")
        await self._wait_for_commits()

    # Timer loop

    def start(self) -> None:
        """Start the timer loop; the first sweep runs immediately."""
        if self.is_running:
            return
        self._shutdown_event.clear()
        self._loop_task = asyncio.create_task(self.run_forever())

    async def run_forever(self) -> None:
        """Sweep, wait for the next due time, repeat until stopped."""
        logger.info(
            f"Sync loop started: every {self.interval_seconds}s, "
            f"{self.max_concurrent_projects} concurrent project(s)"
        )
        while not self._shutdown_event.is_set():
            try:
                await self.sweep()
            except asyncio.CancelledError:
                if self._shutdown_event.is_set():
                    break
                # Only the shared sweep was cancelled; the loop keeps going
                logger.info("Sweep cancelled; continuing on schedule")
            except Exception as e:
                logger.error(f"Sweep failed unexpectedly: {e}", exc_info=True)

            delay = self.next_sweep_delay()
            try:
                await asyncio.wait_for(self._wake_event.wait(), timeout=delay)
                self._wake_event.clear()
            except TimeoutError:
                continue

        logger.info("Sync loop stopped")

    async def stop(self) -> None:
        """Stop the timer loop, cancel in-flight fetches, finish started commits."""
        self._shutdown_event.set()
        self._wake_event.set()

        await self.cancel_sweep()

        if self._loop_task is not None:
            self._loop_task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._loop_task
            self._loop_task = None

    async def _wait_for_commits(self) -> None:
        if not self._commit_tasks:
            return
        pending = list(self._commit_tasks.items())
        logger.info(f"Waiting for {len(pending)} commit(s) to finish")
        outcomes = await asyncio.gather(
            *(task for _, task in pending), return_exceptions=True
        )
        for (project_id, _), outcome in zip(pending, outcomes, strict=True):
            if isinstance(outcome, BaseException):
                logger.error(f"Commit for project {project_id} failed: {outcome}")

    # Sweep

    async def _run_sweep(self) -> SweepResult:
        result = SweepResult(started_at=datetime.now(UTC))
        projects = self.registry.enabled()
        logger.info(f"Starting sweep over {len(projects)} project(s)")

        tasks = [asyncio.create_task(self.run_cycle(p)) for p in projects]
        try:
            outcomes = await asyncio.gather(*tasks, return_exceptions=True)
        except asyncio.CancelledError:
            for task in tasks:
                task.cancel()
            await asyncio.gather(*tasks, return_exceptions=True)
            raise

        for project, outcome in zip(projects, outcomes, strict=True):
            if isinstance(outcome, BaseException):
                logger.error(
                    f"Cycle for {project.full_name} raised: {outcome}",
                    exc_info=outcome,
                )
                outcome = CycleResult(
                    project.id, CycleOutcome.FAILED, error=str(outcome)
                )
            result.cycles.append(outcome)

        result.completed_at = datetime.now(UTC)
        logger.info(f"Sweep complete: {result}")
        await self._call_listener(self.listener.on_sweep_complete(result))
        return result

    # Pipeline

    async def run_cycle(self, project: WatchedProject) -> CycleResult:
        """Fetch, reconcile and notify for one project."""
        if self._auth_halted:
            return CycleResult(project.id, CycleOutcome.HALTED)

        health = self.health(project.id)
        if health.next_attempt_at > self.clock():
            logger.debug(f"{project.full_name} is backing off; skipping")
            return CycleResult(project.id, CycleOutcome.BACKING_OFF)

        async with self._pool:
            # Conditions may have changed while waiting for a slot
            if self._auth_halted:
                return CycleResult(project.id, CycleOutcome.HALTED)
            if await self._rate_limit_deferred():
                return CycleResult(project.id, CycleOutcome.DEFERRED)
            if not self.states.try_start(project.id):
                return CycleResult(project.id, CycleOutcome.SKIPPED)

            try:
                return await self._pipeline(project)
            finally:
                # A started commit resets the state itself when it finishes
                if project.id not in self._commit_tasks:
                    self.states.fail(project.id)

    async def _pipeline(self, project: WatchedProject) -> CycleResult:
        try:
            async with self.activity.track():
                fetch = await self._fetch(project)
            self.states.advance(project.id, SyncTrigger.FETCHED)
            reconciliation = await self._commit(project, fetch)
        except RateLimitedError as e:
            await self._defer_for_rate_limit(e.reset_at)
            return CycleResult(project.id, CycleOutcome.DEFERRED, error=str(e))
        except AuthError as e:
            await self._halt_for_auth(e)
            return CycleResult(project.id, CycleOutcome.HALTED, error=str(e))
        except NetworkError as e:
            await self._record_failure(project, e, backoff=True)
            return CycleResult(project.id, CycleOutcome.FAILED, error=str(e))
        except GitHubError as e:
            logger.warning(f"Sync of {project.full_name} failed: {e}")
            await self._record_failure(project, e, backoff=False)
            return CycleResult(project.id, CycleOutcome.FAILED, error=str(e))
        except Exception as e:
            logger.error(f"Sync of {project.full_name} failed: {e}", exc_info=True)
            await self._record_failure(project, e, backoff=False)
            return CycleResult(project.id, CycleOutcome.FAILED, error=str(e))

        if self.client.rate_limiter.is_exhausted():
            await self._defer_for_rate_limit(self.client.rate_limiter.reset_at())

        return CycleResult(
            project.id,
            CycleOutcome.SUCCEEDED,
            events=len(reconciliation.events),
            reconciliation=reconciliation,
        )

    async def _fetch(self, project: WatchedProject) -> FetchResult:
        cursor = await self.store.get_cursor(project.id)
        logger.debug(f"Fetching {project.full_name} (cursor={cursor})")
        fetch = await self.client.fetch_project(
            project.full_name,
            cursor=cursor,
            mode=project.fetch_mode,
            track_pull_requests=project.track_pull_requests,
            track_issues=project.track_issues,
        )
        return fetch

    async def _commit(
        self, project: WatchedProject, fetch: FetchResult
    ) -> ReconciliationResult:
        # Shielded: a cancelled pipeline must not abandon a started commit,
        # nor the notifications for what it committed
        task = asyncio.create_task(self._commit_and_publish(project, fetch))
        self._commit_tasks[project.id] = task
        return await asyncio.shield(task)

    async def _commit_and_publish(
        self, project: WatchedProject, fetch: FetchResult
    ) -> ReconciliationResult:
        """Commit a fetch, then deliver its events and badge counts.

        Owns the project's sync state until it returns, so no other cycle
        can start for the project while the commit is running.
        """
        try:
            reconciliation = await self.reconciler.reconcile(project, fetch)
            self.states.advance(project.id, SyncTrigger.COMMITTED)
            await self._record_success(project)
            await self._publish(project, reconciliation)
            return reconciliation
        finally:
            self.states.fail(project.id)  # No-op after a clean commit
            self._commit_tasks.pop(project.id, None)

    async def _publish(
        self, project: WatchedProject, reconciliation: ReconciliationResult
    ) -> None:
        if reconciliation.events:
            emission = await self.emitter.emit(project, reconciliation.events)
            await self._report_delivery_failures(emission)
        if reconciliation.has_changes:
            await self.publish_badge_counts()

    async def _report_delivery_failures(self, emission: EmissionResult) -> None:
        for failure in emission.failures:
            await self._call_listener(self.listener.on_delivery_failure(failure))

    async def publish_badge_counts(self) -> BadgeCounts:
        """Read unread counts from the store and hand them to the listener."""
        counts = BadgeCounts(per_project=await self.store.unread_counts())
        await self._call_listener(self.listener.on_badge_counts(counts))
        return counts

    # Failure handling

    async def _rate_limit_deferred(self) -> bool:
        limiter = self.client.rate_limiter
        if limiter.is_exhausted():
            await self._defer_for_rate_limit(limiter.reset_at())
            return True
        return self._deferred_until is not None and self._deferred_until > self.clock()

    async def _defer_for_rate_limit(self, reset_at: datetime | None) -> None:
        if reset_at is None:
            until = self.clock() + self.interval_seconds
        else:
            until = reset_at.timestamp()
        if self._deferred_until is not None and self._deferred_until >= until:
            return

        self._deferred_until = until
        wait = until - self.clock()
        logger.warning(f"Rate limit exhausted; deferring sync for {wait:.0f}s")
        if wait > self.rate_limit_notice_threshold_seconds:
            await self._call_listener(
                self.listener.on_rate_limit_deferred(
                    datetime.fromtimestamp(until, tz=UTC)
                )
            )

    async def _halt_for_auth(self, error: AuthError) -> None:
        if self._auth_halted:
            return
        self._auth_halted = True
        logger.error(f"Credential rejected or missing; halting sync: {error}")
        await self._call_listener(self.listener.on_auth_failure(error))

    def _backoff_delay(self, failures: int) -> float:
        delay = self.failure_backoff_base_seconds * 2 ** (failures - 1)
        return min(delay, self.failure_backoff_max_seconds)

    async def _record_failure(
        self, project: WatchedProject, error: BaseException, backoff: bool
    ) -> None:
        health = self.health(project.id)
        health.consecutive_failures += 1
        health.last_error = str(error)
        if backoff:
            delay = self._backoff_delay(health.consecutive_failures)
            health.next_attempt_at = self.clock() + delay
            logger.warning(
                f"Sync of {project.full_name} failed "
                f"({health.consecutive_failures} in a row), retrying in "
                f"{delay:.0f}s: {error}"
            )

        try:
            await self.store.record_failure(project.id, str(error))
        except Exception as e:
            logger.error(f"Could not persist failure of {project.full_name}: {e}")

        if (
            not health.failing
            and health.consecutive_failures >= self.failure_escalation_threshold
        ):
            health.failing = True
            logger.error(
                f"{project.full_name} has failed {health.consecutive_failures} "
                "times in a row"
            )
            await self._call_listener(
                self.listener.on_project_health(project, True, health.last_error)
            )

    async def _record_success(self, project: WatchedProject) -> None:
        health = self.health(project.id)
        was_failing = health.failing
        self._health[project.id] = ProjectHealth()
        if was_failing:
            logger.info(f"{project.full_name} is syncing again")
            await self._call_listener(
                self.listener.on_project_health(project, False, None)
            )

    @staticmethod
    async def _call_listener(call: Awaitable[None]) -> None:
        try:
            await call
        except Exception as e:
            logger.error(f"Sync event listener failed: {e}", exc_info=True)
