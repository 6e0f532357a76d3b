"""
Unit tests for the sync scheduler.

Why: The scheduler owns concurrency, coalescing and every failure policy of
     the engine; mistakes here corrupt the store or hammer the remote API.

What: Tests the concurrency bound, sweep coalescing, dropped triggers,
      network failure backoff and escalation, rate-limit deferral,
      credential halts, cancellation and notification delivery failures.

How: Runs the real scheduler, reconciler, emitter and SQLite store against a
     scripted fake API client and a manually advanced clock.
"""

import asyncio
from collections.abc import Awaitable, Callable
from datetime import datetime

import pytest

from src.github.client import FetchResult
from src.github.exceptions import (
    AuthError,
    GitHubNotFoundError,
    PaginationError,
    RateLimitedError,
)
from src.github.rate_limiting import RateLimitManager
from src.models.enums import FetchMode
from src.repositories import ItemStore
from src.workers.sync.activity import ActivityTracker
from src.workers.sync.events import BadgeCounts, SyncEventListener
from src.workers.sync.notifications import (
    Notification,
    NotificationDeliveryError,
    NotificationEmitter,
    NotificationSink,
)
from src.workers.sync.reconciliation import Reconciler
from src.workers.sync.registry import ProjectRegistry, WatchedProject
from src.workers.sync.scheduler import CycleOutcome, SweepResult, SyncScheduler
from src.workers.sync.state import SyncState
from tests.fixtures.sync import FetchResultFactory, ItemRecordFactory

PR = ItemRecordFactory.pull_request
START = 1_714_564_800.0


class FakeClock:
    """Manually advanced wall clock in epoch seconds."""

    def __init__(self, now: float = START) -> None:
        self.now = now

    def __call__(self) -> float:
        return self.now


FetchHandler = Callable[[str], Awaitable[FetchResult]]


class FakeClient:
    """Scripted stand-in for GitHubClient.fetch_project."""

    def __init__(self, clock: FakeClock, handler: FetchHandler | None = None) -> None:
        self.rate_limiter = RateLimitManager(clock=clock)
        self.handler = handler
        self.calls: list[str] = []

    async def fetch_project(
        self,
        full_name: str,
        cursor: str | None,
        mode: FetchMode,
        track_pull_requests: bool = True,
        track_issues: bool = True,
    ) -> FetchResult:
        self.calls.append(full_name)
        if self.handler is None:
            return FetchResultFactory.complete([PR(1)])
        return await self.handler(full_name)


class RecordingListener(SyncEventListener):
    """Listener that records every callback."""

    def __init__(self) -> None:
        self.notifications: list[Notification] = []
        self.delivery_failures: list[NotificationDeliveryError] = []
        self.badges: list[BadgeCounts] = []
        self.activity: list[int] = []
        self.health: list[tuple[str, bool]] = []
        self.auth_failures: list[AuthError] = []
        self.deferrals: list[datetime] = []
        self.sweeps: list[SweepResult] = []

    async def deliver(self, notification: Notification) -> None:
        self.notifications.append(notification)

    async def on_delivery_failure(self, error: NotificationDeliveryError) -> None:
        self.delivery_failures.append(error)

    async def on_badge_counts(self, counts: BadgeCounts) -> None:
        self.badges.append(counts)

    async def on_activity_changed(self, in_flight: int) -> None:
        self.activity.append(in_flight)

    async def on_project_health(
        self, project: WatchedProject, failing: bool, reason: str | None
    ) -> None:
        self.health.append((project.full_name, failing))

    async def on_auth_failure(self, error: AuthError) -> None:
        self.auth_failures.append(error)

    async def on_rate_limit_deferred(self, until: datetime) -> None:
        self.deferrals.append(until)

    async def on_sweep_complete(self, result: SweepResult) -> None:
        self.sweeps.append(result)


class BrokenSink(NotificationSink):
    """Sink that always fails."""

    async def deliver(self, notification: Notification) -> None:
        raise RuntimeError("sink down")


def build_scheduler(
    store: ItemStore,
    projects: list[WatchedProject],
    client: FakeClient,
    clock: FakeClock,
    listener: RecordingListener,
    extra_sinks: tuple[NotificationSink, ...] = (),
    **settings,
) -> SyncScheduler:
    return SyncScheduler(
        registry=ProjectRegistry(projects),
        client=client,
        store=store,
        reconciler=Reconciler(store),
        emitter=NotificationEmitter([listener, *extra_sinks]),
        activity=ActivityTracker(listener.on_activity_changed),
        listener=listener,
        clock=clock,
        **settings,
    )


class TestSweep:
    """Test sweeps over several projects."""

    @pytest.mark.asyncio
    async def test_successful_sweep_notifies_and_publishes_counts(
        self, item_store: ItemStore, project_factory
    ) -> None:
        """
        Why: The happy path wires fetch, commit and notification together
        What: Two projects with one new pull request each
        How: Run one sweep and inspect results, listener calls and the store
        """
        clock = FakeClock()
        listener = RecordingListener()
        projects = [await project_factory("octo/a"), await project_factory("octo/b")]
        scheduler = build_scheduler(
            item_store, projects, FakeClient(clock), clock, listener
        )

        result = await scheduler.sweep()

        assert result.succeeded == 2
        assert len(listener.notifications) == 2
        assert max(badge.total for badge in listener.badges) == 2
        assert listener.sweeps == [result]
        assert listener.activity[-1] == 0
        for project in projects:
            assert await item_store.item_count(project.id) == 1

    @pytest.mark.asyncio
    async def test_disabled_projects_are_not_swept(
        self, item_store: ItemStore, project_factory
    ) -> None:
        """Test that a disabled project is never fetched."""
        clock = FakeClock()
        client = FakeClient(clock)
        enabled = await project_factory("octo/a")
        disabled = await project_factory("octo/b", enabled=False)
        scheduler = build_scheduler(
            item_store, [enabled, disabled], client, clock, RecordingListener()
        )

        await scheduler.sweep()

        assert client.calls == ["octo/a"]

    @pytest.mark.asyncio
    async def test_concurrency_never_exceeds_pool_size(
        self, item_store: ItemStore, project_factory
    ) -> None:
        """
        Why: The pool bounds load on the API and the store
        What: Five projects with a pool of two
        How: Count fetches in flight inside the fake client
        """
        clock = FakeClock()
        in_flight = 0
        peak = 0

        async def slow_fetch(full_name: str) -> FetchResult:
            nonlocal in_flight, peak
            in_flight += 1
            peak = max(peak, in_flight)
            await asyncio.sleep(0.01)
            in_flight -= 1
            return FetchResultFactory.complete([PR(1)])

        projects = [await project_factory(f"octo/p{i}") for i in range(5)]
        scheduler = build_scheduler(
            item_store,
            projects,
            FakeClient(clock, slow_fetch),
            clock,
            RecordingListener(),
            max_concurrent_projects=2,
        )

        result = await scheduler.sweep()

        assert result.succeeded == 5
        assert peak == 2

    @pytest.mark.asyncio
    async def test_concurrent_refreshes_join_one_sweep(
        self, item_store: ItemStore, watched_project: WatchedProject
    ) -> None:
        """Test that refresh_now during a sweep does not start another."""
        clock = FakeClock()
        gate = asyncio.Event()

        async def gated_fetch(full_name: str) -> FetchResult:
            await gate.wait()
            return FetchResultFactory.complete([PR(1)])

        client = FakeClient(clock, gated_fetch)
        scheduler = build_scheduler(
            item_store, [watched_project], client, clock, RecordingListener()
        )

        first = asyncio.create_task(scheduler.sweep())
        await asyncio.sleep(0)
        second = asyncio.create_task(scheduler.refresh_now())
        await asyncio.sleep(0)
        gate.set()

        assert await first is await second
        assert client.calls == ["octo/widgets"]

    @pytest.mark.asyncio
    async def test_trigger_for_busy_project_is_dropped(
        self, item_store: ItemStore, watched_project: WatchedProject
    ) -> None:
        """Test that a project already in a cycle is skipped, not queued."""
        clock = FakeClock()
        client = FakeClient(clock)
        scheduler = build_scheduler(
            item_store, [watched_project], client, clock, RecordingListener()
        )
        scheduler.states.try_start(watched_project.id)

        result = await scheduler.run_cycle(watched_project)

        assert result.outcome is CycleOutcome.SKIPPED
        assert client.calls == []
        assert scheduler.states.state(watched_project.id) is SyncState.FETCHING


class TestNetworkFailures:
    """Test transient failure handling."""

    @pytest.mark.asyncio
    async def test_failed_pagination_leaves_store_untouched_and_retries(
        self, item_store: ItemStore, watched_project: WatchedProject
    ) -> None:
        """
        Why: A listing that failed after page one must never be applied
        What: Fetch fails mid-pagination, then succeeds after the backoff
        How: Check store, events, state and the retry schedule
        """
        clock = FakeClock()
        listener = RecordingListener()
        failures = [PaginationError("page 2 of 2 failed", pages_fetched=1)]

        async def flaky_fetch(full_name: str) -> FetchResult:
            if failures:
                raise failures.pop()
            return FetchResultFactory.complete([PR(1)])

        client = FakeClient(clock, flaky_fetch)
        scheduler = build_scheduler(
            item_store,
            [watched_project],
            client,
            clock,
            listener,
            failure_backoff_base_seconds=30,
        )

        first = await scheduler.sweep()

        assert first.outcome_for(watched_project.id) is CycleOutcome.FAILED
        assert await item_store.item_count(watched_project.id) == 0
        assert await item_store.get_cursor(watched_project.id) is None
        assert listener.notifications == []
        assert scheduler.states.state(watched_project.id) is SyncState.IDLE
        assert scheduler.health(watched_project.id).next_attempt_at == START + 30

        backing_off = await scheduler.sweep()
        assert backing_off.outcome_for(watched_project.id) is CycleOutcome.BACKING_OFF
        assert len(client.calls) == 1

        clock.now += 31
        retried = await scheduler.sweep()
        assert retried.outcome_for(watched_project.id) is CycleOutcome.SUCCEEDED
        assert await item_store.item_count(watched_project.id) == 1

    @pytest.mark.asyncio
    async def test_backoff_doubles_up_to_the_cap(
        self, item_store: ItemStore, watched_project: WatchedProject
    ) -> None:
        """Test the exponential backoff schedule."""
        clock = FakeClock()

        async def failing_fetch(full_name: str) -> FetchResult:
            raise PaginationError("boom")

        scheduler = build_scheduler(
            item_store,
            [watched_project],
            FakeClient(clock, failing_fetch),
            clock,
            RecordingListener(),
            failure_backoff_base_seconds=10,
            failure_backoff_max_seconds=25,
        )

        delays = []
        for _ in range(3):
            await scheduler.sweep()
            health = scheduler.health(watched_project.id)
            delays.append(health.next_attempt_at - clock.now)
            clock.now = health.next_attempt_at

        assert delays == [10, 20, 25]

    @pytest.mark.asyncio
    async def test_persistent_failure_escalates_once_and_recovers(
        self, item_store: ItemStore, watched_project: WatchedProject
    ) -> None:
        """
        Why: Users need a lasting indicator, not a popup per failed cycle
        What: Three failures with a threshold of two, then a success
        How: Check on_project_health calls and the persisted failure count
        """
        clock = FakeClock()
        listener = RecordingListener()
        failures = [PaginationError("down")] * 3

        async def flaky_fetch(full_name: str) -> FetchResult:
            if failures:
                raise failures.pop()
            return FetchResultFactory.complete([PR(1)])

        scheduler = build_scheduler(
            item_store,
            [watched_project],
            FakeClient(clock, flaky_fetch),
            clock,
            listener,
            failure_escalation_threshold=2,
            failure_backoff_base_seconds=1,
            failure_backoff_max_seconds=1,
        )

        for _ in range(4):
            await scheduler.sweep()
            clock.now += 5

        assert listener.health == [("octo/widgets", True), ("octo/widgets", False)]
        assert scheduler.health(watched_project.id).consecutive_failures == 0

    @pytest.mark.asyncio
    async def test_failure_of_one_project_does_not_affect_siblings(
        self, item_store: ItemStore, project_factory
    ) -> None:
        """Test that fetch errors stay inside their own pipeline."""
        clock = FakeClock()

        async def fetch(full_name: str) -> FetchResult:
            if full_name == "octo/broken":
                raise GitHubNotFoundError("Not Found", 404)
            return FetchResultFactory.complete([PR(1)])

        broken = await project_factory("octo/broken")
        healthy = await project_factory("octo/healthy")
        scheduler = build_scheduler(
            item_store,
            [broken, healthy],
            FakeClient(clock, fetch),
            clock,
            RecordingListener(),
        )

        result = await scheduler.sweep()

        assert result.outcome_for(broken.id) is CycleOutcome.FAILED
        assert result.outcome_for(healthy.id) is CycleOutcome.SUCCEEDED
        # Non-network errors are not retried on a backoff schedule
        assert scheduler.health(broken.id).next_attempt_at == 0.0


class TestRateLimits:
    """Test quota exhaustion handling."""

    @pytest.mark.asyncio
    async def test_exhausted_quota_defers_every_project_until_reset(
        self, item_store: ItemStore, project_factory
    ) -> None:
        """
        Why: Quota is shared by all projects on one credential
        What: Remaining quota is zero with a reset 60 seconds away
        How: Check no fetch happens before the reset and the cadence backs off
        """
        clock = FakeClock()
        client = FakeClient(clock)
        client.rate_limiter.record_exhausted(int(START) + 60, limit=5000)
        projects = [await project_factory("octo/a"), await project_factory("octo/b")]
        scheduler = build_scheduler(
            item_store,
            projects,
            client,
            clock,
            RecordingListener(),
            interval_seconds=10,
        )

        deferred = await scheduler.sweep()

        assert {c.outcome for c in deferred.cycles} == {CycleOutcome.DEFERRED}
        assert client.calls == []
        assert scheduler.next_sweep_delay() == 60
        assert scheduler.deferred_until is not None

        clock.now += 30
        still_deferred = await scheduler.sweep()
        assert {c.outcome for c in still_deferred.cycles} == {CycleOutcome.DEFERRED}
        assert client.calls == []

        clock.now += 31
        resumed = await scheduler.sweep()
        assert resumed.succeeded == 2
        assert scheduler.next_sweep_delay() == 10

    @pytest.mark.asyncio
    async def test_rate_limited_fetch_defers_and_reports_long_waits(
        self, item_store: ItemStore, watched_project: WatchedProject
    ) -> None:
        """Test that a rejection carrying a far reset is surfaced to the user."""
        clock = FakeClock()
        listener = RecordingListener()
        reset = int(START) + 3600

        async def limited_fetch(full_name: str) -> FetchResult:
            raise RateLimitedError("API rate limit exceeded", reset_time=reset)

        scheduler = build_scheduler(
            item_store,
            [watched_project],
            FakeClient(clock, limited_fetch),
            clock,
            listener,
            rate_limit_notice_threshold_seconds=600,
        )

        result = await scheduler.sweep()

        assert result.outcome_for(watched_project.id) is CycleOutcome.DEFERRED
        assert [until.timestamp() for until in listener.deferrals] == [reset]
        assert await item_store.item_count(watched_project.id) == 0

    @pytest.mark.asyncio
    async def test_short_deferral_is_not_reported(
        self, item_store: ItemStore, watched_project: WatchedProject
    ) -> None:
        """Test that deferrals under the threshold stay silent."""
        clock = FakeClock()
        listener = RecordingListener()
        client = FakeClient(clock)
        client.rate_limiter.record_exhausted(int(START) + 60)
        scheduler = build_scheduler(
            item_store, [watched_project], client, clock, listener
        )

        await scheduler.sweep()

        assert listener.deferrals == []


class TestCredentialFailures:
    """Test authentication failure handling."""

    @pytest.mark.asyncio
    async def test_auth_error_halts_all_projects_until_resumed(
        self, item_store: ItemStore, project_factory
    ) -> None:
        """
        Why: A rejected credential fails identically for every project
        What: First fetch is rejected; later sweeps must not call the API
        How: Check halt, single listener report, then resume()
        """
        clock = FakeClock()
        listener = RecordingListener()
        rejected = [True]

        async def fetch(full_name: str) -> FetchResult:
            if rejected[0]:
                raise AuthError("Bad credentials", 401)
            return FetchResultFactory.complete([PR(1)])

        client = FakeClient(clock, fetch)
        projects = [await project_factory("octo/a"), await project_factory("octo/b")]
        scheduler = build_scheduler(
            item_store,
            projects,
            client,
            clock,
            listener,
            max_concurrent_projects=1,
        )

        halted = await scheduler.sweep()

        assert {c.outcome for c in halted.cycles} == {CycleOutcome.HALTED}
        assert scheduler.auth_halted
        assert len(listener.auth_failures) == 1
        assert client.calls == ["octo/a"]

        again = await scheduler.sweep()
        assert {c.outcome for c in again.cycles} == {CycleOutcome.HALTED}
        assert client.calls == ["octo/a"]

        rejected[0] = False
        scheduler.resume()
        resumed = await scheduler.sweep()
        assert resumed.succeeded == 2


class TestCancellation:
    """Test stopping in-flight work."""

    @pytest.mark.asyncio
    async def test_cancelled_fetch_leaves_no_trace(
        self, item_store: ItemStore, watched_project: WatchedProject
    ) -> None:
        """
        Why: Shutdown must not half-apply a project's update
        What: Cancel the sweep while the fetch is blocked
        How: Check store, state machine and activity count afterwards
        """
        clock = FakeClock()
        listener = RecordingListener()
        started = asyncio.Event()

        async def hanging_fetch(full_name: str) -> FetchResult:
            started.set()
            await asyncio.Event().wait()
            raise AssertionError("unreachable")

        scheduler = build_scheduler(
            item_store,
            [watched_project],
            FakeClient(clock, hanging_fetch),
            clock,
            listener,
        )

        sweep = asyncio.create_task(scheduler.sweep())
        await started.wait()
        await scheduler.cancel_sweep()

        with pytest.raises(asyncio.CancelledError):
            await sweep
        assert await item_store.item_count(watched_project.id) == 0
        assert scheduler.states.active_count == 0
        assert listener.activity[-1] == 0

    @pytest.mark.asyncio
    async def test_cancel_during_commit_finishes_and_delivers(
        self, item_store: ItemStore, watched_project: WatchedProject
    ) -> None:
        """
        Why: A commit that completes after its pipeline was cancelled must not
             lose its events; the next sweep diffs against the new state and
             would never report them again
        What: Cancel the sweep while the reconciler is inside its commit
        How: Hold the commit, cancel, release it, then check the store, the
             state machine, notifications, badge counts and a second sweep
        """
        clock = FakeClock()
        listener = RecordingListener()
        entered = asyncio.Event()
        release = asyncio.Event()

        class HeldReconciler(Reconciler):
            async def reconcile(self, project, fetch):
                entered.set()
                await release.wait()
                return await super().reconcile(project, fetch)

        scheduler = build_scheduler(
            item_store, [watched_project], FakeClient(clock), clock, listener
        )
        scheduler.reconciler = HeldReconciler(item_store)

        sweep = asyncio.create_task(scheduler.sweep())
        await entered.wait()
        cancelling = asyncio.create_task(scheduler.cancel_sweep())
        await asyncio.sleep(0)
        assert not cancelling.done()
        assert scheduler.states.state(watched_project.id) is SyncState.RECONCILING

        release.set()
        await cancelling

        with pytest.raises(asyncio.CancelledError):
            await sweep
        assert await item_store.item_count(watched_project.id) == 1
        assert scheduler.states.active_count == 0
        assert len(listener.notifications) == 1
        assert listener.badges[-1].for_project(watched_project.id) == 1

        scheduler.reconciler = Reconciler(item_store)
        second = await scheduler.sweep()
        assert second.succeeded == 1
        assert second.cycles[0].events == 0
        assert len(listener.notifications) == 1

    @pytest.mark.asyncio
    async def test_refresh_interrupted_by_cancelled_sweep_returns(
        self, item_store: ItemStore, watched_project: WatchedProject
    ) -> None:
        """Test that a caller of refresh_now is not cancelled with the sweep."""
        clock = FakeClock()
        listener = RecordingListener()
        started = asyncio.Event()

        async def hanging_fetch(full_name: str) -> FetchResult:
            started.set()
            await asyncio.Event().wait()
            raise AssertionError("unreachable")

        scheduler = build_scheduler(
            item_store,
            [watched_project],
            FakeClient(clock, hanging_fetch),
            clock,
            listener,
        )

        refresh = asyncio.create_task(scheduler.refresh_now())
        await started.wait()
        await scheduler.cancel_sweep()

        result = await refresh
        assert isinstance(result, SweepResult)
        assert result.cycles == []
        assert not refresh.cancelled()

    @pytest.mark.asyncio
    async def test_start_and_stop_timer_loop(
        self, item_store: ItemStore, watched_project: WatchedProject
    ) -> None:
        """Test that the loop sweeps immediately and stops cleanly."""
        clock = FakeClock()
        listener = RecordingListener()
        scheduler = build_scheduler(
            item_store, [watched_project], FakeClient(clock), clock, listener
        )

        scheduler.start()
        assert scheduler.is_running
        for _ in range(100):
            if listener.sweeps:
                break
            await asyncio.sleep(0.01)
        await scheduler.stop()

        assert not scheduler.is_running
        assert len(listener.sweeps) >= 1
        assert await item_store.item_count(watched_project.id) == 1


class TestDeliveryFailures:
    """Test notification failures after a commit."""

    @pytest.mark.asyncio
    async def test_sink_failure_is_reported_and_commit_stands(
        self, item_store: ItemStore, watched_project: WatchedProject
    ) -> None:
        """Test that a broken sink never rolls back the store."""
        clock = FakeClock()
        listener = RecordingListener()
        scheduler = build_scheduler(
            item_store,
            [watched_project],
            FakeClient(clock),
            clock,
            listener,
            extra_sinks=(BrokenSink(),),
        )

        result = await scheduler.sweep()

        assert result.succeeded == 1
        assert len(listener.delivery_failures) == 1
        assert listener.delivery_failures[0].sink == "BrokenSink"
        assert await item_store.item_count(watched_project.id) == 1
