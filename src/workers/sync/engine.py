"""Sync engine lifecycle.

``SyncEngine`` is the single object a host application creates. It owns the
database connection, the API client and every sync component, and exposes
the operations a user interface needs. Nothing is global: two engines with
different configurations can run side by side.

Example:
    async with SyncEngine(config, listener=MyListener()) as engine:
        await engine.start()
        ...
"""

import logging
import time
import uuid
from collections.abc import Callable, Iterable
from typing import Any

from ...config.models import Config
from ...database import DatabaseConfig as DatabaseSettings
from ...database import DatabaseConnectionManager
from ...github.auth import AuthToken, CredentialStore
from ...github.client import GitHubClient, GitHubClientConfig
from ...github.exceptions import GitHubError
from ...github.rate_limiting import RateLimitManager
from ...repositories.item_store import ItemStore
from ...repositories.project import ProjectRepository
from .activity import ActivityTracker
from .events import BadgeCounts, SyncEventListener
from .notifications import (
    LoggingNotificationSink,
    NotificationEmitter,
    NotificationSink,
)
from .reconciliation import Reconciler
from .registry import ProjectRegistry, WatchedProject
from .scheduler import SweepResult, SyncScheduler

logger = logging.getLogger(__name__)


class SyncEngine:
    """Constructible, disposable sync engine."""

    def __init__(
        self,
        config: Config,
        listener: SyncEventListener | None = None,
        sinks: Iterable[NotificationSink] = (),
        credentials: CredentialStore | None = None,
        connection_manager: DatabaseConnectionManager | None = None,
        clock: Callable[[], float] = time.time,
    ):
        """Initialize the engine; nothing is connected until ``initialize``.

        Args:
            config: Loaded configuration
            listener: Host callbacks, also the first notification sink
            sinks: Additional notification sinks
            credentials: Credential holder; built from ``github.token`` if omitted
            connection_manager: Database access; built from ``database`` if omitted
            clock: Wall-clock time source in epoch seconds
        """
        self.config = config
        self.listener = listener or SyncEventListener()
        self.credentials = credentials or CredentialStore(config.github.token)
        self.connection_manager = connection_manager or DatabaseConnectionManager(
            DatabaseSettings(
                url=config.database.url, echo_sql=config.database.echo_sql
            )
        )
        self.clock = clock

        self.store = ItemStore(self.connection_manager)
        self.registry = ProjectRegistry()
        self.rate_limiter = RateLimitManager(
            buffer=config.sync.rate_limit_buffer, clock=clock
        )
        self.client = GitHubClient(
            auth=self.credentials,
            config=GitHubClientConfig(
                base_url=config.github.base_url,
                timeout=config.github.timeout,
                max_retries=config.github.max_retries,
                rate_limit_buffer=config.sync.rate_limit_buffer,
                user_agent=config.github.user_agent,
                max_concurrent_requests=config.github.max_concurrent_requests,
                per_page=config.github.per_page,
                max_pages=config.github.max_pages,
            ),
            rate_limiter=self.rate_limiter,
        )
        self.reconciler = Reconciler(
            self.store,
            viewer_login=config.github.viewer_login,
            mark_unread_on_new_commits=config.sync.mark_unread_on_new_commits,
            keep_closed_items=config.retention.keep_closed_items,
            keep_merged_items=config.retention.keep_merged_items,
        )
        all_sinks: list[NotificationSink] = [self.listener, *sinks]
        if config.notifications.log_notifications:
            all_sinks.append(LoggingNotificationSink())
        self.emitter = NotificationEmitter(
            sinks=all_sinks,
            viewer_login=config.github.viewer_login,
            enabled=config.notifications.enabled,
            noisy_item_window_seconds=config.notifications.noisy_item_window_seconds,
            max_notifications_per_item=config.notifications.max_notifications_per_item,
        )
        self.activity = ActivityTracker(self.listener.on_activity_changed)
        self.scheduler = SyncScheduler(
            registry=self.registry,
            client=self.client,
            store=self.store,
            reconciler=self.reconciler,
            emitter=self.emitter,
            activity=self.activity,
            listener=self.listener,
            interval_seconds=config.sync.interval_seconds,
            max_concurrent_projects=config.sync.max_concurrent_projects,
            failure_backoff_base_seconds=config.sync.failure_backoff_base_seconds,
            failure_backoff_max_seconds=config.sync.failure_backoff_max_seconds,
            failure_escalation_threshold=config.sync.failure_escalation_threshold,
            rate_limit_notice_threshold_seconds=(
                config.sync.rate_limit_notice_threshold_seconds
            ),
            clock=clock,
        )

        self._initialized = False
        self._closed = False

    async def __aenter__(self) -> "SyncEngine":
        """Async context manager entry."""
        await self.initialize()
        return self

    async def __aexit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        """Async context manager exit."""
        await self.close()

    @property
    def viewer_login(self) -> str | None:
        """Login of the local user, if known."""
        return self.reconciler.viewer_login

    @property
    def activity_count(self) -> int:
        """Number of fetches in flight."""
        return self.activity.in_flight

    def projects(self) -> list[WatchedProject]:
        """Every watched project."""
        return self.registry.all()

    async def initialize(self) -> None:
        """Create the schema, load projects and publish the persisted unread counts."""
        if self._initialized:
            return
        logger.info("Initializing sync engine...")

        try:
            await self.connection_manager.create_schema()
            await self._load_projects()
            self.credentials.subscribe(self._on_credential_changed)
            if not self.config.github.viewer_login:
                await self._discover_viewer()
            await self.scheduler.publish_badge_counts()
        except Exception as e:
            logger.error(f"Failed to initialize sync engine: {e}")
            await self.close()
            raise

        self._initialized = True
        logger.info(f"Sync engine initialized with {len(self.registry)} project(s)")

    async def _load_projects(self) -> None:
        """Bring project rows in line with the configuration and fill the registry."""
        configured = self.config.projects
        async with self.connection_manager.get_session() as session:
            projects = ProjectRepository(session)
            for project_config in configured:
                await projects.upsert(
                    project_config.full_name, **project_config.to_settings()
                )
            disabled = await projects.disable_missing(p.full_name for p in configured)
            if disabled:
                logger.info(f"Disabled {disabled} project(s) no longer configured")
            rows = await projects.list_all()

        order = {p.full_name: index for index, p in enumerate(configured)}
        rows.sort(key=lambda row: order.get(row.full_name, len(order)))
        for row in rows:
            self.registry.put(WatchedProject.from_model(row))

    async def _discover_viewer(self) -> None:
        """Look up the credential's login for the mine and participated policies."""
        self._set_viewer(None)
        if not self.credentials.has_credential:
            return
        try:
            user = await self.client.get_user()
        except GitHubError as e:
            logger.warning(f"Could not determine the current user: {e}")
            return
        self._set_viewer(user.get("login"))
        logger.info(f"Syncing as {self.viewer_login}")

    def _set_viewer(self, login: str | None) -> None:
        self.reconciler.viewer_login = login
        self.emitter.viewer_login = login

    async def start(self) -> None:
        """Start periodic syncing; the first sweep runs immediately."""
        await self.initialize()
        self.scheduler.start()

    async def refresh_now(self) -> SweepResult:
        """Sync every enabled project now, joining a sweep already running."""
        await self.initialize()
        return await self.scheduler.refresh_now()

    async def set_project_enabled(
        self, project_id: uuid.UUID, enabled: bool
    ) -> WatchedProject:
        """Enable or disable a project.

        Raises:
            KeyError: If the project is unknown
        """
        if project_id not in self.registry:
            raise KeyError(project_id)
        async with self.connection_manager.get_session() as session:
            await ProjectRepository(session).set_enabled(project_id, enabled)
        project = self.registry.set_enabled(project_id, enabled)
        logger.info(f"{project.full_name} {'enabled' if enabled else 'disabled'}")
        return project

    async def acknowledge(self, project_id: uuid.UUID, remote_id: str) -> bool:
        """Mark one item as seen.

        Returns:
            True if the item was unread
        """
        changed = await self.store.acknowledge(project_id, remote_id)
        if changed:
            await self.scheduler.publish_badge_counts()
        return changed > 0

    async def acknowledge_all(self, project_id: uuid.UUID) -> int:
        """Mark every item of a project as seen.

        Returns:
            Number of items that were unread
        """
        changed = await self.store.acknowledge(project_id)
        if changed:
            await self.scheduler.publish_badge_counts()
        return changed

    async def unread_counts(self) -> BadgeCounts:
        """Current unread counts, read from the store."""
        return BadgeCounts(per_project=await self.store.unread_counts())

    async def replace_credential(self, token: str | None) -> None:
        """Install a new credential, or clear it with None."""
        await self.credentials.replace(token)

    async def _on_credential_changed(self, token: AuthToken | None) -> None:
        # In-flight fetches were made with the old credential
        await self.scheduler.cancel_sweep()
        self.scheduler.resume()
        if not self.config.github.viewer_login:
            await self._discover_viewer()
        if token is not None:
            self.scheduler.wake()

    async def close(self) -> None:
        """Stop syncing, finish started commits and release connections."""
        if self._closed:
            return
        self._closed = True
        logger.info("Shutting down sync engine...")
        await self.scheduler.stop()
        await self.client.close()
        await self.connection_manager.close()
        logger.info("Sync engine stopped")
