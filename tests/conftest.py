"""
Test configuration and fixtures for the sync engine tests.

Provides pytest fixtures for a real on-disk SQLite item store, watched
projects, and common testing utilities shared by unit tests.
"""

import os
from collections.abc import AsyncGenerator
from unittest.mock import patch

import pytest
import pytest_asyncio

from src.database import DatabaseConfig, DatabaseConnectionManager
from src.models import Project
from src.models.enums import DisplayPolicy, FetchMode
from src.repositories import ItemStore, ProjectRepository
from src.workers.sync.registry import WatchedProject


@pytest.fixture
def database_url(tmp_path) -> str:
    """
    SQLite database URL in a per-test temporary directory.

    Why: Store tests need a real database to check transactional behaviour
    What: Provides an aiosqlite URL pointing at a fresh file
    How: Uses pytest's tmp_path so every test starts from an empty database
    """
    return f"sqlite+aiosqlite:///{tmp_path / 'repo_watch_test.db'}"


@pytest_asyncio.fixture
async def connection_manager(
    database_url: str,
) -> AsyncGenerator[DatabaseConnectionManager, None]:
    """
    Connection manager bound to a fresh SQLite database with the schema created.

    Why: Repository and store tests exercise real SQL, not mocks
    What: Provides an initialized DatabaseConnectionManager
    How: Creates the schema on startup and disposes the engine on teardown
    """
    manager = DatabaseConnectionManager(DatabaseConfig(url=database_url))
    await manager.create_schema()
    yield manager
    await manager.close()


@pytest.fixture
def item_store(connection_manager: DatabaseConnectionManager) -> ItemStore:
    """
    Item store on top of the test database.

    Why: Most sync components read and write through the store
    What: Provides an ItemStore instance
    How: Wraps the connection_manager fixture
    """
    return ItemStore(connection_manager)


@pytest_asyncio.fixture
async def project_factory(connection_manager: DatabaseConnectionManager):
    """
    Factory creating persisted projects and returning their registry entries.

    Why: Store rows must exist before items can reference them
    What: Returns an async callable producing WatchedProject entries
    How: Upserts through ProjectRepository and converts the row
    """

    async def create(
        full_name: str = "octo/widgets",
        fetch_mode: FetchMode = FetchMode.COMPLETE,
        pr_visibility: DisplayPolicy = DisplayPolicy.ALL,
        issue_visibility: DisplayPolicy = DisplayPolicy.ALL,
        **settings,
    ) -> WatchedProject:
        async with connection_manager.get_session() as session:
            project: Project = await ProjectRepository(session).upsert(
                full_name,
                fetch_mode=fetch_mode,
                pr_visibility=pr_visibility,
                issue_visibility=issue_visibility,
                **settings,
            )
        return WatchedProject.from_model(project)

    return create


@pytest_asyncio.fixture
async def watched_project(project_factory) -> WatchedProject:
    """
    A single persisted project synced with complete listings.

    Why: The common case in reconciliation and scheduler tests
    What: Provides the registry entry of "octo/widgets"
    How: Uses project_factory with defaults
    """
    return await project_factory()


@pytest.fixture
def test_env_vars():
    """
    Set up test environment variables.

    Why: Ensures configuration tests run with predictable substitution values
    What: Sets GITHUB_TOKEN and DATABASE_URL
    How: Uses patch.dict to temporarily set environment variables
    """
    env_vars = {
        "GITHUB_TOKEN": "ghp_test_token",
        "DATABASE_URL": "sqlite+aiosqlite:///./env_test.db",
    }

    with patch.dict(os.environ, env_vars):
        yield env_vars
