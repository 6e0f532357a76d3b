"""Database connection management.

Provides async SQLAlchemy engine management and session handling. SQLite
connections run in WAL mode so readers never observe a half-written sync
commit, and foreign keys are enforced so deleting an item removes its
comments, reviews and status checks.
"""

import logging
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager
from typing import Any

from sqlalchemy import event, text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from ..models import Base
from .config import DatabaseConfig, get_database_config

logger = logging.getLogger(__name__)


class DatabaseConnectionManager:
    """Manages the database engine and provides session handling."""

    def __init__(self, config: DatabaseConfig | None = None):
        self.config = config or get_database_config()
        self._engine: AsyncEngine | None = None
        self._session_factory: async_sessionmaker[AsyncSession] | None = None

    @property
    def engine(self) -> AsyncEngine:
        """Get or create async database engine."""
        if self._engine is None:
            self._engine = self._create_engine()
        return self._engine

    @property
    def session_factory(self) -> async_sessionmaker[AsyncSession]:
        """Get or create async session factory."""
        if self._session_factory is None:
            self._session_factory = async_sessionmaker(
                bind=self.engine,
                class_=AsyncSession,
                expire_on_commit=False,  # Keep objects usable after commit
            )
        return self._session_factory

    def _create_engine(self) -> AsyncEngine:
        """Create async SQLAlchemy engine."""
        engine_args: dict[str, Any] = {"echo": self.config.should_echo_sql()}

        if self.config.is_sqlite:
            engine_args["connect_args"] = {"timeout": self.config.connect_timeout}
        else:
            engine_args.update(
                pool_size=self.config.pool.pool_size,
                max_overflow=self.config.pool.max_overflow,
                pool_pre_ping=self.config.pool.pool_pre_ping,
                pool_recycle=self.config.pool.pool_recycle,
                pool_timeout=self.config.pool.pool_timeout,
                connect_args={"timeout": self.config.connect_timeout},
            )

        engine = create_async_engine(self.config.get_sqlalchemy_url(), **engine_args)

        if self.config.is_sqlite:
            self._register_sqlite_pragmas(engine)

        logger.info(f"Created database engine for {engine.url.render_as_string()}")
        return engine

    def _register_sqlite_pragmas(self, engine: AsyncEngine) -> None:
        """Enable WAL journaling and foreign key enforcement on every connection."""

        @event.listens_for(engine.sync_engine, "connect")
        def on_connect(dbapi_connection: Any, connection_record: Any) -> None:
            cursor = dbapi_connection.cursor()
            cursor.execute("PRAGMA journal_mode=WAL")
            cursor.execute("PRAGMA foreign_keys=ON")
            cursor.close()
            logger.debug("New SQLite connection configured")

    async def create_schema(self) -> None:
        """Create all tables that do not exist yet."""
        async with self.engine.begin() as connection:
            await connection.run_sync(Base.metadata.create_all)
        logger.info("Database schema ready")

    @asynccontextmanager
    async def get_session(self) -> AsyncGenerator[AsyncSession, None]:
        """Get database session with automatic commit and cleanup.

        Usage:
            async with connection_manager.get_session() as session:
                result = await session.execute(query)
        """
        session = self.session_factory()
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise
        finally:
            await session.close()

    @asynccontextmanager
    async def get_transaction(self) -> AsyncGenerator[AsyncSession, None]:
        """Get database session with explicit transaction control.

        Usage:
            async with connection_manager.get_transaction() as session:
                async with DatabaseTransaction(session):
                    ...  # Committed when the inner block exits cleanly
        """
        session = self.session_factory()
        try:
            yield session
        except Exception:
            await session.rollback()
            raise
        finally:
            await session.close()

    async def health_check(self) -> bool:
        """Perform database health check.

        Returns:
            bool: True if database is reachable, False otherwise
        """
        try:
            async with self.get_session() as session:
                result = await session.execute(text("SELECT 1"))
                return result.scalar() == 1
        except SQLAlchemyError as e:
            logger.error(f"Database health check failed: {e}")
            return False

    async def close(self) -> None:
        """Close database engine and clean up connections."""
        if self._engine:
            await self._engine.dispose()
            self._engine = None
            self._session_factory = None
            logger.info("Database engine disposed")
