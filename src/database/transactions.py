"""Transaction management for database operations.

Every write the sync engine performs for a project goes through one
``DatabaseTransaction``: either all of it becomes visible or none of it does.
"""

import logging
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager
from typing import Any

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

logger = logging.getLogger(__name__)


class TransactionError(Exception):
    """Exception raised when a transaction cannot be committed or rolled back."""

    pass


class DatabaseTransaction:
    """Database transaction context manager with rollback support."""

    def __init__(
        self,
        session: AsyncSession,
        auto_commit: bool = True,
        label: str = "transaction",
    ):
        """Initialize transaction manager.

        Args:
            session: Database session to manage
            auto_commit: Whether to auto-commit on successful completion
            label: Names the unit of work in log messages, e.g. the project
                whose changeset is being committed
        """
        self.session = session
        self.auto_commit = auto_commit
        self.label = label
        self._committed = False
        self._rolled_back = False

    @property
    def committed(self) -> bool:
        """Whether the transaction was committed."""
        return self._committed

    async def __aenter__(self) -> AsyncSession:
        """Enter transaction context."""
        try:
            if not self.session.in_transaction():
                await self.session.begin()
            return self.session
        except SQLAlchemyError as e:
            logger.error(f"Failed to begin {self.label}: {e}")
            raise TransactionError(f"Failed to begin {self.label}: {e}") from e

    async def __aexit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        """Exit transaction context, rolling back if the body raised."""
        if exc_type is not None:
            await self.rollback()
            logger.warning(
                f"Rolled back {self.label} due to {exc_type.__name__}: {exc_val}"
            )
            return None  # Propagate the original exception

        if self.auto_commit and not self._committed:
            await self.commit()

    async def commit(self) -> None:
        """Commit the transaction.

        Raises:
            TransactionError: If the commit fails; the session is rolled back
        """
        if self._rolled_back:
            raise TransactionError("Cannot commit after rollback")

        if self._committed:
            return

        try:
            await self.session.commit()
            self._committed = True
            logger.debug(f"Committed {self.label}")
        except SQLAlchemyError as e:
            logger.error(f"Failed to commit {self.label}: {e}")
            await self.rollback()
            raise TransactionError(f"Failed to commit {self.label}: {e}") from e

    async def rollback(self) -> None:
        """Roll back the transaction."""
        if self._rolled_back:
            return

        try:
            await self.session.rollback()
            self._rolled_back = True
            logger.debug(f"Rolled back {self.label}")
        except SQLAlchemyError as e:
            logger.error(f"Failed to rollback transaction: {e}")
            raise TransactionError(f"Failed to rollback transaction: {e}") from e


@asynccontextmanager
async def database_transaction(
    session: AsyncSession, auto_commit: bool = True
) -> AsyncGenerator[AsyncSession, None]:
    """Context manager for database transactions.

    Args:
        session: Database session to use
        auto_commit: Whether to automatically commit on success

    Yields:
        The database session within transaction context

    Example:
        async with database_transaction(session) as tx_session:
            await repo.create(...)
            await repo.update(...)
            # Commits on success, rolls back on exception
    """
    transaction = DatabaseTransaction(session, auto_commit)
    async with transaction as tx_session:
        yield tx_session
