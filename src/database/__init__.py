"""Database infrastructure module.

Provides database configuration, connection management and transaction
handling for the sync engine's item store.
"""

from .config import (
    DEFAULT_DATABASE_URL,
    DatabaseConfig,
    DatabasePoolConfig,
    get_database_config,
    reset_database_config,
)
from .connection import DatabaseConnectionManager
from .transactions import DatabaseTransaction, TransactionError, database_transaction

__all__ = [
    "DEFAULT_DATABASE_URL",
    "DatabaseConfig",
    "DatabaseConnectionManager",
    "DatabasePoolConfig",
    "DatabaseTransaction",
    "TransactionError",
    "database_transaction",
    "get_database_config",
    "reset_database_config",
]
