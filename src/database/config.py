"""Database configuration module.

Provides type-safe database configuration with environment variable support.
The default is a local SQLite file through aiosqlite; a PostgreSQL URL using
asyncpg works as well.
"""

import os
from typing import Any
from urllib.parse import urlparse

from pydantic import BaseModel, Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

DEFAULT_DATABASE_URL = "sqlite+aiosqlite:///./repo_watch.db"


class DatabasePoolConfig(BaseModel):
    """Database connection pool configuration (server databases only)."""

    pool_size: int = Field(
        default=5, description="Number of connections to maintain in the pool"
    )
    max_overflow: int = Field(
        default=10,
        description="Number of additional connections to create when pool is exhausted",
    )
    pool_pre_ping: bool = Field(
        default=True, description="Enable connection health checks before use"
    )
    pool_recycle: int = Field(
        default=3600,
        description="Number of seconds after which a connection is recreated",
    )
    pool_timeout: int = Field(
        default=30, description="Timeout in seconds to get a connection from the pool"
    )


class DatabaseConfig(BaseSettings):
    """Database configuration with environment variable support.

    Environment variables:
    - DATABASE_URL: Full database connection URL
    - DATABASE_ECHO_SQL: Log every SQL statement (default: false)
    - DATABASE_CONNECT_TIMEOUT: Connection timeout in seconds (default: 10)
    """

    url: str = Field(
        default=DEFAULT_DATABASE_URL, description="SQLAlchemy async database URL"
    )
    pool: DatabasePoolConfig = Field(default_factory=DatabasePoolConfig)
    echo_sql: bool = Field(
        default=False, description="Enable SQL query logging (development only)"
    )
    connect_timeout: int = Field(
        default=10, description="Connection timeout in seconds"
    )

    model_config = SettingsConfigDict(
        env_prefix="DATABASE_",
        case_sensitive=False,
        extra="ignore",
    )

    @field_validator("url")
    @classmethod
    def validate_url(cls, v: str) -> str:
        """Validate database URL format."""
        parsed = urlparse(v)
        if not parsed.scheme:
            raise ValueError("Invalid database URL format")
        if not parsed.scheme.startswith("sqlite") and not parsed.hostname:
            raise ValueError("Database URL must include a host")
        return v

    @field_validator("pool", mode="before")
    @classmethod
    def validate_pool_config(cls, v: Any) -> Any:
        """Accept pool settings as a plain mapping."""
        if isinstance(v, dict):
            return DatabasePoolConfig(**v)
        return v

    @property
    def is_sqlite(self) -> bool:
        """Check whether the URL points at SQLite."""
        return urlparse(self.url).scheme.startswith("sqlite")

    def get_sqlalchemy_url(self) -> str:
        """Get SQLAlchemy-compatible database URL."""
        return self.url

    def is_production(self) -> bool:
        """Check if running in production environment."""
        return os.getenv("ENVIRONMENT", "development").lower() == "production"

    def should_echo_sql(self) -> bool:
        """Determine if SQL should be echoed (never in production)."""
        return self.echo_sql and not self.is_production()


# Global configuration instance
_config_instance: DatabaseConfig | None = None


def get_database_config() -> DatabaseConfig:
    """Get database configuration instance.

    Returns cached instance on subsequent calls.
    """
    global _config_instance

    if _config_instance is None:
        _config_instance = DatabaseConfig()

    return _config_instance


def reset_database_config() -> None:
    """Reset configuration instance (useful for testing)."""
    global _config_instance
    _config_instance = None
