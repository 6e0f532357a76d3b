"""Pydantic configuration models for the repository watch sync engine.

This module defines all configuration schemas with type safety, validation,
and environment variable substitution support.

The configuration hierarchy follows this structure:
- Config: Root configuration containing all subsystems
- SystemConfig: Logging and environment
- Component configs: GitHub API, database, sync scheduling, retention,
  notifications
- ProjectConfig: One entry per watched repository

Environment variables are substituted using the format ${VAR_NAME} with
optional defaults: ${VAR_NAME:default_value}
"""

import os
import re
from enum import Enum
from typing import Any
from urllib.parse import urlparse

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from ..database.config import DEFAULT_DATABASE_URL
from ..models.enums import DisplayPolicy, FetchMode
from .exceptions import EnvironmentVariableError

_ENV_PATTERN = re.compile(r"\$\{([^}:]+)(?::([^}]*))?\}")
_FULL_NAME_PATTERN = re.compile(r"^[A-Za-z0-9_.-]+/[A-Za-z0-9_.-]+$")


class LogLevel(str, Enum):
    """Supported logging levels."""

    DEBUG = "DEBUG"
    INFO = "INFO"
    WARNING = "WARNING"
    ERROR = "ERROR"
    CRITICAL = "CRITICAL"


class BaseConfigModel(BaseModel):
    """Base configuration model with environment variable substitution."""

    model_config = ConfigDict(validate_assignment=True, extra="forbid")

    @model_validator(mode="before")
    @classmethod
    def substitute_env_vars(cls, values: Any) -> Any:
        """Substitute environment variables in string values.

        Supports formats:
        - ${VAR_NAME} - Required environment variable
        - ${VAR_NAME:default} - Optional with default value

        Raises:
            EnvironmentVariableError: If a required environment variable is missing
        """

        def replacer(match: re.Match[str]) -> str:
            var_name = match.group(1)
            default_value = match.group(2)

            env_value = os.getenv(var_name)
            if env_value is not None:
                return env_value
            if default_value is not None:
                return default_value
            raise EnvironmentVariableError(
                f"Required environment variable '{var_name}' not found",
                variable_name=var_name,
            )

        def substitute_value(value: Any) -> Any:
            if isinstance(value, str):
                return _ENV_PATTERN.sub(replacer, value)
            elif isinstance(value, dict):
                return {k: substitute_value(v) for k, v in value.items()}
            elif isinstance(value, list):
                return [substitute_value(item) for item in value]
            return value

        if not isinstance(values, dict):
            return values
        return {key: substitute_value(value) for key, value in values.items()}


class SystemConfig(BaseConfigModel):
    """Core system configuration settings."""

    log_level: LogLevel = Field(
        default=LogLevel.INFO, description="System-wide logging level"
    )

    environment: str = Field(
        default="development",
        description="Deployment environment (development, staging, production)",
    )


class GitHubConfig(BaseConfigModel):
    """Remote API access settings."""

    base_url: str = Field(
        default="https://api.github.com", description="API base URL"
    )

    token: str | None = Field(
        default=None,
        description="Personal access token; syncing halts until one is provided",
    )

    timeout: int = Field(
        default=30, ge=1, le=300, description="Per-request timeout in seconds"
    )

    max_retries: int = Field(
        default=0,
        ge=0,
        le=5,
        description="In-request retries for transient failures; the scheduler "
        "backs off between cycles either way",
    )

    per_page: int = Field(default=100, ge=1, le=100, description="Listing page size")

    max_pages: int = Field(
        default=10,
        ge=1,
        le=100,
        description="Page ceiling per listing; a truncated listing is not complete",
    )

    max_concurrent_requests: int = Field(
        default=10, ge=1, le=50, description="Concurrent HTTP requests per client"
    )

    user_agent: str = Field(
        default="Repo-Watch-Sync/1.0", description="User-Agent header value"
    )

    viewer_login: str | None = Field(
        default=None,
        description="Login of the local user; looked up from the API when unset",
    )

    @field_validator("token", "viewer_login", mode="before")
    @classmethod
    def empty_as_none(cls, v: Any) -> Any:
        """Treat blank values (e.g. an unset ${GITHUB_TOKEN:}) as absent."""
        if isinstance(v, str) and not v.strip():
            return None
        return v.strip() if isinstance(v, str) else v

    @field_validator("base_url")
    @classmethod
    def validate_base_url(cls, v: str) -> str:
        """Validate API base URL format."""
        parsed = urlparse(v)
        if parsed.scheme not in ("http", "https") or not parsed.hostname:
            raise ValueError("GitHub base URL must be an http(s) URL")
        return v.rstrip("/")


class DatabaseConfig(BaseConfigModel):
    """Item store database configuration."""

    url: str = Field(
        default=DEFAULT_DATABASE_URL, description="SQLAlchemy async database URL"
    )

    echo_sql: bool = Field(default=False, description="Enable SQLAlchemy query logging")

    @field_validator("url")
    @classmethod
    def validate_database_url(cls, v: str) -> str:
        """Validate database URL format."""
        if not v:
            raise ValueError("Database URL cannot be empty")

        scheme = urlparse(v).scheme
        if not scheme:
            raise ValueError("Database URL must include scheme")
        if scheme.split("+")[0] not in ("postgresql", "sqlite"):
            raise ValueError("Unsupported database scheme")
        return v


class SyncConfig(BaseConfigModel):
    """Sync scheduling, concurrency and failure handling."""

    interval_seconds: int = Field(
        default=300, ge=1, le=86400, description="Time between timer sweeps"
    )

    max_concurrent_projects: int = Field(
        default=4, ge=1, le=64, description="Projects syncing at the same time"
    )

    failure_backoff_base_seconds: int = Field(
        default=30, ge=1, description="First retry delay after a network failure"
    )

    failure_backoff_max_seconds: int = Field(
        default=1800, ge=1, description="Upper bound of the retry delay"
    )

    failure_escalation_threshold: int = Field(
        default=3,
        ge=1,
        le=100,
        description="Consecutive failures before a project is flagged as failing",
    )

    rate_limit_buffer: int = Field(
        default=10,
        ge=0,
        description="Remaining quota at or below which sweeps are deferred",
    )

    rate_limit_notice_threshold_seconds: int = Field(
        default=600,
        ge=0,
        description="Deferrals longer than this are reported to the user",
    )

    mark_unread_on_new_commits: bool = Field(
        default=False, description="Mark pull requests unread when their head moves"
    )

    @model_validator(mode="after")
    def validate_backoff(self) -> "SyncConfig":
        """Ensure the backoff ceiling is not below its base."""
        if self.failure_backoff_max_seconds < self.failure_backoff_base_seconds:
            raise ValueError(
                "failure_backoff_max_seconds must be >= failure_backoff_base_seconds"
            )
        return self


class RetentionConfig(BaseConfigModel):
    """Which finished items stay in the store."""

    keep_closed_items: bool = Field(
        default=True, description="Keep closed items after reporting the closure"
    )

    keep_merged_items: bool = Field(
        default=True, description="Keep merged pull requests after reporting the merge"
    )


class NotificationConfig(BaseConfigModel):
    """Notification emission settings."""

    enabled: bool = Field(default=True, description="Deliver notifications at all")

    noisy_item_window_seconds: int = Field(
        default=300, ge=1, description="Window for the per-item notification limit"
    )

    max_notifications_per_item: int = Field(
        default=5,
        ge=1,
        description="Notifications one item may produce within the window",
    )

    log_notifications: bool = Field(
        default=True, description="Also write delivered notifications to the log"
    )


class ProjectConfig(BaseConfigModel):
    """Configuration for one watched repository."""

    full_name: str = Field(description="Repository in owner/name form")

    display_name: str | None = Field(default=None, description="Name shown to users")

    enabled: bool = Field(default=True, description="Whether the project is synced")

    fetch_mode: FetchMode = Field(
        default=FetchMode.INCREMENTAL,
        description="complete: every open item per cycle; incremental: since cursor",
    )

    track_pull_requests: bool = Field(default=True, description="Sync pull requests")

    track_issues: bool = Field(default=True, description="Sync issues")

    pr_visibility: DisplayPolicy = Field(
        default=DisplayPolicy.ALL, description="Which pull requests notify"
    )

    issue_visibility: DisplayPolicy = Field(
        default=DisplayPolicy.ALL, description="Which issues notify"
    )

    @field_validator("full_name")
    @classmethod
    def validate_full_name(cls, v: str) -> str:
        """Validate owner/name format."""
        v = v.strip()
        if not _FULL_NAME_PATTERN.match(v):
            raise ValueError("Project name must be in 'owner/name' form")
        return v

    @model_validator(mode="after")
    def validate_tracks_something(self) -> "ProjectConfig":
        """Ensure at least one item kind is tracked."""
        if not self.track_pull_requests and not self.track_issues:
            raise ValueError(
                f"Project {self.full_name} must track pull requests or issues"
            )
        return self

    def to_settings(self) -> dict[str, Any]:
        """Project fields as stored on the project row."""
        return {
            "display_name": self.display_name or self.full_name,
            "enabled": self.enabled,
            "fetch_mode": self.fetch_mode,
            "track_pull_requests": self.track_pull_requests,
            "track_issues": self.track_issues,
            "pr_visibility": self.pr_visibility,
            "issue_visibility": self.issue_visibility,
        }


class Config(BaseConfigModel):
    """Root configuration containing all subsystem configurations."""

    system: SystemConfig = Field(
        default_factory=SystemConfig, description="Core system configuration"
    )

    github: GitHubConfig = Field(
        default_factory=GitHubConfig, description="Remote API configuration"
    )

    database: DatabaseConfig = Field(
        default_factory=DatabaseConfig, description="Database configuration"
    )

    sync: SyncConfig = Field(
        default_factory=SyncConfig, description="Sync scheduling configuration"
    )

    retention: RetentionConfig = Field(
        default_factory=RetentionConfig, description="Item retention policy"
    )

    notifications: NotificationConfig = Field(
        default_factory=NotificationConfig,
        description="Notification configuration",
    )

    projects: list[ProjectConfig] = Field(
        default_factory=list, description="Watched repositories"
    )

    @field_validator("projects")
    @classmethod
    def validate_unique_projects(cls, v: list[ProjectConfig]) -> list[ProjectConfig]:
        """Ensure no repository is configured twice."""
        seen: set[str] = set()
        for project in v:
            key = project.full_name.lower()
            if key in seen:
                raise ValueError(f"Project {project.full_name} is configured twice")
            seen.add(key)
        return v
