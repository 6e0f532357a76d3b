"""Configuration management for the repository watch sync engine.

This module provides type-safe configuration management with support for:
- YAML configuration files with environment variable substitution
- Pydantic-based validation and type safety

Example usage:
    from src.config import load_config

    config = load_config("config.yaml")
    interval = config.sync.interval_seconds
"""

from .exceptions import (
    ConfigurationError,
    ConfigurationFileError,
    ConfigurationValidationError,
    EnvironmentVariableError,
)
from .loader import (
    ConfigurationLoader,
    get_config,
    get_loader,
    load_config,
    reload_config,
    reset_config,
)
from .models import (
    BaseConfigModel,
    Config,
    DatabaseConfig,
    GitHubConfig,
    LogLevel,
    NotificationConfig,
    ProjectConfig,
    RetentionConfig,
    SyncConfig,
    SystemConfig,
)

__all__ = [
    "BaseConfigModel",
    "Config",
    "ConfigurationError",
    "ConfigurationFileError",
    "ConfigurationLoader",
    "ConfigurationValidationError",
    "DatabaseConfig",
    "EnvironmentVariableError",
    "GitHubConfig",
    "LogLevel",
    "NotificationConfig",
    "ProjectConfig",
    "RetentionConfig",
    "SyncConfig",
    "SystemConfig",
    "get_config",
    "get_loader",
    "load_config",
    "reload_config",
    "reset_config",
]
