"""Configuration loading and management system.

This module provides functionality to load configuration from YAML files,
validate the configuration, and manage the global configuration instance.

The loading hierarchy is:
1. Default values from Pydantic models
2. Configuration file (YAML)
3. Environment variables referenced as ${VAR} inside the file
"""

import logging
import os
from pathlib import Path
from typing import Any

import yaml
from pydantic import ValidationError

from ..models.enums import DisplayPolicy
from .exceptions import (
    ConfigurationError,
    ConfigurationFileError,
    ConfigurationValidationError,
)
from .models import Config

logger = logging.getLogger(__name__)

CONFIG_PATH_ENV = "REPO_WATCH_CONFIG_PATH"


class ConfigurationLoader:
    """Handles loading and validation of configuration from various sources."""

    def __init__(self) -> None:
        """Initialize configuration loader."""
        self._config: Config | None = None
        self._config_file_path: Path | None = None

    def load_from_file(self, config_path: str | Path, validate: bool = True) -> Config:
        """Load configuration from a YAML file.

        Args:
            config_path: Path to the YAML configuration file
            validate: Whether to run the cross-section checks after loading

        Returns:
            Loaded and validated configuration

        Raises:
            ConfigurationFileError: If file cannot be read or parsed
            ConfigurationValidationError: If configuration validation fails
            EnvironmentVariableError: If a referenced variable is not set
        """
        config_path = Path(config_path)

        if not config_path.exists():
            raise ConfigurationFileError(
                f"Configuration file not found: {config_path}",
                file_path=str(config_path),
            )

        if not config_path.is_file():
            raise ConfigurationFileError(
                f"Configuration path is not a file: {config_path}",
                file_path=str(config_path),
            )

        try:
            with open(config_path, encoding="utf-8") as f:
                config_data = yaml.safe_load(f)
        except yaml.YAMLError as e:
            raise ConfigurationFileError(
                f"Failed to parse YAML configuration: {e}", file_path=str(config_path)
            ) from e
        except OSError as e:
            raise ConfigurationFileError(
                f"Failed to read configuration file: {e}", file_path=str(config_path)
            ) from e

        if config_data is None:
            config_data = {}
        if not isinstance(config_data, dict):
            raise ConfigurationFileError(
                "Configuration file must contain a mapping at the top level",
                file_path=str(config_path),
            )

        config = self.load_from_dict(config_data, validate=validate)
        self._config_file_path = config_path.resolve()
        logger.info(f"Loaded configuration from {self._config_file_path}")
        return config

    def load_from_dict(
        self, config_data: dict[str, Any], validate: bool = True
    ) -> Config:
        """Load configuration from a dictionary.

        Args:
            config_data: Configuration data dictionary
            validate: Whether to run the cross-section checks after loading

        Returns:
            Loaded and validated configuration

        Raises:
            ConfigurationValidationError: If configuration validation fails
            EnvironmentVariableError: If a referenced variable is not set
        """
        try:
            config = Config(**config_data)
        except ValidationError as e:
            errors = e.errors()
            raise ConfigurationValidationError(
                "Configuration validation failed:\n"
                + ConfigurationValidationError.format_errors(errors),
                validation_errors=errors,
            ) from e

        if validate:
            self._validate_configuration(config)

        self._config = config
        self._config_file_path = None
        return config

    def load_default(self) -> Config:
        """Load configuration with default values only (no projects)."""
        return self.load_from_dict({})

    def find_config_file(self, filename: str = "config.yaml") -> Path | None:
        """Find configuration file in standard locations.

        Search order:
        1. REPO_WATCH_CONFIG_PATH environment variable
        2. Current working directory
        3. ~/.repo-watch/

        Args:
            filename: Configuration filename to search for

        Returns:
            Path to found configuration file, or None if not found
        """
        search_paths = []

        env_path_str = os.getenv(CONFIG_PATH_ENV)
        if env_path_str:
            env_path = Path(env_path_str)
            search_paths.append(env_path if env_path.suffix else env_path / filename)

        search_paths.append(Path.cwd() / filename)
        search_paths.append(Path.home() / ".repo-watch" / filename)

        for path in search_paths:
            if path.exists() and path.is_file():
                return path

        return None

    def auto_load(self, config_filename: str = "config.yaml") -> Config:
        """Automatically load configuration from standard locations.

        Raises:
            ConfigurationFileError: If no configuration file is found
        """
        config_path = self.find_config_file(config_filename)

        if config_path is None:
            raise ConfigurationFileError(
                f"No configuration file '{config_filename}' found in standard locations"
            )

        return self.load_from_file(config_path)

    def _validate_configuration(self, config: Config) -> None:
        """Validate settings that span several sections.

        Raises:
            ConfigurationValidationError: If validation fails
        """
        if config.projects and not config.github.token:
            logger.warning(
                "No GitHub token configured; syncing stays halted until a "
                "credential is provided"
            )

        personal = (DisplayPolicy.MINE, DisplayPolicy.PARTICIPATED)
        for project in config.projects:
            policies = (project.pr_visibility, project.issue_visibility)
            if (
                any(policy in personal for policy in policies)
                and not config.github.viewer_login
                and not config.github.token
            ):
                raise ConfigurationValidationError(
                    f"Project {project.full_name} filters notifications by viewer "
                    "but neither github.viewer_login nor github.token is set",
                    details={"project": project.full_name},
                )

    @property
    def config(self) -> Config | None:
        """Get the loaded configuration."""
        return self._config

    @property
    def config_file_path(self) -> Path | None:
        """Get the path to the loaded configuration file."""
        return self._config_file_path

    @property
    def is_loaded(self) -> bool:
        """Check if configuration has been loaded."""
        return self._config is not None

    def get_config_summary(self) -> dict[str, Any]:
        """Get a summary of the loaded configuration without secrets."""
        if not self._config:
            return {}

        return {
            "config_file": str(self._config_file_path)
            if self._config_file_path
            else None,
            "environment": self._config.system.environment,
            "log_level": self._config.system.log_level.value,
            "github_base_url": self._config.github.base_url,
            "has_token": self._config.github.token is not None,
            "database_scheme": self._config.database.url.split("://")[0],
            "sync_interval_seconds": self._config.sync.interval_seconds,
            "projects": len(self._config.projects),
        }


# Global configuration loader instance
_loader = ConfigurationLoader()


def load_config(
    config_path: str | Path | None = None, auto_discover: bool = True
) -> Config:
    """Load configuration from file or auto-discovery.

    Args:
        config_path: Explicit path to configuration file
        auto_discover: Whether to search standard locations when no path is given

    Returns:
        Loaded configuration

    Raises:
        ConfigurationError: If configuration cannot be loaded or is invalid
    """
    if config_path:
        return _loader.load_from_file(config_path)
    if auto_discover:
        return _loader.auto_load()
    return _loader.load_default()


def get_config() -> Config:
    """Get the currently loaded configuration.

    Raises:
        ConfigurationError: If no configuration has been loaded
    """
    if not _loader.is_loaded or _loader.config is None:
        raise ConfigurationError("No configuration loaded. Call load_config() first.")

    return _loader.config


def get_loader() -> ConfigurationLoader:
    """Get the global configuration loader instance."""
    return _loader


def reload_config() -> Config:
    """Reload configuration from the same file.

    Raises:
        ConfigurationError: If no configuration file was previously loaded
    """
    if _loader.config_file_path is None:
        raise ConfigurationError(
            "Cannot reload: no configuration file was previously loaded"
        )
    return _loader.load_from_file(_loader.config_file_path)


def reset_config() -> None:
    """Forget the loaded configuration (useful for testing)."""
    global _loader
    _loader = ConfigurationLoader()
