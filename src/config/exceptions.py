"""Configuration-related exceptions.

Every error raised while loading or checking the sync configuration derives
from ``ConfigurationError``, so a host can report them in one place.
"""

from typing import Any


class ConfigurationError(Exception):
    """Base exception for all configuration-related errors."""

    def __init__(self, message: str, details: dict[str, Any] | None = None):
        """Initialize configuration error.

        Args:
            message: Human-readable error message
            details: Optional context, e.g. the offending project name
        """
        super().__init__(message)
        self.details = details or {}


class ConfigurationFileError(ConfigurationError):
    """The configuration file is missing, unreadable or not a YAML mapping."""

    def __init__(
        self,
        message: str,
        file_path: str | None = None,
        details: dict[str, Any] | None = None,
    ):
        super().__init__(message, details)
        self.file_path = file_path


class ConfigurationValidationError(ConfigurationError):
    """The configuration does not describe a usable engine setup."""

    def __init__(
        self,
        message: str,
        validation_errors: list[Any] | None = None,
        details: dict[str, Any] | None = None,
    ):
        """Initialize configuration validation error.

        Args:
            message: Human-readable error message
            validation_errors: Pydantic error dicts, when the schema rejected
                the input
            details: Optional context, e.g. the offending project name
        """
        super().__init__(message, details)
        self.validation_errors = validation_errors or []

    @staticmethod
    def format_errors(errors: list[Any]) -> str:
        """Render Pydantic error dicts as ``path: message`` lines.

        ``projects.1.full_name: Value error, ...`` points the user at the
        exact entry in the YAML file.
        """
        lines = []
        for error in errors:
            location = ".".join(str(part) for part in error.get("loc", ())) or "config"
            lines.append(f"{location}: {error.get('msg', 'invalid value')}")
        return "\n".join(lines)


class EnvironmentVariableError(ConfigurationError):
    """A ``${VAR}`` reference without default names an unset variable."""

    def __init__(
        self,
        message: str,
        variable_name: str | None = None,
        details: dict[str, Any] | None = None,
    ):
        super().__init__(message, details)
        self.variable_name = variable_name
