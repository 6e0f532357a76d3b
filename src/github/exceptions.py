"""GitHub API client exceptions.

The sync engine only distinguishes three failure classes: transient network
failures (retried on a later cycle), authentication failures (fatal until the
credential is replaced) and rate limiting (handled by deferral). Every concrete
error raised by the client derives from one of them or from ``GitHubError``.
"""

from datetime import UTC, datetime
from typing import Any


class GitHubError(Exception):
    """Base exception for GitHub API errors."""

    def __init__(
        self,
        message: str,
        status_code: int | None = None,
        response_data: dict[str, Any] | None = None,
    ):
        """Initialize GitHub error.

        Args:
            message: Error message
            status_code: HTTP status code
            response_data: Response data from GitHub API
        """
        super().__init__(message)
        self.status_code = status_code
        self.response_data = response_data or {}


class NetworkError(GitHubError):
    """Transient failure; the project is retried on a later cycle."""

    pass


class GitHubConnectionError(NetworkError):
    """Raised when connection to GitHub fails."""

    pass


class GitHubTimeoutError(NetworkError):
    """Raised when request times out."""

    pass


class GitHubServerError(NetworkError):
    """Raised when GitHub server returns 5xx error."""

    pass


class PaginationError(NetworkError):
    """Raised when a listing fails part-way through its pages."""

    def __init__(self, message: str, pages_fetched: int = 0):
        """Initialize pagination error.

        Args:
            message: Error message
            pages_fetched: Pages successfully retrieved before the failure
        """
        super().__init__(message)
        self.pages_fetched = pages_fetched


class AuthError(GitHubError):
    """Raised when authentication fails or no credential is available."""

    pass


class RateLimitedError(GitHubError):
    """Raised when rate limit is exceeded."""

    def __init__(
        self,
        message: str,
        reset_time: int | None = None,
        remaining: int = 0,
        limit: int = 0,
    ):
        """Initialize rate limit error.

        Args:
            message: Error message
            reset_time: Unix timestamp when rate limit resets
            remaining: Remaining API calls
            limit: Total rate limit
        """
        super().__init__(message, status_code=403)
        self.reset_time = reset_time
        self.remaining = remaining
        self.limit = limit

    @property
    def reset_at(self) -> datetime | None:
        """Get reset time as an aware datetime."""
        if self.reset_time is None:
            return None
        return datetime.fromtimestamp(self.reset_time, tz=UTC)


class GitHubNotFoundError(GitHubError):
    """Raised when resource is not found."""

    pass


class GitHubValidationError(GitHubError):
    """Raised when request validation fails."""

    pass
