"""GitHub API client package."""

from .auth import AuthProvider, AuthToken, CredentialStore
from .client import FetchResult, GitHubClient, GitHubClientConfig
from .exceptions import (
    AuthError,
    GitHubConnectionError,
    GitHubError,
    GitHubNotFoundError,
    GitHubServerError,
    GitHubTimeoutError,
    GitHubValidationError,
    NetworkError,
    PaginationError,
    RateLimitedError,
)
from .pagination import AsyncPaginator, LinkHeader, PageCollection, PaginatedResponse
from .rate_limiting import RateLimitInfo, RateLimitManager

__all__ = [
    "AsyncPaginator",
    "AuthError",
    "AuthProvider",
    "AuthToken",
    "CredentialStore",
    "FetchResult",
    "GitHubClient",
    "GitHubClientConfig",
    "GitHubConnectionError",
    "GitHubError",
    "GitHubNotFoundError",
    "GitHubServerError",
    "GitHubTimeoutError",
    "GitHubValidationError",
    "LinkHeader",
    "NetworkError",
    "PageCollection",
    "PaginatedResponse",
    "PaginationError",
    "RateLimitInfo",
    "RateLimitManager",
    "RateLimitedError",
]
