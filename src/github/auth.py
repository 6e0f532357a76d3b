"""GitHub authentication handlers.

Credential entry happens outside the engine. The engine only sees a
``CredentialStore``: the current token or none, plus a notification whenever
it is replaced.
"""

import logging
from abc import ABC, abstractmethod
from collections.abc import Awaitable, Callable
from dataclasses import dataclass

from .exceptions import AuthError

logger = logging.getLogger(__name__)

CredentialListener = Callable[["AuthToken | None"], Awaitable[None]]


@dataclass(frozen=True)
class AuthToken:
    """Authentication token with metadata."""

    token: str
    token_type: str = "token"  # nosec B105

    def to_header(self) -> dict[str, str]:
        """Convert to authorization header."""
        return {"Authorization": f"{self.token_type} {self.token}"}


class AuthProvider(ABC):
    """Abstract base class for authentication providers."""

    @abstractmethod
    async def get_token(self) -> AuthToken:
        """Get authentication token.

        Raises:
            AuthError: If no credential is available
        """
        pass


class CredentialStore(AuthProvider):
    """Holds the current credential, which may be absent, and announces changes."""

    def __init__(self, token: str | None = None):
        self._token = AuthToken(token=token) if token else None
        self._listeners: list[CredentialListener] = []

    @property
    def has_credential(self) -> bool:
        """Check whether a credential is currently available."""
        return self._token is not None

    def current(self) -> AuthToken | None:
        """Get the current credential, or None."""
        return self._token

    async def get_token(self) -> AuthToken:
        """Get authentication token."""
        if self._token is None:
            raise AuthError("No GitHub credential configured")
        return self._token

    def subscribe(self, listener: CredentialListener) -> None:
        """Register a coroutine called after every credential replacement."""
        self._listeners.append(listener)

    async def replace(self, token: str | None) -> None:
        """Replace the credential and notify subscribers.

        Args:
            token: New token, or None to clear the credential
        """
        self._token = AuthToken(token=token) if token else None
        action = "replaced" if self._token else "cleared"
        logger.info(f"GitHub credential {action}")
        for listener in list(self._listeners):
            await listener(self._token)
