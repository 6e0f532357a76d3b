"""GitHub API rate limiting management.

One ``RateLimitManager`` is shared by every pipeline that uses the same
credential, so the quota it tracks is the global quota for that credential.
"""

import logging
import time
from collections.abc import Callable, Mapping
from dataclasses import dataclass, field
from datetime import UTC, datetime

from .exceptions import RateLimitedError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RateLimitInfo:
    """Rate limit information from GitHub API."""

    limit: int
    remaining: int
    reset: int
    used: int = 0
    resource: str = "core"

    @property
    def reset_datetime(self) -> datetime:
        """Get reset time as datetime."""
        return datetime.fromtimestamp(self.reset, tz=UTC)

    def seconds_until_reset(self, now: float | None = None) -> float:
        """Get seconds until rate limit resets."""
        current = time.time() if now is None else now
        return max(0.0, self.reset - current)


@dataclass
class RateLimitManager:
    """Tracks the last-known quota reported by GitHub for one credential.

    ``update_rate_limit`` never awaits, so under asyncio each update is applied
    atomically with respect to every other pipeline sharing the manager.
    """

    buffer: int = 0  # Remaining calls at or below which the quota counts as spent
    clock: Callable[[], float] = time.time

    _rate_limits: dict[str, RateLimitInfo] = field(default_factory=dict)

    def get_rate_limit(self, resource: str = "core") -> RateLimitInfo | None:
        """Get current rate limit info for resource."""
        return self._rate_limits.get(resource)

    def update_rate_limit(self, headers: Mapping[str, str]) -> RateLimitInfo | None:
        """Update rate limit info from response headers.

        Responses can complete out of order. Within one reset window the
        smallest ``remaining`` wins so a late, stale response cannot inflate
        the quota; a later reset window always replaces the earlier one.

        Args:
            headers: HTTP response headers from GitHub API

        Returns:
            The rate limit now recorded for the resource, if headers were present
        """
        if "X-RateLimit-Limit" not in headers:
            return None

        try:
            incoming = RateLimitInfo(
                limit=int(headers.get("X-RateLimit-Limit", 5000)),
                remaining=int(headers.get("X-RateLimit-Remaining", 0)),
                reset=int(headers.get("X-RateLimit-Reset", 0)),
                used=int(headers.get("X-RateLimit-Used", 0)),
                resource=headers.get("X-RateLimit-Resource", "core"),
            )
        except (ValueError, TypeError):
            logger.debug("Ignoring malformed rate limit headers")
            return None

        current = self._rate_limits.get(incoming.resource)
        if (
            current is not None
            and current.reset == incoming.reset
            and current.remaining < incoming.remaining
        ):
            return current

        if current is None or current.reset <= incoming.reset:
            self._rate_limits[incoming.resource] = incoming
        return self._rate_limits[incoming.resource]

    def record_exhausted(
        self, reset_time: int | None, limit: int = 0, resource: str = "core"
    ) -> None:
        """Record an explicit rate-limit rejection."""
        if reset_time is None:
            return
        self._rate_limits[resource] = RateLimitInfo(
            limit=limit, remaining=0, reset=reset_time, resource=resource
        )

    def is_exhausted(self, resource: str = "core") -> bool:
        """Check whether the quota is spent and the window has not reset yet."""
        rate_limit = self.get_rate_limit(resource)
        if not rate_limit:
            return False
        if rate_limit.seconds_until_reset(self.clock()) <= 0:
            return False
        return rate_limit.remaining <= self.buffer

    def reset_at(self, resource: str = "core") -> datetime | None:
        """Get the reset time of the current window, if known."""
        rate_limit = self.get_rate_limit(resource)
        return rate_limit.reset_datetime if rate_limit else None

    def remaining(self, resource: str = "core") -> int | None:
        """Get the last-known remaining quota, if known."""
        rate_limit = self.get_rate_limit(resource)
        return rate_limit.remaining if rate_limit else None

    def check_rate_limit(self, resource: str = "core") -> None:
        """Check if rate limit allows request.

        Args:
            resource: GitHub API resource type

        Raises:
            RateLimitedError: If the quota is exhausted until a future reset
        """
        if not self.is_exhausted(resource):
            return

        rate_limit = self._rate_limits[resource]
        wait_time = rate_limit.seconds_until_reset(self.clock())
        raise RateLimitedError(
            f"Rate limit exhausted for {resource}. "
            f"Remaining: {rate_limit.remaining}, "
            f"Reset in {wait_time:.0f} seconds",
            reset_time=rate_limit.reset,
            remaining=rate_limit.remaining,
            limit=rate_limit.limit,
        )

    def clear(self) -> None:
        """Forget all recorded quota, e.g. after the credential changes."""
        self._rate_limits.clear()
