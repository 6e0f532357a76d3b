"""Count of in-flight network fetches.

The count is what a UI shows as a busy indicator: it goes up when a project's
fetch starts and down when it ends, whether the fetch succeeded, failed or
was cancelled.
"""

import logging
from collections.abc import AsyncIterator, Awaitable, Callable
from contextlib import asynccontextmanager

logger = logging.getLogger(__name__)

ActivityListener = Callable[[int], Awaitable[None]]


class ActivityTracker:
    """Tracks how many fetches are running and announces every change."""

    def __init__(self, listener: ActivityListener | None = None):
        self._listener = listener
        self._in_flight = 0

    @property
    def in_flight(self) -> int:
        """Number of fetches currently running."""
        return self._in_flight

    @property
    def is_active(self) -> bool:
        """Whether any fetch is running."""
        return self._in_flight > 0

    @asynccontextmanager
    async def track(self) -> AsyncIterator[None]:
        """Count the enclosed block as one in-flight fetch."""
        self._in_flight += 1
        await self._notify()
        try:
            yield
        finally:
            self._in_flight -= 1
            await self._notify()

    async def _notify(self) -> None:
        if self._listener is None:
            return
        try:
            await self._listener(self._in_flight)
        except Exception as e:
            logger.error(f"Activity listener failed: {e}", exc_info=True)
