"""
Unit tests for GitHub rate limiting module.

Why: One quota tracker is shared by every project pipeline; a wrong reading
     either wastes the quota or stalls syncing for no reason.

What: Tests RateLimitInfo and RateLimitManager header parsing, out-of-order
      updates, explicit exhaustion, the buffer and window expiry.

How: Feeds header dicts to a manager driven by a fixed clock.
"""

import pytest

from src.github.exceptions import RateLimitedError
from src.github.rate_limiting import RateLimitInfo, RateLimitManager

NOW = 1_714_564_800.0
RESET = int(NOW) + 600


def quota_headers(remaining: int, reset: int = RESET, **extra: str) -> dict[str, str]:
    return {
        "X-RateLimit-Limit": "5000",
        "X-RateLimit-Remaining": str(remaining),
        "X-RateLimit-Reset": str(reset),
        **extra,
    }


@pytest.fixture
def manager() -> RateLimitManager:
    """Rate limit manager frozen at NOW."""
    return RateLimitManager(clock=lambda: NOW)


class TestRateLimitInfo:
    """Test RateLimitInfo data class."""

    def test_seconds_until_reset(self) -> None:
        """Test the countdown, which never goes negative."""
        info = RateLimitInfo(limit=5000, remaining=10, reset=RESET)

        assert info.seconds_until_reset(NOW) == 600
        assert info.seconds_until_reset(RESET + 5) == 0
        assert info.reset_datetime.timestamp() == RESET


class TestRateLimitManager:
    """Test RateLimitManager bookkeeping."""

    def test_headers_are_recorded(self, manager: RateLimitManager) -> None:
        """Test a plain update from response headers."""
        headers = quota_headers(4999, **{"X-RateLimit-Used": "1"})
        info = manager.update_rate_limit(headers)

        assert info is not None
        assert info.used == 1
        assert manager.remaining() == 4999
        assert manager.reset_at().timestamp() == RESET

    def test_missing_or_malformed_headers_are_ignored(
        self, manager: RateLimitManager
    ) -> None:
        """Test that responses without quota headers change nothing."""
        assert manager.update_rate_limit({}) is None
        malformed = {**quota_headers(10), "X-RateLimit-Reset": "soon"}
        assert manager.update_rate_limit(malformed) is None
        assert manager.remaining() is None

    def test_stale_response_cannot_raise_remaining(
        self, manager: RateLimitManager
    ) -> None:
        """
        Why: Concurrent pipelines see responses complete out of order
        What: A lower count arrives before a higher one from the same window
        How: The lower count wins within a window; a new window replaces it
        """
        manager.update_rate_limit(quota_headers(100))
        manager.update_rate_limit(quota_headers(150))

        assert manager.remaining() == 100

        manager.update_rate_limit(quota_headers(5000, reset=RESET + 3600))
        assert manager.remaining() == 5000

        manager.update_rate_limit(quota_headers(3, reset=RESET))
        assert manager.remaining() == 5000

    def test_resources_are_tracked_separately(self, manager: RateLimitManager) -> None:
        """Test that search quota does not affect core quota."""
        headers = quota_headers(0, **{"X-RateLimit-Resource": "search"})
        manager.update_rate_limit(headers)

        assert manager.is_exhausted("search")
        assert not manager.is_exhausted()

    def test_buffer_counts_as_exhausted(self) -> None:
        """Test that the safety buffer stops calls before zero."""
        manager = RateLimitManager(buffer=10, clock=lambda: NOW)
        manager.update_rate_limit(quota_headers(10))

        assert manager.is_exhausted()
        with pytest.raises(RateLimitedError) as exc_info:
            manager.check_rate_limit()
        assert exc_info.value.reset_time == RESET

    def test_exhaustion_ends_when_window_resets(self) -> None:
        """Test that a passed reset time lifts the exhaustion."""
        clock = [NOW]
        manager = RateLimitManager(clock=lambda: clock[0])
        manager.record_exhausted(RESET, limit=5000)

        assert manager.is_exhausted()
        clock[0] = RESET + 1
        assert not manager.is_exhausted()
        manager.check_rate_limit()

    def test_record_exhausted_without_reset_is_ignored(
        self, manager: RateLimitManager
    ) -> None:
        """Test that a rejection with no reset time cannot defer forever."""
        manager.record_exhausted(None)

        assert manager.get_rate_limit() is None

    def test_clear_forgets_quota(self, manager: RateLimitManager) -> None:
        """Test that a new credential starts with unknown quota."""
        manager.record_exhausted(RESET)
        manager.clear()

        assert not manager.is_exhausted()
        assert manager.reset_at() is None
