"""
Outbound moving-window rate limiter.

A thin wrapper over the ``limits`` library: a ``MovingWindowRateLimiter``
over any ``limits`` storage (in-process memory by default, Redis when the
window must be shared between workers). Calls beyond the window fail fast.
"""
import math
import time

from limits import RateLimitItemPerSecond
from limits.storage import storage_from_string
from limits.strategies import MovingWindowRateLimiter

from karaoke_server.core.exceptions import RateLimitedError
from karaoke_server.core.logging import get_logger

logger = get_logger(__name__)


class SlidingWindowRateLimiter:
    def __init__(
        self,
        max_requests: int,
        window_seconds: int,
        storage_uri: str = "memory://",
        identifier: str = "catalog-search",
    ):
        if max_requests < 1:
            raise ValueError("max_requests must be at least 1")
        if window_seconds < 1:
            raise ValueError("window_seconds must be at least 1")
        self.max_requests = max_requests
        self.window_seconds = int(window_seconds)
        self.identifier = identifier
        self.item = RateLimitItemPerSecond(max_requests, self.window_seconds)
        self.storage = storage_from_string(storage_uri)
        self._limiter = MovingWindowRateLimiter(self.storage)

    def try_acquire(self) -> bool:
        """Record a request if the window has room. Returns False when full."""
        return self._limiter.hit(self.item, self.identifier)

    def seconds_until_available(self) -> float:
        stats = self._limiter.get_window_stats(self.item, self.identifier)
        if stats.remaining > 0:
            return 0.0
        return max(0.0, stats.reset_time - time.time())

    def acquire(self, key: str = "default") -> None:
        """Record a request or fail fast with RateLimitedError."""
        if self.try_acquire():
            return
        wait = self.seconds_until_available()
        logger.warning(f"Rate limit exceeded: {key} ({self.max_requests}/{self.window_seconds}s)")
        raise RateLimitedError(
            f"Search rate limit exceeded. Wait {max(1, math.ceil(wait))} seconds.",
            retry_after=wait,
        )

    @property
    def in_window(self) -> int:
        stats = self._limiter.get_window_stats(self.item, self.identifier)
        return self.max_requests - stats.remaining
