"""
Process-wide fixed-window rate limiter for CardTrader API calls.

CardTrader allows a fixed number of requests per minute for the whole
account, so a single limiter instance is shared by every gateway in the
process. Callers that arrive after the window's permits are spent wait in a
bounded FIFO queue for the next window; once the queue is full they fail
immediately with RateLimitError instead of blocking.
"""
import asyncio
import itertools
import logging
import threading
import time
from collections import deque
from typing import Callable, Deque, Optional

from cardsync.core.config import get_settings
from cardsync.core.exceptions import RateLimitError
from cardsync.core.prometheus_metrics import rate_limiter_rejections_total

logger = logging.getLogger(__name__)

# Poll interval for queued callers that are not at the head of the queue
_QUEUE_POLL_SECONDS = 0.005


class FixedWindowRateLimiter:
    """N permits per window, plus a bounded wait queue served oldest first."""

    def __init__(
        self,
        permits: int,
        window_seconds: float,
        queue_limit: int,
        clock: Callable[[], float] = time.monotonic,
    ):
        if permits <= 0:
            raise ValueError("permits must be positive")
        self.permits = permits
        self.window_seconds = window_seconds
        self.queue_limit = queue_limit
        self._clock = clock
        # Guards the counters; never held across an await
        self._lock = threading.Lock()
        self._window_start = clock()
        self._used = 0
        self._waiters: Deque[int] = deque()
        self._tickets = itertools.count()

    def _roll_window(self, now: float) -> None:
        if now - self._window_start >= self.window_seconds:
            elapsed_windows = int((now - self._window_start) // self.window_seconds)
            self._window_start += elapsed_windows * self.window_seconds
            self._used = 0

    def _seconds_until_next_window(self, now: float) -> float:
        return max(0.0, self._window_start + self.window_seconds - now)

    async def acquire(self) -> None:
        """
        Take one permit, waiting in the queue for the next window if needed.

        Raises:
            RateLimitError: the window is exhausted and the wait queue is full
        """
        with self._lock:
            now = self._clock()
            self._roll_window(now)
            if self._used < self.permits and not self._waiters:
                self._used += 1
                return
            if len(self._waiters) >= self.queue_limit:
                retry_after = self._seconds_until_next_window(now)
                rate_limiter_rejections_total.inc()
                logger.warning(
                    "Rate limiter queue full, rejecting call",
                    extra={"queued": len(self._waiters), "retry_after": retry_after},
                )
                raise RateLimitError(
                    "CardTrader rate limit queue is full",
                    retry_after=retry_after,
                )
            ticket = next(self._tickets)
            self._waiters.append(ticket)

        try:
            while True:
                with self._lock:
                    now = self._clock()
                    self._roll_window(now)
                    if self._waiters[0] == ticket and self._used < self.permits:
                        self._waiters.popleft()
                        self._used += 1
                        return
                    if self._used >= self.permits:
                        delay = self._seconds_until_next_window(now)
                    else:
                        delay = 0.0
                await asyncio.sleep(max(delay, _QUEUE_POLL_SECONDS))
        finally:
            # Cancelled or failed while queued
            with self._lock:
                if ticket in self._waiters:
                    self._waiters.remove(ticket)

    @property
    def queued(self) -> int:
        with self._lock:
            return len(self._waiters)

    def get_statistics(self) -> dict:
        with self._lock:
            now = self._clock()
            self._roll_window(now)
            return {
                "permits": self.permits,
                "window_seconds": self.window_seconds,
                "used": self._used,
                "queued": len(self._waiters),
                "queue_limit": self.queue_limit,
                "resets_in": self._seconds_until_next_window(now),
            }


# Global instance
_rate_limiter: Optional[FixedWindowRateLimiter] = None
_rate_limiter_lock = threading.Lock()


def get_rate_limiter() -> FixedWindowRateLimiter:
    """Get or create the process-wide rate limiter."""
    global _rate_limiter
    if _rate_limiter is None:
        with _rate_limiter_lock:
            if _rate_limiter is None:
                settings = get_settings()
                _rate_limiter = FixedWindowRateLimiter(
                    permits=settings.RATE_LIMIT_REQUESTS,
                    window_seconds=settings.RATE_LIMIT_WINDOW_SECONDS,
                    queue_limit=settings.RATE_LIMIT_QUEUE_LIMIT,
                )
    return _rate_limiter


def reset_rate_limiter() -> None:
    """Drop the global instance (tests)."""
    global _rate_limiter
    with _rate_limiter_lock:
        _rate_limiter = None
