"""
Rate Limiter - Protection against API quota exhaustion.

Provides a sliding-window rate limiter for chat model calls and the
exponential backoff used between step retries.
"""

import asyncio
import logging
import random
import re
import time
from collections import deque
from typing import Any

logger = logging.getLogger(__name__)


def extract_retry_delay(error_message: str) -> float | None:
    """
    Extract a server-suggested retry delay from a 429 error message.

    Providers return errors like:
        'retryDelay': '38s'
        'retryDelay': '927.819932ms'
        'Please retry in 38.057921181s.'
        'Retry-After: 12'

    Returns:
        Delay in seconds, or None if not found
    """
    match = re.search(r"'retryDelay':\s*'([\d.]+)(s|ms)'", error_message)
    if match:
        value = float(match.group(1))
        return value / 1000 if match.group(2) == "ms" else value

    match = re.search(r"Please retry in ([\d.]+)s", error_message)
    if match:
        return float(match.group(1))

    match = re.search(r"Retry-After:\s*([\d.]+)", error_message, re.IGNORECASE)
    if match:
        return float(match.group(1))

    return None


def calculate_backoff(
    attempt: int,
    base_delay: float = 1.0,
    max_delay: float = 60.0,
    jitter: bool = True,
) -> float:
    """
    Calculate exponential backoff delay.

    Args:
        attempt: Retry attempt number (0-indexed)
        base_delay: Delay for the first retry in seconds
        max_delay: Upper bound before jitter
        jitter: Add 0-50% random jitter

    Returns:
        Delay in seconds
    """
    delay = min(base_delay * (2**attempt), max_delay)
    if jitter:
        delay *= 1 + random.random() * 0.5
    return delay


class RateLimiter:
    """
    Rate limiter with a one-minute sliding window.

    Usage:
        limiter = RateLimiter(requests_per_minute=15)

        await limiter.acquire()
        result = await call_api_async(item)
    """

    def __init__(self, requests_per_minute: int = 15):
        """
        Initialize the rate limiter.

        Args:
            requests_per_minute: Maximum requests allowed per minute
        """
        if requests_per_minute < 1:
            raise ValueError("requests_per_minute must be at least 1")
        self.requests_per_minute = requests_per_minute

        self._timestamps: deque[float] = deque()
        self._window_seconds = 60.0
        self._lock = asyncio.Lock()

        self.total_requests = 0
        self.total_waits = 0
        self.total_wait_time = 0.0

    @classmethod
    def from_config(cls, config) -> "RateLimiter":
        """Build from a RateLimitingConfig settings section."""
        return cls(requests_per_minute=config.requests_per_minute)

    def _clean_old_timestamps(self) -> None:
        """Remove timestamps outside the sliding window."""
        cutoff = time.monotonic() - self._window_seconds
        while self._timestamps and self._timestamps[0] < cutoff:
            self._timestamps.popleft()

    def _calculate_wait_time(self) -> float:
        """Calculate how long to wait before next request."""
        self._clean_old_timestamps()

        if len(self._timestamps) < self.requests_per_minute:
            return 0.0

        # Wait until oldest request exits the window
        wait_until = self._timestamps[0] + self._window_seconds
        return max(0.0, wait_until - time.monotonic())

    def _record(self, wait_time: float) -> None:
        if wait_time > 0:
            self.total_waits += 1
            self.total_wait_time += wait_time
        self._timestamps.append(time.monotonic())
        self.total_requests += 1

    async def acquire(self) -> float:
        """
        Wait until a request fits in the window, then record it.

        Concurrent callers queue on a lock.

        Returns:
            Time waited in seconds
        """
        async with self._lock:
            wait_time = self._calculate_wait_time()
            if wait_time > 0:
                logger.debug(
                    "Rate limit: waiting %.2fs (current: %d/%d req/min)",
                    wait_time,
                    len(self._timestamps),
                    self.requests_per_minute,
                )
                await asyncio.sleep(wait_time)
            self._record(wait_time)
            return wait_time

    def get_stats(self) -> dict[str, Any]:
        """Get rate limiter statistics."""
        self._clean_old_timestamps()
        return {
            "total_requests": self.total_requests,
            "total_waits": self.total_waits,
            "total_wait_time": round(self.total_wait_time, 2),
            "average_wait": round(self.total_wait_time / max(1, self.total_waits), 2),
            "current_minute_requests": len(self._timestamps),
            "requests_per_minute_limit": self.requests_per_minute,
        }

    def reset(self) -> None:
        """Reset the rate limiter state."""
        self._timestamps.clear()
        self.total_requests = 0
        self.total_waits = 0
        self.total_wait_time = 0.0
