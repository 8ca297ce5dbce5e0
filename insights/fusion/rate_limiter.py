"""Async rate limiter for upstream data providers.

Spaces calls out so that no provider is hit faster than its configured
calls-per-second. Each provider owns one limiter, shared by every request
the process serves.

Usage:
    from insights.fusion.rate_limiter import RateLimiter

    limiter = RateLimiter(calls_per_second=settings.market_rate_limit_per_second)
    await limiter.acquire()
    # ... make the API call ...
"""

from __future__ import annotations

import asyncio
import time


class RateLimiter:
    """Minimum-interval limiter guarded by an asyncio.Lock.

    Args:
        calls_per_second: Maximum number of calls allowed per second.
            Zero or less disables limiting.
    """

    def __init__(self, calls_per_second: float = 1.0) -> None:
        self.calls_per_second = calls_per_second
        self.min_interval = 1.0 / calls_per_second if calls_per_second > 0 else 0.0
        self.last_call: float | None = None
        self._lock = asyncio.Lock()

    async def acquire(self) -> None:
        """Wait until the next call is allowed.

        Waiters queue on the lock, so concurrent callers are released one
        interval apart rather than all at once.
        """
        async with self._lock:
            if self.last_call is not None and self.min_interval > 0:
                wait_time = self.min_interval - (time.monotonic() - self.last_call)
                if wait_time > 0:
                    await asyncio.sleep(wait_time)
            self.last_call = time.monotonic()
