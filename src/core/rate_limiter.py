"""Sliding-window throttle for relay units (core domain)."""

from __future__ import annotations

import asyncio
import logging
import time
from typing import Awaitable, Callable, Optional

from core.cancellation import CancellationToken
from core.config import RateLimitConfig

LOGGER = logging.getLogger(__name__)


class RateLimiter:
    """Permit at most ``limit`` relay units per ``period_seconds``.

    The window starts when the limiter is created. Once the count for the
    current window reaches the limit, ``acquire`` sleeps for the rest of the
    window in short steps so a termination request is noticed mid-sleep.

    A window reset counts the unit it permits, so the new window starts at
    ``count == 1`` rather than 0 and never admits ``limit + 1`` units.
    """

    def __init__(
        self,
        config: RateLimitConfig,
        cancel: Optional[CancellationToken] = None,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self._config = config
        self._cancel = cancel or CancellationToken()
        self._clock = clock
        self._sleep = sleep
        self.window_start = clock()
        self.count = 0

    def _reset(self) -> None:
        self.window_start = self._clock()
        # The unit being permitted opens the new window.
        self.count = 1

    async def acquire(self) -> bool:
        """Wait for a dispatch slot. Returns False if cancelled while waiting."""

        if self._config.limit <= 0:
            return True

        elapsed = self._clock() - self.window_start
        if elapsed >= self._config.period_seconds:
            self._reset()
            return True

        if self.count < self._config.limit:
            self.count += 1
            return True

        remaining = self._config.period_seconds - elapsed
        LOGGER.info("Rate limit of %s units reached, sleeping %.1fs", self._config.limit, remaining)
        deadline = self._clock() + remaining
        while True:
            if self._cancel.cancelled:
                return False
            left = deadline - self._clock()
            if left <= 0:
                break
            await self._sleep(min(self._config.poll_seconds, left))

        self._reset()
        return True
