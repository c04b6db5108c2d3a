from __future__ import annotations

import asyncio

from core.cancellation import CancellationToken
from core.config import RateLimitConfig
from core.rate_limiter import RateLimiter


class FakeClock:
    def __init__(self) -> None:
        self.now = 100.0
        self.sleeps: list[float] = []

    def __call__(self) -> float:
        return self.now

    async def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.now += seconds


def _limiter(clock: FakeClock, cancel=None, limit: int = 2) -> RateLimiter:
    config = RateLimitConfig(limit=limit, period_seconds=1.0, poll_seconds=0.2)
    return RateLimiter(config, cancel, clock=clock, sleep=clock.sleep)


def test_permits_up_to_limit_without_sleeping() -> None:
    clock = FakeClock()
    limiter = _limiter(clock)

    async def scenario() -> list[bool]:
        return [await limiter.acquire(), await limiter.acquire()]

    assert asyncio.run(scenario()) == [True, True]
    assert clock.sleeps == []
    assert limiter.count == 2


def test_sleeps_out_the_window_in_small_steps() -> None:
    clock = FakeClock()
    limiter = _limiter(clock)

    async def scenario() -> bool:
        await limiter.acquire()
        await limiter.acquire()
        clock.now += 0.3
        return await limiter.acquire()

    assert asyncio.run(scenario()) is True
    assert abs(sum(clock.sleeps) - 0.7) < 1e-9
    assert all(step <= 0.2 + 1e-9 for step in clock.sleeps)
    assert limiter.window_start == clock.now
    assert limiter.count == 1


def test_window_resets_after_period_elapses() -> None:
    clock = FakeClock()
    limiter = _limiter(clock)

    async def scenario() -> None:
        await limiter.acquire()
        await limiter.acquire()
        clock.now += 1.5
        await limiter.acquire()

    asyncio.run(scenario())

    assert clock.sleeps == []
    assert limiter.count == 1


def test_cancellation_interrupts_the_wait() -> None:
    clock = FakeClock()
    cancel = CancellationToken()

    async def cancelling_sleep(seconds: float) -> None:
        await clock.sleep(seconds)
        cancel.cancel()

    limiter = RateLimiter(
        RateLimitConfig(limit=1, period_seconds=5.0, poll_seconds=0.2),
        cancel,
        clock=clock,
        sleep=cancelling_sleep,
    )

    async def scenario() -> list[bool]:
        return [await limiter.acquire(), await limiter.acquire()]

    assert asyncio.run(scenario()) == [True, False]
    assert clock.sleeps == [0.2]


def test_zero_limit_disables_throttling() -> None:
    clock = FakeClock()
    limiter = _limiter(clock, limit=0)

    async def scenario() -> list[bool]:
        return [await limiter.acquire() for _ in range(10)]

    assert all(asyncio.run(scenario()))
    assert clock.sleeps == []
