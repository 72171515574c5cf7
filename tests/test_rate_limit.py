"""Fixed-window rate limiter behaviour."""

import pytest

from conftest import MonotonicClock

from fitpay.common.errors import ErrorKind, RateLimited
from fitpay.services.gateway.rate_limit import FixedWindowRateLimiter, RedisFixedWindowRateLimiter


class CounterRedis:
    def __init__(self) -> None:
        self.counts: dict[str, int] = {}
        self.expiries: dict[str, int] = {}

    def incr(self, key):
        self.counts[key] = self.counts.get(key, 0) + 1
        return self.counts[key]

    def expire(self, key, seconds):
        self.expiries[key] = seconds

    def get(self, key):
        value = self.counts.get(key)
        return None if value is None else str(value)


def test_rejects_request_over_budget():
    """The request past the window's limit is refused."""
    limiter = FixedWindowRateLimiter(max_requests=3, window_seconds=60, clock=MonotonicClock())
    for _ in range(3):
        limiter.check()
    with pytest.raises(RateLimited) as exc_info:
        limiter.check()
    assert exc_info.value.kind is ErrorKind.RATE_LIMITED


def test_window_resets_after_elapsed():
    """A new window starts with a fresh count."""
    clock = MonotonicClock()
    limiter = FixedWindowRateLimiter(max_requests=2, window_seconds=60, clock=clock)
    limiter.check()
    limiter.check()
    with pytest.raises(RateLimited):
        limiter.check()
    clock.advance(61)
    limiter.check()
    assert limiter.remaining() == 1


def test_remaining_counts_down():
    """Remaining requests drop with each acquisition."""
    limiter = FixedWindowRateLimiter(max_requests=30, window_seconds=60, clock=MonotonicClock())
    assert limiter.remaining() == 30
    limiter.check()
    assert limiter.remaining() == 29


def test_redis_limiter_shares_window_counter():
    """The Redis limiter counts through a shared key."""
    rdb = CounterRedis()
    clock = MonotonicClock()
    first = RedisFixedWindowRateLimiter(rdb, max_requests=2, window_seconds=60, clock=clock)
    second = RedisFixedWindowRateLimiter(rdb, max_requests=2, window_seconds=60, clock=clock)
    first.check()
    second.check()
    with pytest.raises(RateLimited):
        first.check()
    assert second.remaining() == 0
    assert set(rdb.expiries.values()) == {120}
    clock.advance(60)
    second.check()
