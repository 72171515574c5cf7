"""Fixed-window limiter guarding outbound gateway calls.

The in-memory limiter is scoped to one process. Deployments running several
instances can plug in `RedisFixedWindowRateLimiter`, which shares the window
counter through Redis.
"""

import time
from collections.abc import Callable
from typing import Protocol

from fitpay.common.config import settings
from fitpay.common.errors import RateLimited
from fitpay.common.logging import logger
from fitpay.common.metrics import rate_limited_total


class RateLimiter(Protocol):
    def check(self) -> None: ...

    def remaining(self) -> int: ...


class FixedWindowRateLimiter:
    """Request counter that resets once `window_seconds` have elapsed."""

    def __init__(
        self,
        max_requests: int = settings.rate_limit_max_requests,
        window_seconds: float = settings.rate_limit_window_seconds,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.max_requests = max_requests
        self.window_seconds = window_seconds
        self._clock = clock
        self._count = 0
        self._window_start = clock()

    def _roll_window(self) -> None:
        now = self._clock()
        if now - self._window_start > self.window_seconds:
            self._count = 0
            self._window_start = now

    def check(self) -> None:
        self._roll_window()
        self._count += 1
        if self._count > self.max_requests:
            rate_limited_total.labels(service=settings.service_name).inc()
            logger.warning("gateway rate limit exceeded count=%s max=%s", self._count, self.max_requests)
            raise RateLimited("rate limit exceeded, try again in a moment")

    def remaining(self) -> int:
        self._roll_window()
        return max(0, self.max_requests - self._count)


class RedisFixedWindowRateLimiter:
    """Same contract as `FixedWindowRateLimiter`, counted in Redis."""

    def __init__(
        self,
        rdb,
        max_requests: int = settings.rate_limit_max_requests,
        window_seconds: int = settings.rate_limit_window_seconds,
        key_prefix: str = "ratelimit:gateway",
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.rdb = rdb
        self.max_requests = max_requests
        self.window_seconds = window_seconds
        self.key_prefix = key_prefix
        self._clock = clock

    def _key(self) -> str:
        window = int(self._clock() // self.window_seconds)
        return f"{self.key_prefix}:{window}"

    def check(self) -> None:
        key = self._key()
        count = self.rdb.incr(key)
        self.rdb.expire(key, self.window_seconds * 2)
        if count > self.max_requests:
            rate_limited_total.labels(service=settings.service_name).inc()
            logger.warning("gateway rate limit exceeded count=%s max=%s", count, self.max_requests)
            raise RateLimited("rate limit exceeded, try again in a moment")

    def remaining(self) -> int:
        count = int(self.rdb.get(self._key()) or 0)
        return max(0, self.max_requests - count)
