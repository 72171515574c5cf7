"""Short-lived cache that makes create-type gateway calls safe to repeat.

Keys come from `fingerprint`, a stable hash of the operation payload. The
check-then-register sequence is not atomic: two identical requests racing
inside the same instance can both reach the gateway before either result is
cached.
"""

import hashlib
import json
import time
from collections.abc import Callable
from typing import Any, Protocol

from fitpay.common.config import settings
from fitpay.common.logging import logger


def canonical_json(payload: Any) -> str:
    return json.dumps(payload, sort_keys=True, separators=(",", ":"), default=str)


def fingerprint(payload: Any) -> str:
    """Deterministic key; insertion order of dict keys does not matter."""

    return hashlib.sha256(canonical_json(payload).encode("utf-8")).hexdigest()[:32]


class IdempotencyCache(Protocol):
    def check(self, key: str) -> dict | None: ...

    def register(self, key: str, result: dict) -> None: ...

    def clear(self) -> None: ...


class InMemoryIdempotencyCache:
    """Process-local cache with lazy expiry on access."""

    def __init__(
        self,
        ttl_seconds: float = settings.idempotency_ttl_seconds,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.ttl_seconds = ttl_seconds
        self._clock = clock
        self._entries: dict[str, tuple[float, dict]] = {}

    def _purge_expired(self) -> None:
        now = self._clock()
        expired = [key for key, (stored_at, _) in self._entries.items() if now - stored_at > self.ttl_seconds]
        for key in expired:
            del self._entries[key]

    def check(self, key: str) -> dict | None:
        self._purge_expired()
        entry = self._entries.get(key)
        return None if entry is None else entry[1]

    def register(self, key: str, result: dict) -> None:
        self._entries[key] = (self._clock(), result)

    def clear(self) -> None:
        self._entries.clear()

    def __len__(self) -> int:
        self._purge_expired()
        return len(self._entries)


class RedisIdempotencyCache:
    """Shared cache for multi-instance deployments; Redis handles expiry."""

    def __init__(self, rdb, ttl_seconds: int = settings.idempotency_ttl_seconds, key_prefix: str = "idempotency:gateway") -> None:
        self.rdb = rdb
        self.ttl_seconds = ttl_seconds
        self.key_prefix = key_prefix

    def check(self, key: str) -> dict | None:
        try:
            cached = self.rdb.get(f"{self.key_prefix}:{key}")
        except Exception as exc:
            logger.warning("idempotency_cache_read_failed: %s", exc)
            return None
        return json.loads(cached) if cached else None

    def register(self, key: str, result: dict) -> None:
        try:
            self.rdb.setex(f"{self.key_prefix}:{key}", self.ttl_seconds, json.dumps(result, default=str))
        except Exception as exc:
            logger.warning("idempotency_cache_write_failed: %s", exc)

    def clear(self) -> None:
        for key in self.rdb.scan_iter(f"{self.key_prefix}:*"):
            self.rdb.delete(key)
