"""Idempotency fingerprints and cache expiry."""

from conftest import MonotonicClock

from fitpay.services.gateway.idempotency import InMemoryIdempotencyCache, RedisIdempotencyCache, fingerprint


class DictRedis:
    def __init__(self, fail_reads: bool = False) -> None:
        self.data: dict[str, str] = {}
        self.ttls: dict[str, int] = {}
        self.fail_reads = fail_reads

    def get(self, key):
        if self.fail_reads:
            raise ConnectionError("redis down")
        return self.data.get(key)

    def setex(self, key, ttl, value):
        self.data[key] = value
        self.ttls[key] = ttl

    def scan_iter(self, pattern):
        prefix = pattern.rstrip("*")
        return [key for key in list(self.data) if key.startswith(prefix)]

    def delete(self, key):
        self.data.pop(key, None)


def test_fingerprint_ignores_key_order():
    """Equal payloads fingerprint the same regardless of key order."""
    a = fingerprint({"operation": "CREATE_CUSTOMER", "email": "ana@example.com", "external_id": "FIT-1"})
    b = fingerprint({"external_id": "FIT-1", "email": "ana@example.com", "operation": "CREATE_CUSTOMER"})
    assert a == b
    assert len(a) == 32


def test_fingerprint_differs_per_payload():
    """Different payloads produce different fingerprints."""
    assert fingerprint({"plan_id": "a"}) != fingerprint({"plan_id": "b"})


def test_in_memory_entry_expires_after_ttl():
    """Cached results disappear once their TTL elapses."""
    clock = MonotonicClock()
    cache = InMemoryIdempotencyCache(ttl_seconds=300, clock=clock)
    cache.register("k", {"id": "cus_1"})
    clock.advance(299)
    assert cache.check("k") == {"id": "cus_1"}
    clock.advance(2)
    assert cache.check("k") is None
    assert len(cache) == 0


def test_clear_drops_everything():
    """Clearing the cache removes every entry."""
    cache = InMemoryIdempotencyCache()
    cache.register("a", {"id": "1"})
    cache.register("b", {"id": "2"})
    cache.clear()
    assert cache.check("a") is None
    assert len(cache) == 0


def test_redis_cache_uses_setex_ttl():
    """The Redis cache stores entries with an expiry."""
    rdb = DictRedis()
    cache = RedisIdempotencyCache(rdb, ttl_seconds=300)
    cache.register("k", {"id": "sub_1", "status": "active"})
    assert rdb.ttls["idempotency:gateway:k"] == 300
    assert cache.check("k") == {"id": "sub_1", "status": "active"}
    cache.clear()
    assert cache.check("k") is None


def test_redis_read_failure_is_a_miss():
    """A Redis read error is treated as a cache miss."""
    cache = RedisIdempotencyCache(DictRedis(fail_reads=True))
    assert cache.check("k") is None
