"""SimpleCache expiry and bookkeeping"""

from caching.simple_cache import SimpleCache


class ManualTime:
    def __init__(self):
        self.now = 0.0

    def __call__(self):
        return self.now


class TestSimpleCache:

    def test_entry_expires_after_ttl(self):
        clock = ManualTime()
        cache = SimpleCache(default_ttl=10, time_func=clock)
        cache.set("btc_rate_USD", 50000)

        clock.now = 9.9
        assert cache.get("btc_rate_USD") == 50000
        clock.now = 10
        assert cache.get("btc_rate_USD") is None
        assert cache.get_stats()["evictions"] == 1

    def test_per_entry_ttl_overrides_default(self):
        clock = ManualTime()
        cache = SimpleCache(default_ttl=10, time_func=clock)
        cache.set("short", 1, ttl=1)
        cache.set("long", 2)

        clock.now = 5
        assert cache.cleanup_expired() == 1
        assert cache.get("long") == 2
        assert cache.get_stats()["cache_size"] == 1

    def test_delete_and_clear(self):
        cache = SimpleCache()
        cache.set("a", 1)
        cache.set("b", 2)

        assert cache.delete("a") is True
        assert cache.delete("a") is False
        cache.clear()
        assert cache.get("b", "missing") == "missing"
        assert cache.get_stats()["deletes"] == 2

    def test_hit_rate(self):
        cache = SimpleCache()
        cache.set("a", 1)
        cache.get("a")
        cache.get("nope")

        stats = cache.get_stats()
        assert stats["total_requests"] == 2
        assert stats["hit_rate_percent"] == 50.0
