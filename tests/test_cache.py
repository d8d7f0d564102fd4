"""Tests for the in-process TTL cache."""
from storage.cache import TTLCache


class FakeClock:
    def __init__(self):
        self.t = 100.0

    def __call__(self):
        return self.t


class TestTTLCache:
    def setup_method(self):
        self.clock = FakeClock()
        self.cache = TTLCache(clock=self.clock)

    def test_hit_within_ttl(self):
        self.cache.set("signal:btc", {"score": 70}, ttl=900)
        self.clock.t += 899
        assert self.cache.get("signal:btc") == {"score": 70}

    def test_expires_at_ttl(self):
        self.cache.set("signal:btc", 1, ttl=900)
        self.clock.t += 900
        assert self.cache.get("signal:btc") is None
        assert len(self.cache) == 0

    def test_miss(self):
        assert self.cache.get("nope") is None
        assert self.cache.stats()["misses"] == 1

    def test_overwrite_refreshes_ttl(self):
        self.cache.set("k", "old", ttl=10)
        self.clock.t += 8
        self.cache.set("k", "new", ttl=10)
        self.clock.t += 8
        assert self.cache.get("k") == "new"

    def test_delete(self):
        self.cache.set("k", 1, ttl=10)
        self.cache.delete("k")
        self.cache.delete("missing")
        assert self.cache.get("k") is None

    def test_keys_by_prefix_skip_expired(self):
        self.cache.set("signal:a", 1, ttl=10)
        self.cache.set("signal:b", 2, ttl=100)
        self.cache.set("coin:a", 3, ttl=100)
        self.clock.t += 50
        assert self.cache.keys("signal:") == ["signal:b"]

    def test_cleanup_removes_only_expired(self):
        self.cache.set("short", 1, ttl=5)
        self.cache.set("long", 2, ttl=500)
        self.clock.t += 10
        assert self.cache.cleanup() == 1
        assert len(self.cache) == 1
        assert self.cache.get("long") == 2

    def test_stats(self):
        self.cache.set("k", 1, ttl=10)
        self.cache.get("k")
        self.cache.get("k")
        self.cache.get("x")
        stats = self.cache.stats()
        assert stats["hits"] == 2
        assert stats["misses"] == 1
        assert stats["hit_rate"] == 0.667
        assert stats["entries"] == 1
