"""Tests for the bounded read cache."""

from helpdesk_engine.shared.infrastructure.cache import TTLCache, make_cache_key


class Ticker:
    def __init__(self):
        self.value = 0.0

    def __call__(self):
        return self.value


class TestMakeCacheKey:

    def test_params_are_sorted(self):
        assert make_cache_key("tickets:open", {"offset": 0, "limit": 10}) == "tickets:open:limit=10|offset=0"

    def test_prefix_only(self):
        assert make_cache_key("sla:statistics") == "sla:statistics"


class TestTTLCache:

    def test_expired_entry_is_kept_for_degraded_reads(self):
        ticker = Ticker()
        cache = TTLCache(default_ttl=5, clock=ticker)
        cache.set("k", "v")
        ticker.value = 10

        assert cache.get("k") is None
        entry = cache.get_entry("k")
        assert entry is not None
        assert not cache.is_fresh(entry)
        assert cache.age(entry) == 10

    def test_least_recently_used_entry_is_evicted(self):
        cache = TTLCache(max_entries=2)
        cache.set("a", 1)
        cache.set("b", 2)
        cache.get("a")
        cache.set("c", 3)

        assert "a" in cache
        assert "b" not in cache
        assert len(cache) == 2

    def test_values_are_copied_in_and_out(self):
        cache = TTLCache()
        value = {"ids": [1]}
        cache.set("k", value)
        value["ids"].append(2)

        cached = cache.get("k")
        cached["ids"].append(3)

        assert cache.get("k") == {"ids": [1]}

    def test_stats_split_fresh_and_stale(self):
        ticker = Ticker()
        cache = TTLCache(default_ttl=5, clock=ticker)
        cache.set("old", 1)
        ticker.value = 10
        cache.set("new", 2)

        assert cache.stats() == {"size": 2, "fresh": 1, "stale": 1, "max_entries": 1024}
