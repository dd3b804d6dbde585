"""Tests for the bounded retention cache."""

from __future__ import annotations

from silvabot.cache import RetentionCache


class FakeClock:
    def __init__(self) -> None:
        self.now = 1000.0

    def __call__(self) -> float:
        return self.now


class TestRetentionCache:
    def test_overflow_evicts_oldest(self):
        cache: RetentionCache[str, int] = RetentionCache(3)
        for i in range(4):
            cache.put(f"k{i}", i)

        assert len(cache) == 3
        assert "k0" not in cache
        assert cache.keys() == ["k1", "k2", "k3"]

    def test_reinsert_refreshes_position(self):
        cache: RetentionCache[str, int] = RetentionCache(2)
        cache.put("a", 1)
        cache.put("b", 2)
        cache.put("a", 3)
        cache.put("c", 4)

        assert cache.keys() == ["a", "c"]
        assert cache.get("a") == 3

    def test_add_reports_duplicates(self):
        cache: RetentionCache[str, bool] = RetentionCache(5)
        assert cache.add("id", True) is True
        assert cache.add("id", True) is False
        assert len(cache) == 1

    def test_prune_by_age(self):
        clock = FakeClock()
        cache: RetentionCache[str, int] = RetentionCache(10, max_age=60, clock=clock)
        cache.put("old", 1)
        clock.now += 45
        cache.put("new", 2)
        clock.now += 30

        assert cache.prune() == 1
        assert cache.keys() == ["new"]

    def test_prune_without_age_limit(self):
        cache: RetentionCache[str, int] = RetentionCache(10)
        cache.put("a", 1)
        assert cache.prune() == 0
        assert "a" in cache

    def test_pop_and_get_defaults(self):
        cache: RetentionCache[str, int] = RetentionCache(2)
        cache.put("a", 1)
        assert cache.pop("a") == 1
        assert cache.pop("a") is None
        assert cache.get("missing", 7) == 7
