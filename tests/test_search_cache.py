"""
Unit tests for the search result cache.
"""

from urlbar_llm.models import SearchResult
from urlbar_llm.tools.search_cache import SearchCache


class FakeClock:
    def __init__(self):
        self.now = 1000.0

    def __call__(self):
        return self.now


def _results(n=1):
    return [SearchResult(title=f"Result {i}", url=f"https://example.com/{i}") for i in range(n)]


class TestSearchCache:
    """Tests for SearchCache."""

    def test_make_key(self):
        assert SearchCache.make_key("rust async", 5) == "rust async:5"
        assert SearchCache.make_key("rust async", 5) != SearchCache.make_key("rust async", 3)

    def test_put_and_get(self):
        cache = SearchCache()
        cache.put("q:5", _results(2))
        hit = cache.get("q:5")
        assert [r.url for r in hit] == ["https://example.com/0", "https://example.com/1"]
        assert cache.get("other:5") is None

    def test_returned_results_are_copies(self):
        cache = SearchCache()
        cache.put("q:5", _results(1))
        cache.get("q:5")[0].content = "mutated"
        assert cache.get("q:5")[0].content == ""

    def test_expired_entry_is_dropped(self):
        clock = FakeClock()
        cache = SearchCache(ttl_seconds=300, clock=clock)
        cache.put("q:5", _results())

        clock.now += 299
        assert cache.get("q:5") is not None
        clock.now += 1
        assert cache.get("q:5") is None
        assert "q:5" not in cache

    def test_evicts_oldest_insertion_at_capacity(self):
        cache = SearchCache(max_size=50)
        for i in range(51):
            cache.put(f"query {i}:5", _results())

        assert len(cache) == 50
        assert "query 0:5" not in cache
        assert "query 1:5" in cache
        assert "query 50:5" in cache

    def test_reads_do_not_change_eviction_order(self):
        cache = SearchCache(max_size=3)
        cache.put("a", _results())
        cache.put("b", _results())
        cache.put("c", _results())

        # A hit on the oldest entry does not protect it
        assert cache.get("a") is not None
        cache.put("d", _results())

        assert "a" not in cache
        assert all(k in cache for k in ("b", "c", "d"))

    def test_replacing_key_makes_it_newest(self):
        cache = SearchCache(max_size=2)
        cache.put("a", _results())
        cache.put("b", _results())
        cache.put("a", _results(2))
        cache.put("c", _results())

        assert "b" not in cache
        assert len(cache.get("a")) == 2

    def test_clear(self):
        cache = SearchCache()
        cache.put("a", _results())
        cache.clear()
        assert len(cache) == 0
