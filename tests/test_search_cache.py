from __future__ import annotations

from contact_finder.models.schemas import SearchConfiguration, SearchCriteria, SearchOptions
from contact_finder.models.search import AggregatedSearchResult, SearchMetrics, SearchStage
from contact_finder.services.search_cache import SearchCache, cache_key


class FakeClock:
    def __init__(self) -> None:
        self.now = 1_000_000.0

    def __call__(self) -> float:
        return self.now


def _result(search_id: str) -> AggregatedSearchResult:
    return AggregatedSearchResult(
        search_id=search_id,
        status=SearchStage.COMPLETED,
        total_results=0,
        unique_contacts=0,
        duplicate_contacts=0,
        average_confidence=0.0,
        average_quality=0.0,
        processing_time_ms=10,
        results=[],
        contacts=[],
        duplicates=[],
        metrics=SearchMetrics(),
        errors=[],
    )


def test_cache_key_ignores_case_order_and_execution_knobs():
    a = SearchConfiguration(
        query="Tech Reporters",
        criteria=SearchCriteria(countries=["US", "gb"]),
        options=SearchOptions(priority="high"),
    )
    b = SearchConfiguration(
        query="  tech reporters ",
        criteria=SearchCriteria(countries=["GB", "us"]),
        options=SearchOptions(priority="low", processing_timeout_ms=5000),
    )
    c = SearchConfiguration(query="tech reporters", options=SearchOptions(max_results=5))

    assert cache_key(a) == cache_key(b)
    assert cache_key(a) != cache_key(c)


def test_get_returns_hit_until_ttl_expires():
    clock = FakeClock()
    cache = SearchCache(ttl_ms=1000, max_size=10, enabled=True, clock=clock)
    config = SearchConfiguration(query="climate editors")

    assert cache.get(config) is None
    cache.set(config, _result("s1"))
    assert cache.get(config).search_id == "s1"

    clock.now += 1001
    assert cache.get(config) is None
    assert cache.stats()["hits"] == 1
    assert cache.stats()["misses"] == 2
    assert len(cache) == 0


def test_set_evicts_oldest_entry_at_capacity():
    cache = SearchCache(ttl_ms=60000, max_size=2, enabled=True, clock=FakeClock())
    configs = [SearchConfiguration(query=f"query number {i}") for i in range(3)]
    for i, config in enumerate(configs):
        cache.set(config, _result(f"s{i}"))

    assert len(cache) == 2
    assert cache.get(configs[0]) is None
    assert cache.get(configs[2]).search_id == "s2"
    assert cache.stats()["evictions"] == 1


def test_disabled_cache_and_per_search_opt_out():
    config = SearchConfiguration(query="sports desk")
    disabled = SearchCache(enabled=False, clock=FakeClock())
    disabled.set(config, _result("s1"))
    assert disabled.get(config) is None
    assert len(disabled) == 0

    cache = SearchCache(enabled=True, clock=FakeClock())
    opted_out = SearchConfiguration(query="sports desk", options=SearchOptions(enable_caching=False))
    cache.set(opted_out, _result("s2"))
    assert len(cache) == 0


def test_prune_drops_only_stale_entries():
    clock = FakeClock()
    cache = SearchCache(ttl_ms=1000, max_size=10, enabled=True, clock=clock)
    cache.set(SearchConfiguration(query="old query"), _result("old"))
    clock.now += 800
    cache.set(SearchConfiguration(query="new query"), _result("new"))
    clock.now += 300

    assert cache.prune() == 1
    assert len(cache) == 1
    cache.clear()
    assert cache.stats()["size"] == 0
