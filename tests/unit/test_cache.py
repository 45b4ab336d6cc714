from grounded_resolver.resilience.cache import TTLCache


class _Clock:
    def __init__(self) -> None:
        self.now = 0.0

    def __call__(self) -> float:
        return self.now


def test_get_returns_stored_value_and_counts_hits() -> None:
    cache = TTLCache(max_size=10, ttl_seconds=10.0, clock=_Clock())
    cache.put("site:g3", 1)

    assert cache.get("site:g3") == 1
    assert cache.get("site:missing") is None
    stats = cache.stats()
    assert (stats["hits"], stats["misses"], stats["hit_rate"]) == (1, 1, 0.5)


def test_entries_expire_after_ttl() -> None:
    clock = _Clock()
    cache = TTLCache(max_size=10, ttl_seconds=10.0, clock=clock)
    cache.put("key", "value")

    clock.now = 10.5

    assert cache.get("key") is None
    assert len(cache) == 0


def test_reads_refresh_expiry() -> None:
    clock = _Clock()
    cache = TTLCache(max_size=10, ttl_seconds=10.0, clock=clock)
    cache.put("key", "value")

    clock.now = 8.0
    assert cache.get("key") == "value"
    clock.now = 15.0
    assert cache.get("key") == "value"


def test_least_recently_used_entry_is_evicted() -> None:
    cache = TTLCache(max_size=2, ttl_seconds=10.0, clock=_Clock())
    cache.put("a", 1)
    cache.put("b", 2)
    cache.get("a")

    cache.put("c", 3)

    assert cache.get("b") is None
    assert cache.get("a") == 1
    assert cache.get("c") == 3


def test_invalidate_and_clear() -> None:
    cache = TTLCache(clock=_Clock())
    cache.put("a", 1)
    cache.put("b", 2)

    cache.invalidate("a")
    assert cache.get("a") is None
    assert len(cache) == 1

    cache.clear()
    assert len(cache) == 0
    assert cache.stats()["hits"] == 0
