from __future__ import annotations

from exto.core.cache import TTLCache


class _Clock:
    def __init__(self) -> None:
        self.now = 1000.0

    def __call__(self) -> float:
        return self.now


def test_entries_expire_after_ttl() -> None:
    clock = _Clock()
    cache: TTLCache[str, int] = TTLCache(max_entries=10, ttl_s=60, time_source=clock)
    cache.set("a", 1)

    clock.now += 59
    assert cache.get("a") == 1
    clock.now += 2
    assert cache.get("a") is None
    assert len(cache) == 0


def test_per_entry_ttl_overrides_default() -> None:
    clock = _Clock()
    cache: TTLCache[str, int] = TTLCache(max_entries=10, ttl_s=60, time_source=clock)
    cache.set("short", 1, ttl_s=5)

    clock.now += 6
    assert "short" not in cache


def test_least_recently_used_entry_is_evicted() -> None:
    cache: TTLCache[str, int] = TTLCache(max_entries=2, ttl_s=60, time_source=_Clock())
    cache.set("a", 1)
    cache.set("b", 2)
    assert cache.get("a") == 1
    cache.set("c", 3)

    assert cache.get("b") is None
    assert cache.get("a") == 1
    assert cache.get("c") == 3


def test_pop_and_clear() -> None:
    cache: TTLCache[str, int] = TTLCache(max_entries=5, ttl_s=60, time_source=_Clock())
    cache.set("a", 1)
    cache.set("b", 2)

    assert cache.pop("a") == 1
    assert cache.pop("a") is None
    cache.clear()
    assert len(cache) == 0
