"""Tests for the TTL cache."""
import asyncio

from seismic_bot.app.cache import TTLCache


class Clock:
    def __init__(self) -> None:
        self.now = 0.0

    def __call__(self) -> float:
        return self.now


def test_entry_expires_after_ttl() -> None:
    clock = Clock()
    cache = TTLCache(ttl_sec=60, clock=clock)
    cache.set("coins", [1, 2])

    clock.now = 59.9
    assert cache.get("coins") == [1, 2]

    clock.now = 60.0
    assert cache.get("coins") is None
    assert len(cache) == 0


def test_per_entry_ttl_overrides_default() -> None:
    clock = Clock()
    cache = TTLCache(ttl_sec=60, clock=clock)
    cache.set("short", "x", ttl_sec=5)
    clock.now = 6
    assert cache.get("short") is None


def test_get_or_set_calls_factory_once_while_fresh() -> None:
    clock = Clock()
    cache = TTLCache(ttl_sec=10, clock=clock)
    calls = []

    async def factory():
        calls.append(1)
        return {"price": len(calls)}

    async def scenario():
        first = await cache.get_or_set("btc", factory)
        second = await cache.get_or_set("btc", factory)
        clock.now = 11
        third = await cache.get_or_set("btc", factory)
        return first, second, third

    first, second, third = asyncio.run(scenario())
    assert first == second == {"price": 1}
    assert third == {"price": 2}
    assert len(calls) == 2


def test_factory_error_is_not_cached() -> None:
    cache = TTLCache(ttl_sec=10)

    async def failing():
        raise RuntimeError("upstream down")

    async def scenario():
        try:
            await cache.get_or_set("k", failing)
        except RuntimeError:
            pass
        return cache.get("k")

    assert asyncio.run(scenario()) is None


def test_clear_drops_everything() -> None:
    cache = TTLCache()
    cache.set("a", 1)
    cache.set("b", 2)
    cache.clear()
    assert len(cache) == 0
