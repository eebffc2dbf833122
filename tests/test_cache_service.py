import asyncio
from unittest.mock import patch

from relay.services.cache_service import LABELS_KEY, MEMBERS_KEY, CacheStore, run_cache_sweeper


class FakeClock:
    def __init__(self, now: float = 1000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now


class TestCacheStore:
    def test_fresh_entry_is_returned(self):
        clock = FakeClock()
        cache = CacheStore(ttl_seconds=600, clock=clock)
        cache.set(MEMBERS_KEY, ["a"])

        clock.now += 599
        assert cache.get(MEMBERS_KEY) == ["a"]
        assert cache.is_fresh(MEMBERS_KEY) is True

    def test_entry_is_never_read_past_ttl(self):
        clock = FakeClock()
        cache = CacheStore(ttl_seconds=600, clock=clock)
        cache.set(LABELS_KEY, ["bot"])

        clock.now += 600
        assert cache.get(LABELS_KEY) is None
        assert LABELS_KEY in cache

    def test_set_refreshes_timestamp(self):
        clock = FakeClock()
        cache = CacheStore(ttl_seconds=10, clock=clock)
        cache.set(MEMBERS_KEY, [1])
        clock.now += 8
        cache.set(MEMBERS_KEY, [2])
        clock.now += 8
        assert cache.get(MEMBERS_KEY) == [2]

    def test_sweep_removes_only_expired(self):
        clock = FakeClock()
        cache = CacheStore(ttl_seconds=10, clock=clock)
        cache.set(MEMBERS_KEY, [])
        clock.now += 11
        cache.set(LABELS_KEY, [])

        assert cache.sweep() == 1
        assert MEMBERS_KEY not in cache
        assert len(cache) == 1

    def test_invalidate(self):
        cache = CacheStore()
        cache.set(MEMBERS_KEY, [])
        cache.invalidate(MEMBERS_KEY)
        cache.invalidate("missing")
        assert len(cache) == 0


class TestCacheSweeper:
    def test_sweeper_runs_until_cancelled(self):
        cache = CacheStore(ttl_seconds=10)

        async def run():
            with patch.object(cache, "sweep", wraps=cache.sweep) as sweep, patch(
                "relay.services.cache_service.asyncio.sleep", side_effect=[None, None, asyncio.CancelledError()]
            ):
                await run_cache_sweeper(cache, interval_seconds=5)
                return sweep.call_count

        assert asyncio.run(run()) == 2

    def test_sweeper_survives_sweep_errors(self):
        cache = CacheStore(ttl_seconds=10)

        async def run():
            with patch.object(cache, "sweep", side_effect=[RuntimeError("boom"), 0]) as sweep, patch(
                "relay.services.cache_service.asyncio.sleep", side_effect=[None, None, asyncio.CancelledError()]
            ):
                await run_cache_sweeper(cache)
                return sweep.call_count

        assert asyncio.run(run()) == 2
