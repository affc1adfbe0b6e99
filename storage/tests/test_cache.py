"""
Tests for the cache & dedupe manager.
Uses a fake clock for TTL checks and asyncio events to hold work in flight.
"""

import asyncio
import pytest

from errors import UpstreamTimeout
from storage.cache import CacheManager, CacheConfigError, TTL_SECONDS, ttl_for


class FakeClock:
    """Manually advanced monotonic clock."""

    def __init__(self, now=1000.0):
        self.now = now

    def __call__(self):
        return self.now


class TestTtl:
    """Tests for TTL expiry and bookkeeping."""

    def test_value_live_until_expiry(self):
        clock = FakeClock()
        cache = CacheManager(clock=clock)

        cache.set('quote:110011', {'nav': 1.0}, 30)
        clock.now += 29.9
        assert cache.get('quote:110011') == {'nav': 1.0}

        clock.now += 0.1
        assert cache.get('quote:110011') is None
        assert cache.stats()['size'] == 0

    def test_set_replaces_wholesale(self):
        cache = CacheManager(clock=FakeClock())
        cache.set('k', {'a': 1}, 10)
        cache.set('k', {'b': 2}, 10)
        assert cache.get('k') == {'b': 2}

    def test_invalidate_and_clear(self):
        cache = CacheManager(clock=FakeClock())
        cache.set('a', 1, 10)
        cache.set('b', 2, 10)

        cache.invalidate('a')
        assert cache.get('a') is None
        assert cache.get('b') == 2

        cache.clear()
        assert cache.get('b') is None

    def test_stats(self):
        cache = CacheManager(clock=FakeClock())
        cache.get('missing')
        cache.set('k', 1, 10)
        cache.get('k')

        assert cache.stats() == {'hits': 1, 'misses': 1, 'sets': 1, 'size': 1, 'inflight': 0}


class TestTtlPolicy:
    """Tests for the per-kind TTL table."""

    def test_builtin_values(self, monkeypatch):
        monkeypatch.delenv('FUND_CACHE_TTL_QUOTE', raising=False)
        assert ttl_for('quote') == 30
        assert TTL_SECONDS['asset_allocation'] == 24 * 60 * 60
        assert TTL_SECONDS['similar_ranking'] == 6 * 60 * 60

    def test_env_override(self, monkeypatch):
        monkeypatch.setenv('FUND_CACHE_TTL_QUOTE', '5')
        assert ttl_for('quote') == 5.0

    def test_invalid_override(self, monkeypatch):
        monkeypatch.setenv('FUND_CACHE_TTL_QUOTE', 'later')
        with pytest.raises(CacheConfigError, match="FUND_CACHE_TTL_QUOTE"):
            ttl_for('quote')

    def test_unknown_kind(self):
        with pytest.raises(CacheConfigError, match="Unknown cache kind"):
            ttl_for('weather')


class TestDedupe:
    """Tests for in-flight request collapsing."""

    def test_concurrent_callers_share_one_call(self):
        cache = CacheManager(clock=FakeClock())
        calls = []

        async def scenario():
            release = asyncio.Event()

            async def compute():
                calls.append(1)
                await release.wait()
                return {'nav': 1.2345}

            waiters = [
                asyncio.create_task(cache.get_or_compute('quote:110011', 30, compute))
                for _ in range(5)
            ]
            await asyncio.sleep(0)
            assert cache.inflight_count() == 1

            release.set()
            return await asyncio.gather(*waiters)

        results = asyncio.run(scenario())

        assert len(calls) == 1
        assert all(r == {'nav': 1.2345} for r in results)
        assert cache.inflight_count() == 0
        assert cache.get('quote:110011') == {'nav': 1.2345}

    def test_all_waiters_receive_same_error(self):
        cache = CacheManager(clock=FakeClock())
        calls = []

        async def scenario():
            release = asyncio.Event()

            async def compute():
                calls.append(1)
                await release.wait()
                raise UpstreamTimeout('slow upstream')

            waiters = [
                asyncio.create_task(cache.with_dedupe('k', compute))
                for _ in range(3)
            ]
            await asyncio.sleep(0)
            release.set()
            return await asyncio.gather(*waiters, return_exceptions=True)

        results = asyncio.run(scenario())

        assert len(calls) == 1
        assert all(isinstance(r, UpstreamTimeout) for r in results)
        assert results[0] is results[1] is results[2]
        assert cache.inflight_count() == 0

    def test_failure_is_not_cached(self):
        cache = CacheManager(clock=FakeClock())
        attempts = []

        async def compute():
            attempts.append(1)
            if len(attempts) == 1:
                raise UpstreamTimeout('first attempt fails')
            return 'ok'

        with pytest.raises(UpstreamTimeout):
            asyncio.run(cache.get_or_compute('k', 30, compute))

        assert asyncio.run(cache.get_or_compute('k', 30, compute)) == 'ok'
        assert len(attempts) == 2

    def test_cancelled_waiter_does_not_cancel_shared_work(self):
        cache = CacheManager(clock=FakeClock())
        calls = []

        async def scenario():
            release = asyncio.Event()

            async def compute():
                calls.append(1)
                await release.wait()
                return 'value'

            first = asyncio.create_task(cache.with_dedupe('k', compute))
            second = asyncio.create_task(cache.with_dedupe('k', compute))
            await asyncio.sleep(0)

            first.cancel()
            with pytest.raises(asyncio.CancelledError):
                await first

            release.set()
            return await second

        assert asyncio.run(scenario()) == 'value'
        assert len(calls) == 1
        assert cache.inflight_count() == 0

    def test_cached_value_skips_compute(self):
        cache = CacheManager(clock=FakeClock())
        cache.set('k', 'cached', 30)

        async def compute():
            raise AssertionError('should not be called')

        assert asyncio.run(cache.get_or_compute('k', 30, compute)) == 'cached'

    def test_force_bypasses_cached_read(self):
        cache = CacheManager(clock=FakeClock())
        cache.set('k', 'stale', 30)

        async def compute():
            return 'fresh'

        assert asyncio.run(cache.get_or_compute('k', 30, compute, force=True)) == 'fresh'
        assert cache.get('k') == 'fresh'

    def test_sequential_calls_after_expiry_recompute(self):
        clock = FakeClock()
        cache = CacheManager(clock=clock)
        values = iter(['v1', 'v2'])

        async def compute():
            return next(values)

        assert asyncio.run(cache.get_or_compute('k', 30, compute)) == 'v1'
        clock.now += 31
        assert asyncio.run(cache.get_or_compute('k', 30, compute)) == 'v2'
