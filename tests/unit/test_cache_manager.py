"""Tests for the two-tier result cache."""

import pytest

from ai_shield.cache import CacheConfig, DurableStore, HitKind, InMemoryStore, ResultCache
from ai_shield.errors import ProviderError
from ai_shield.telemetry import MetricsRecorder


class BrokenStore(DurableStore):
    """Durable store whose every operation fails with an I/O error."""

    def __init__(self) -> None:
        self.attempts = 0

    async def get(self, key: str) -> bytes | None:
        self.attempts += 1
        raise OSError("disk unavailable")

    async def set(self, key: str, value: bytes) -> None:
        self.attempts += 1
        raise OSError("disk unavailable")

    async def remove(self, key: str) -> bool:
        raise OSError("disk unavailable")

    async def keys(self, prefix: str = "") -> list[str]:
        raise OSError("disk unavailable")


class TestResultCacheLookup:
    """Tests for exact and approximate hits."""

    @pytest.mark.asyncio
    async def test_miss_then_exact_hit(self, clock, fake_client, request_factory) -> None:
        metrics = MetricsRecorder()
        cache = ResultCache(fake_client, metrics=metrics, clock=clock)
        request = request_factory()

        first = await cache.fetch(request)
        second = await cache.fetch(request)

        assert first.cached is False
        assert second.hit == HitKind.EXACT
        assert second.result == first.result
        assert fake_client.calls == 1

        stats = cache.get_cache_stats()
        assert stats.total_requests == 2
        assert stats.misses == 1
        assert stats.exact_hits == 1
        assert stats.hit_rate == 0.5
        assert stats.tokens_used == 100
        assert stats.tokens_saved == 100

        snapshot = metrics.get_snapshot()
        assert snapshot.cache_hits == 1
        assert snapshot.cache_misses == 1
        assert snapshot.tokens_saved == 100

    @pytest.mark.asyncio
    async def test_hits_record_cache_latency(self, clock, fake_client, request_factory) -> None:
        metrics = MetricsRecorder()
        cache = ResultCache(fake_client, metrics=metrics, clock=clock)
        request = request_factory()
        await cache.fetch(request)
        await cache.fetch(request)

        snapshot = metrics.get_snapshot()
        assert len(snapshot.layer_latency["cache"]) == 1
        assert snapshot.layer_average("cache") == 0.0

    @pytest.mark.asyncio
    async def test_generate_returns_result(self, clock, fake_client, request_factory) -> None:
        cache = ResultCache(fake_client, clock=clock)
        result = await cache.generate(request_factory())
        assert result.tokens == 100

    @pytest.mark.asyncio
    async def test_approximate_hit_for_same_options(
        self, clock, fake_client, request_factory
    ) -> None:
        cache = ResultCache(fake_client, clock=clock)
        await cache.fetch(request_factory("Describe tonight's eclipse"))
        served = await cache.fetch(request_factory("Describe tomorrow's eclipse"))

        assert served.hit == HitKind.APPROXIMATE
        assert fake_client.calls == 1
        assert cache.get_cache_stats().approximate_hits == 1

    @pytest.mark.asyncio
    async def test_different_options_miss(self, clock, fake_client, request_factory) -> None:
        cache = ResultCache(fake_client, clock=clock)
        await cache.fetch(request_factory(temperature=0.2))
        served = await cache.fetch(request_factory("Another prompt", temperature=0.9))

        assert served.cached is False
        assert fake_client.calls == 2

    @pytest.mark.asyncio
    async def test_exact_only_skips_similarity(self, clock, fake_client, request_factory) -> None:
        cache = ResultCache(fake_client, CacheConfig.exact_only(), clock=clock)
        await cache.fetch(request_factory("Describe tonight's eclipse"))
        served = await cache.fetch(request_factory("Describe tomorrow's eclipse"))

        assert served.cached is False
        assert fake_client.calls == 2

    @pytest.mark.asyncio
    async def test_disabled_cache_always_calls_through(
        self, clock, fake_client, request_factory
    ) -> None:
        cache = ResultCache(fake_client, CacheConfig.disabled(), clock=clock)
        request = request_factory()
        await cache.fetch(request)
        served = await cache.fetch(request)

        assert served.cached is False
        assert fake_client.calls == 2
        assert cache.size == 0


class TestResultCacheExpiry:
    """Tests for TTL and capacity bounds."""

    @pytest.mark.asyncio
    async def test_expired_entry_is_not_served(self, clock, fake_client, request_factory) -> None:
        cache = ResultCache(fake_client, CacheConfig(default_ttl=60.0), clock=clock)
        request = request_factory()
        await cache.fetch(request)

        clock.advance(59.0)
        assert (await cache.fetch(request)).cached is True

        clock.advance(1.0)
        assert (await cache.fetch(request)).cached is False
        assert fake_client.calls == 2

    @pytest.mark.asyncio
    async def test_short_ttl_preset(self, clock, fake_client, request_factory) -> None:
        cache = ResultCache(fake_client, CacheConfig.short_ttl(), clock=clock)
        request = request_factory()
        await cache.fetch(request)

        clock.advance(3600.0)
        assert (await cache.fetch(request)).cached is False

    @pytest.mark.asyncio
    async def test_expired_entries_swept_on_store(
        self, clock, fake_client, request_factory
    ) -> None:
        cache = ResultCache(fake_client, CacheConfig(default_ttl=60.0), clock=clock)
        await cache.fetch(request_factory(temperature=0.1))
        clock.advance(60.0)

        # Stale entry stays visible in size until the next sweep
        assert cache.size == 1
        await cache.fetch(request_factory(temperature=0.5))

        assert cache.size == 1
        assert cache.get_cache_stats().expirations == 1

    @pytest.mark.asyncio
    async def test_refresh_cache(self, clock, fake_client, request_factory) -> None:
        cache = ResultCache(fake_client, CacheConfig(default_ttl=60.0), clock=clock)
        await cache.fetch(request_factory(temperature=0.1))
        await cache.fetch(request_factory(temperature=0.5))
        clock.advance(61.0)

        assert cache.refresh_cache() == 2
        assert cache.size == 0
        assert cache.refresh_cache() == 0

    @pytest.mark.asyncio
    async def test_lru_eviction(self, clock, fake_client, request_factory) -> None:
        cache = ResultCache(
            fake_client, CacheConfig(max_memory_entries=2, enable_similarity_search=False), clock=clock
        )
        a, b, c = (request_factory(name) for name in ("a", "b", "c"))
        await cache.fetch(a)
        await cache.fetch(b)
        assert (await cache.fetch(a)).cached is True

        await cache.fetch(c)
        assert cache.size == 2
        assert cache.get_cache_stats().evictions == 1

        assert (await cache.fetch(a)).cached is True
        assert (await cache.fetch(b)).cached is False
        assert fake_client.calls == 4


class TestResultCacheDurableTier:
    """Tests for the durable tier."""

    @pytest.mark.asyncio
    async def test_durable_hit_after_restart(self, clock, client_factory, request_factory) -> None:
        store = InMemoryStore()
        request = request_factory()
        first_client = client_factory()
        await ResultCache(first_client, store=store, clock=clock).fetch(request)

        second_client = client_factory()
        restarted = ResultCache(second_client, store=store, clock=clock)
        served = await restarted.fetch(request)

        assert served.hit == HitKind.DURABLE
        assert second_client.calls == 0
        assert (await restarted.fetch(request)).hit == HitKind.EXACT
        assert restarted.get_cache_stats().durable_hits == 1

    @pytest.mark.asyncio
    async def test_stale_durable_entry_is_removed(
        self, clock, client_factory, request_factory
    ) -> None:
        store = InMemoryStore()
        request = request_factory()
        await ResultCache(client_factory(), CacheConfig(default_ttl=60.0), store=store, clock=clock).fetch(request)
        clock.advance(120.0)

        second_client = client_factory()
        restarted = ResultCache(second_client, CacheConfig(default_ttl=60.0), store=store, clock=clock)
        served = await restarted.fetch(request)

        assert served.cached is False
        assert second_client.calls == 1
        assert store.size == 1

    @pytest.mark.asyncio
    async def test_storage_cap(self, clock, fake_client, request_factory) -> None:
        store = InMemoryStore()
        cache = ResultCache(
            fake_client, CacheConfig(max_storage_entries=1), store=store, clock=clock
        )
        await cache.fetch(request_factory(temperature=0.1))
        await cache.fetch(request_factory(temperature=0.5))

        assert store.size == 1
        assert await store.keys() == [cache.key_for(request_factory(temperature=0.5)).key]

    @pytest.mark.asyncio
    async def test_durable_failure_degrades_to_memory(
        self, clock, fake_client, request_factory
    ) -> None:
        store = BrokenStore()
        cache = ResultCache(fake_client, store=store, clock=clock)
        request = request_factory()

        assert (await cache.fetch(request)).cached is False
        assert (await cache.fetch(request)).hit == HitKind.EXACT
        assert fake_client.calls == 1
        assert store.attempts >= 2

    @pytest.mark.asyncio
    async def test_clear_cache_empties_both_tiers(
        self, clock, fake_client, request_factory
    ) -> None:
        store = InMemoryStore()
        cache = ResultCache(fake_client, store=store, clock=clock)
        request = request_factory()
        await cache.fetch(request)
        await cache.fetch(request)

        await cache.clear_cache()

        assert cache.size == 0
        assert store.size == 0
        assert cache.get_cache_stats().exact_hits == 1
        assert (await cache.fetch(request)).cached is False


class TestResultCacheFailures:
    """Tests for failed generations."""

    @pytest.mark.asyncio
    async def test_failures_are_not_cached(
        self, clock, client_factory, result_factory, request_factory
    ) -> None:
        metrics = MetricsRecorder()
        client = client_factory(ProviderError("upstream down"), result_factory())
        cache = ResultCache(client, metrics=metrics, clock=clock)
        request = request_factory()

        with pytest.raises(ProviderError):
            await cache.fetch(request)
        assert cache.size == 0

        assert (await cache.fetch(request)).cached is False
        assert client.calls == 2

        snapshot = metrics.get_snapshot()
        assert snapshot.failed_requests == 1
        assert snapshot.completed_requests == 1
        assert snapshot.error_rate == 0.5


class TestResultCacheClientInterface:
    @pytest.mark.asyncio
    async def test_usage_stats_section(self, clock, fake_client, request_factory) -> None:
        cache = ResultCache(fake_client, clock=clock)
        await cache.fetch(request_factory())
        stats = await cache.get_usage_stats()
        assert stats.requests_today == 1
        assert stats.cache["misses"] == 1
        assert stats.cache["cache_size"] == 1

    @pytest.mark.asyncio
    async def test_delegates_to_inner(self, clock, fake_client) -> None:
        cache = ResultCache(fake_client, clock=clock)
        fake_client.available = False
        assert await cache.is_available() is False
        assert cache.validate_content("").is_valid is False
        await cache.close()
        assert fake_client.closed is True
