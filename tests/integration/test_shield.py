"""End-to-end tests of the assembled generation chain."""

from __future__ import annotations

import json

import pytest

from ai_shield import ShieldBuilder
from ai_shield.cache import CacheConfig, DiskStore, DurableStore, InMemoryStore
from ai_shield.client import ProviderClient
from ai_shield.config import ShieldSettings
from ai_shield.errors import CircuitOpenError, ProviderError, RateLimitExceeded
from ai_shield.resilience import CircuitBreakerConfig, CircuitState, RateLimitConfig
from ai_shield.telemetry import HealthStatus, LogContext, get_log_context


def low_memory() -> float:
    return 64.0


def build(client, clock, **kwargs):
    builder = ShieldBuilder().with_client(client).with_clock(clock).with_memory_probe(low_memory)
    if "circuit" in kwargs:
        builder = builder.with_circuit_config(kwargs["circuit"])
    if "cache" in kwargs:
        builder = builder.with_cache_config(kwargs["cache"])
    if "policies" in kwargs:
        builder = builder.with_policies(kwargs["policies"])
    if "store" in kwargs:
        builder = builder.with_store(kwargs["store"])
    return builder.build()


class TestScenarios:
    """The reference scenarios, driven through the Shield."""

    @pytest.mark.asyncio
    async def test_consecutive_failures_open_the_circuit(
        self, clock, client_factory, request_factory
    ) -> None:
        client = client_factory(*(ProviderError("upstream 500") for _ in range(3)))
        shield = build(client, clock, circuit=CircuitBreakerConfig(failure_threshold=3))
        request = request_factory()

        for _ in range(3):
            outcome = await shield.generate(request)
            assert outcome.success is False
            assert isinstance(outcome.exception, ProviderError)

        rejected = await shield.generate(request)
        assert rejected.success is False
        assert isinstance(rejected.exception, CircuitOpenError)
        assert rejected.retry_after > 0
        assert "retry after" in rejected.error
        assert client.calls == 3

    @pytest.mark.asyncio
    async def test_burst_allowance_admission(self, clock, fake_client, request_factory) -> None:
        shield = build(
            fake_client,
            clock,
            policies={"p": RateLimitConfig(max_requests=2, window_seconds=60, burst_allowance=1)},
        )
        request = request_factory()

        outcomes = [await shield.generate(request, policy="p") for _ in range(4)]

        assert [o.success for o in outcomes] == [True, True, True, False]
        rejected = outcomes[-1]
        assert isinstance(rejected.exception, RateLimitExceeded)
        assert 0 < rejected.retry_after <= 60
        assert "try again after" in rejected.error

    @pytest.mark.asyncio
    async def test_identical_request_served_from_cache(
        self, clock, fake_client, request_factory
    ) -> None:
        shield = build(fake_client, clock)
        request = request_factory()

        first = await shield.generate(request)
        second = await shield.generate(request)

        assert first.cached is False
        assert second.cached is True
        assert second.value.content == first.value.content
        assert shield.cache.get_cache_stats().hit_rate == 0.5
        assert fake_client.calls == 1

    @pytest.mark.asyncio
    async def test_half_open_probe_closes_circuit(
        self, clock, client_factory, result_factory, request_factory
    ) -> None:
        client = client_factory(ProviderError("upstream 500"), result_factory())
        shield = build(
            client,
            clock,
            circuit=CircuitBreakerConfig(
                failure_threshold=1, recovery_timeout=30.0, success_threshold=1
            ),
        )
        request = request_factory()

        assert (await shield.generate(request)).success is False
        assert shield.circuit.state == CircuitState.OPEN

        clock.advance(31.0)
        outcome = await shield.generate(request)

        assert outcome.success is True
        assert shield.circuit.state == CircuitState.CLOSED
        assert client.calls == 2


class TestChainProperties:
    """Cross-layer guarantees."""

    @pytest.mark.asyncio
    async def test_cache_hits_bypass_client_and_circuit(
        self, clock, fake_client, request_factory
    ) -> None:
        shield = build(fake_client, clock)
        await shield.generate(request_factory("Describe tonight's eclipse"))
        before = shield.circuit.get_stats()

        exact = await shield.generate(request_factory("Describe tonight's eclipse"))
        approximate = await shield.generate(request_factory("Describe tomorrow's eclipse"))

        after = shield.circuit.get_stats()
        assert exact.cached and approximate.cached
        assert fake_client.calls == 1
        assert after.total_requests == before.total_requests
        assert after.state == before.state

    @pytest.mark.asyncio
    async def test_hits_served_while_circuit_open(
        self, clock, fake_client, request_factory
    ) -> None:
        shield = build(fake_client, clock)
        request = request_factory()
        await shield.generate(request)

        shield.circuit.force_open()
        outcome = await shield.generate(request)
        assert outcome.success and outcome.cached

    @pytest.mark.asyncio
    async def test_tokens_saved_matches_cached_outcomes(
        self, clock, client_factory, result_factory, request_factory
    ) -> None:
        client = client_factory(
            result_factory(tokens=120), result_factory(tokens=45), result_factory(tokens=300)
        )
        shield = build(client, clock, cache=CacheConfig.exact_only())
        prompts = ["eclipse", "comet", "eclipse", "eclipse", "aurora", "comet"]

        outcomes = [await shield.generate(request_factory(p)) for p in prompts]

        saved = sum(o.value.tokens for o in outcomes if o.cached)
        assert saved == 120 + 120 + 45
        assert shield.cache.get_cache_stats().tokens_saved == saved
        assert shield.metrics.get_snapshot().tokens_saved == saved
        assert client.calls == 3

    @pytest.mark.asyncio
    async def test_stale_entry_is_never_served(
        self, clock, fake_client, request_factory
    ) -> None:
        shield = build(fake_client, clock, cache=CacheConfig(default_ttl=60.0))
        request = request_factory()
        await shield.generate(request)

        clock.advance(60.0)
        # Expired but not yet swept
        assert shield.cache.size == 1
        outcome = await shield.generate(request)

        assert outcome.cached is False
        assert fake_client.calls == 2

    @pytest.mark.asyncio
    async def test_failing_durable_tier_degrades_to_memory(
        self, clock, fake_client, request_factory
    ) -> None:
        class FailingStore(DurableStore):
            async def get(self, key):
                raise OSError("read-only filesystem")

            async def set(self, key, value):
                raise OSError("read-only filesystem")

            async def remove(self, key):
                raise OSError("read-only filesystem")

            async def keys(self, prefix=""):
                raise OSError("read-only filesystem")

        shield = build(fake_client, clock, store=FailingStore())
        request = request_factory()

        assert (await shield.generate(request)).success
        assert (await shield.generate(request)).cached
        assert fake_client.calls == 1

    @pytest.mark.asyncio
    async def test_durable_tier_survives_rebuild(
        self, clock, client_factory, request_factory
    ) -> None:
        store = InMemoryStore()
        request = request_factory()
        await build(client_factory(), clock, store=store).generate(request)

        second_client = client_factory()
        outcome = await build(second_client, clock, store=store).generate(request)

        assert outcome.cached is True
        assert second_client.calls == 0

    @pytest.mark.asyncio
    async def test_skip_successful_returns_slot_on_cache_hit(
        self, clock, fake_client, request_factory
    ) -> None:
        shield = build(
            fake_client,
            clock,
            policies={
                "tags": RateLimitConfig(max_requests=2, window_seconds=60, skip_successful=True),
                "posts": RateLimitConfig(max_requests=2, window_seconds=60),
            },
        )
        request = request_factory()

        tags = [await shield.generate(request, policy="tags") for _ in range(5)]
        assert all(o.success for o in tags)

        posts = [await shield.generate(request, policy="posts") for _ in range(3)]
        assert [o.success for o in posts] == [True, True, False]
        assert fake_client.calls == 1

    @pytest.mark.asyncio
    async def test_log_context_is_scoped_to_the_call(
        self, clock, fake_client, request_factory, log_stream
    ) -> None:
        shield = build(fake_client, clock)
        outcome = await shield.generate(request_factory(), identifier="channel-7")
        assert outcome.success

        records = [json.loads(line) for line in log_stream.getvalue().splitlines()]
        miss = next(r for r in records if r["message"] == "Cache miss served by provider")
        assert miss["context"]["identifier"] == "channel-7"
        assert miss["context"]["policy"] == "content_generation"
        assert len(miss["context"]["request_id"]) == 12
        assert get_log_context() == LogContext()

    @pytest.mark.asyncio
    async def test_health_reflects_circuit(self, clock, client_factory, request_factory) -> None:
        client = client_factory(ProviderError("down"))
        shield = build(client, clock, circuit=CircuitBreakerConfig(failure_threshold=1))
        assert shield.health().status == HealthStatus.HEALTHY

        await shield.generate(request_factory())

        snapshot = shield.health()
        assert snapshot.status == HealthStatus.CRITICAL
        assert snapshot.system["circuit_state"] == "open"
        assert snapshot.api_usage["circuit_opens"] == 1

    @pytest.mark.asyncio
    async def test_usage_stats_and_delegation(self, clock, fake_client, request_factory) -> None:
        shield = build(fake_client, clock)
        await shield.generate(request_factory())

        stats = await shield.get_usage_stats()
        assert stats.requests_today == 1
        assert stats.cache["misses"] == 1
        assert stats.circuit_breaker["state"] == "closed"
        assert await shield.is_available() is True
        assert shield.validate_content("").is_valid is False

        async with shield:
            pass
        assert fake_client.closed is True

    @pytest.mark.asyncio
    async def test_unwrap(self, clock, client_factory, request_factory) -> None:
        client = client_factory(ProviderError("down"))
        shield = build(client, clock)
        with pytest.raises(ProviderError):
            (await shield.generate(request_factory())).unwrap()
        assert (await shield.generate(request_factory())).unwrap().tokens == 100


class TestShieldBuilder:
    """Tests for assembling a Shield from settings."""

    def test_builds_provider_client_from_settings(self, tmp_path) -> None:
        policy_file = tmp_path / "policies.yaml"
        policy_file.write_text("digest:\n  max_requests: 1\n  window_seconds: 3600\n")
        settings = ShieldSettings(
            provider="anthropic",
            model="claude-3-5-haiku-latest",
            cache_ttl=120.0,
            cache_max_entries=10,
            cache_dir=str(tmp_path / "cache"),
            policy_file=str(policy_file),
        )

        shield = ShieldBuilder().with_settings(settings).with_provider("anthropic", "sk-ant-test").build()

        assert isinstance(shield.client, ProviderClient)
        assert shield.client.provider_id == "anthropic"
        assert shield.client.driver.default_model == "claude-3-5-haiku-latest"
        assert shield.cache.config.default_ttl == 120.0
        assert shield.cache.config.max_memory_entries == 10
        assert "digest" in shield.limiter.policies
        assert "content_generation" in shield.limiter.policies
        assert (tmp_path / "cache").is_dir()

    def test_policies_from_file(self, tmp_path, fake_client) -> None:
        path = tmp_path / "policies.json"
        path.write_text(json.dumps({"burst": {"max_requests": 1, "window_ms": 1000}}))
        shield = ShieldBuilder().with_client(fake_client).with_policies(path).build()
        assert shield.limiter.get_policy_config("burst").window_seconds == 1.0

    @pytest.mark.asyncio
    async def test_disk_store_round_trip(self, tmp_path, clock, client_factory, request_factory) -> None:
        request = request_factory()
        first = build(client_factory(), clock, store=DiskStore(tmp_path))
        await first.generate(request)
        await first.close()

        second_client = client_factory()
        second = build(second_client, clock, store=DiskStore(tmp_path))
        outcome = await second.generate(request)
        assert outcome.cached is True
        assert second_client.calls == 0
