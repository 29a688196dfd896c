#!/usr/bin/env python3
"""
Shielded generation example.

This example builds the full chain in front of a provider:
- Admission limiting per policy and caller
- Result caching with a durable disk tier
- Failure circuit with a quick recovery preset

Usage:
    export OPENROUTER_API_KEY="your-api-key"
    python examples/resilience.py
"""

import asyncio

from ai_shield import (
    CacheConfig,
    CircuitBreakerConfig,
    DiskStore,
    GenerationRequest,
    RateLimitPolicy,
    ShieldBuilder,
)


async def main() -> None:
    shield = (
        ShieldBuilder()
        .with_provider("openrouter")
        .with_circuit_config(CircuitBreakerConfig.quick_recovery())
        .with_cache_config(CacheConfig(default_ttl=3600))
        .with_store(DiskStore(".ai-shield-cache"))
        .build()
    )

    request = GenerationRequest.of(
        "Write a short announcement for tonight's total lunar eclipse.",
        system_prompt="You write an astronomical event post. Audience: beginner",
        max_tokens=300,
    )

    async with shield:
        for attempt in range(2):
            outcome = await shield.generate(
                request, policy=RateLimitPolicy.CONTENT_GENERATION, identifier="channel-42"
            )
            if outcome.success:
                source = "cache" if outcome.cached else "provider"
                print(f"[{attempt}] from {source}: {outcome.value.content[:80]}...")
            else:
                print(f"[{attempt}] failed: {outcome.error} (retry after {outcome.retry_after})")

        stats = shield.cache.get_cache_stats()
        print(f"Cache hit rate: {stats.hit_rate:.0%}, tokens saved: {stats.tokens_saved}")

        snapshot = shield.health()
        print(f"Health: {snapshot.status.value}")
        for issue in snapshot.issues:
            print(f"  - {issue}")


if __name__ == "__main__":
    asyncio.run(main())
