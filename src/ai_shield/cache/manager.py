"""
Result cache for generation requests.

Two tiers addressed by the same keys: a bounded in-process LRU table and an
optional durable store that survives restarts. Lookup order is memory exact
match, durable exact match, similarity match over memory entries, then a
call through to the wrapped client. Only successful results are stored.
"""

from __future__ import annotations

import asyncio
import time
from collections import OrderedDict
from dataclasses import dataclass
from enum import Enum
from typing import TYPE_CHECKING, Any

from ai_shield.cache.backends import DurableStore, NullStore
from ai_shield.cache.entry import CacheEntry
from ai_shield.cache.key import KEY_PREFIX, CacheKey, CacheKeyGenerator
from ai_shield.cache.similarity import SimilarityScorer
from ai_shield.client.base import GenerationClient
from ai_shield.telemetry.logger import get_logger

if TYPE_CHECKING:
    from collections.abc import Callable

    from ai_shield.telemetry.metrics import MetricsRecorder
    from ai_shield.types import (
        GenerationRequest,
        GenerationResult,
        UsageStats,
        ValidationResult,
    )

logger = get_logger("ai_shield.cache")


class HitKind(str, Enum):
    """How a request was served from cache."""

    EXACT = "exact"
    DURABLE = "durable"
    APPROXIMATE = "approximate"


@dataclass
class CacheConfig:
    """Cache configuration.

    With similarity search enabled, a request can be served the cached result
    of a different prompt. The score only compares category, audience, length
    bucket and the options fingerprint (model, max_tokens, temperature and
    system prompt), so two prompts sent with identical options score 1.0 and
    share one result. Use ``exact_only()`` when each prompt needs its own
    generation.

    Attributes:
        enabled: Whether caching is enabled
        max_memory_entries: Hard cap of the in-process tier
        max_storage_entries: Cap of the durable tier
        default_ttl: Entry lifetime in seconds
        similarity_threshold: Score an approximate match must exceed
        enable_similarity_search: Whether approximate matches are served
    """

    enabled: bool = True
    max_memory_entries: int = 100
    max_storage_entries: int = 500
    default_ttl: float = 86400.0  # 24 hours
    similarity_threshold: float = 0.8
    enable_similarity_search: bool = True

    @classmethod
    def disabled(cls) -> CacheConfig:
        """Create disabled cache config."""
        return cls(enabled=False)

    @classmethod
    def short_ttl(cls, ttl: float = 3600.0) -> CacheConfig:
        """Create config with short TTL (1 hour default)."""
        return cls(default_ttl=ttl)

    @classmethod
    def exact_only(cls) -> CacheConfig:
        """Create config that never serves approximate matches."""
        return cls(enable_similarity_search=False)


@dataclass(frozen=True)
class CacheLookup:
    """A result together with how the cache served it (None for a miss)."""

    result: GenerationResult
    hit: HitKind | None = None

    @property
    def cached(self) -> bool:
        return self.hit is not None


@dataclass(frozen=True)
class CacheStats:
    """Cache statistics.

    Attributes:
        total_requests: Requests seen by the cache
        exact_hits: Served from the memory tier (including coalesced misses)
        approximate_hits: Served by similarity match
        durable_hits: Served from the durable tier
        misses: Sent to the wrapped client
        cache_size: Entries currently in the memory tier
        evictions: Entries dropped for capacity
        expirations: Entries dropped for age
        tokens_used: Tokens spent on misses
        tokens_saved: Tokens of results served from cache
        average_generation_time: Mean miss duration in seconds
    """

    total_requests: int = 0
    exact_hits: int = 0
    approximate_hits: int = 0
    durable_hits: int = 0
    misses: int = 0
    cache_size: int = 0
    evictions: int = 0
    expirations: int = 0
    tokens_used: int = 0
    tokens_saved: int = 0
    average_generation_time: float = 0.0

    @property
    def hits(self) -> int:
        return self.exact_hits + self.approximate_hits + self.durable_hits

    @property
    def hit_rate(self) -> float:
        """Get cache hit rate (0.0 to 1.0)."""
        if self.total_requests == 0:
            return 0.0
        return self.hits / self.total_requests

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        return {
            "total_requests": self.total_requests,
            "exact_hits": self.exact_hits,
            "approximate_hits": self.approximate_hits,
            "durable_hits": self.durable_hits,
            "misses": self.misses,
            "hit_rate": self.hit_rate,
            "cache_size": self.cache_size,
            "evictions": self.evictions,
            "expirations": self.expirations,
            "tokens_used": self.tokens_used,
            "tokens_saved": self.tokens_saved,
            "average_generation_time": self.average_generation_time,
        }


class ResultCache(GenerationClient):
    """Caching layer in front of a generation client.

    Concurrent misses on the same key share one call to the wrapped client.

    Example:
        >>> cache = ResultCache(circuit, CacheConfig(default_ttl=3600), store=DiskStore(path))
        >>> result = await cache.generate(request)   # miss: calls through
        >>> result = await cache.generate(request)   # exact hit
        >>> cache.get_cache_stats().hit_rate
        0.5
    """

    def __init__(
        self,
        inner: GenerationClient,
        config: CacheConfig | None = None,
        *,
        store: DurableStore | None = None,
        metrics: MetricsRecorder | None = None,
        key_generator: CacheKeyGenerator | None = None,
        scorer: SimilarityScorer | None = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        """Initialize the cache.

        Args:
            inner: Wrapped client (normally the failure circuit)
            config: Cache configuration
            store: Durable tier (defaults to NullStore)
            metrics: Recorder for request outcomes
            key_generator: Key derivation
            scorer: Similarity scorer for approximate matches
            clock: Wall clock in seconds; durable entries outlive the process
        """
        self._inner = inner
        self._config = config or CacheConfig()
        self._store = store or NullStore()
        self._metrics = metrics
        self._key_generator = key_generator or CacheKeyGenerator()
        self._scorer = scorer or SimilarityScorer()
        self._clock = clock

        self._memory: OrderedDict[str, CacheEntry] = OrderedDict()
        self._durable_index: OrderedDict[str, None] | None = None
        self._inflight: dict[str, asyncio.Future[GenerationResult]] = {}

        # Statistics
        self._total_requests = 0
        self._exact_hits = 0
        self._approximate_hits = 0
        self._durable_hits = 0
        self._misses = 0
        self._evictions = 0
        self._expirations = 0
        self._tokens_used = 0
        self._tokens_saved = 0
        self._generation_time = 0.0

    @property
    def config(self) -> CacheConfig:
        return self._config

    @property
    def inner(self) -> GenerationClient:
        return self._inner

    @property
    def size(self) -> int:
        """Entries in the memory tier, including expired ones not yet swept."""
        return len(self._memory)

    def key_for(self, request: GenerationRequest) -> CacheKey:
        return self._key_generator.generate(request)

    async def generate(self, request: GenerationRequest) -> GenerationResult:
        return (await self.fetch(request)).result

    async def fetch(self, request: GenerationRequest) -> CacheLookup:
        """Generate through the cache, reporting how the result was served."""
        started = self._clock()
        self._total_requests += 1

        if not self._config.enabled:
            return CacheLookup(await self._call_inner(request, started))

        key = self.key_for(request)
        hit = await self._lookup(key)
        if hit is not None:
            entry, kind = hit
            self._record_hit(kind, entry.result, started, key)
            return CacheLookup(entry.result, kind)

        while key.key in self._inflight:
            pending = self._inflight[key.key]
            try:
                result = await asyncio.shield(pending)
            except asyncio.CancelledError:
                if pending.cancelled():
                    # Leader abandoned the call; retry as leader
                    continue
                raise
            except Exception as e:
                self._record_error(e)
                raise
            self._record_hit(HitKind.EXACT, result, started, key)
            return CacheLookup(result, HitKind.EXACT)

        return CacheLookup(await self._lead_miss(request, key, started))

    async def _lead_miss(
        self, request: GenerationRequest, key: CacheKey, started: float
    ) -> GenerationResult:
        future: asyncio.Future[GenerationResult] = asyncio.get_running_loop().create_future()
        self._inflight[key.key] = future
        try:
            result = await self._call_inner(request, started)
        except asyncio.CancelledError:
            future.cancel()
            raise
        except Exception as e:
            future.set_exception(e)
            # Mark retrieved so an unawaited future does not log
            future.exception()
            raise
        finally:
            self._inflight.pop(key.key, None)

        future.set_result(result)
        await self._store_result(key, result)
        return result

    async def _call_inner(self, request: GenerationRequest, started: float) -> GenerationResult:
        self._misses += 1
        try:
            result = await self._inner.generate(request)
        except Exception as e:
            self._record_error(e)
            raise

        duration = self._clock() - started
        self._generation_time += duration
        self._tokens_used += result.metadata.tokens
        if self._metrics is not None:
            self._metrics.record_request(duration, result.metadata.tokens, cached=False)
        logger.debug("Cache miss served by provider", tokens=result.metadata.tokens)
        return result

    def _record_hit(
        self, kind: HitKind, result: GenerationResult, started: float, key: CacheKey
    ) -> None:
        if kind == HitKind.EXACT:
            self._exact_hits += 1
        elif kind == HitKind.DURABLE:
            self._durable_hits += 1
        else:
            self._approximate_hits += 1
        self._tokens_saved += result.metadata.tokens

        if self._metrics is not None:
            duration = self._clock() - started
            self._metrics.record_request(duration, result.metadata.tokens, cached=True)
            self._metrics.record_latency("cache", duration)
        logger.debug("Cache hit", kind=kind.value, cache_key=key.key)

    def _record_error(self, error: Exception) -> None:
        if self._metrics is not None:
            self._metrics.record_error(error, "generation")

    def _memory_hit(self, key: CacheKey, now: float) -> CacheEntry | None:
        entry = self._memory.get(key.key)
        if entry is None or entry.is_expired(now, self._config.default_ttl):
            return None
        entry.touch(now)
        self._memory.move_to_end(key.key)
        return entry

    async def _lookup(self, key: CacheKey) -> tuple[CacheEntry, HitKind] | None:
        now = self._clock()
        ttl = self._config.default_ttl

        entry = self._memory_hit(key, now)
        if entry is not None:
            return entry, HitKind.EXACT

        entry = await self._durable_get(key.key)
        if entry is not None:
            if not entry.is_expired(now, ttl):
                entry.touch(now)
                self._memory[key.key] = entry
                self._memory.move_to_end(key.key)
                self._sweep(now)
                return entry, HitKind.DURABLE
            await self._durable_remove(key.key)

        # A leader may have stored the result while the durable tier was awaited
        entry = self._memory_hit(key, now)
        if entry is not None:
            return entry, HitKind.EXACT

        if self._config.enable_similarity_search:
            candidates = [e for e in self._memory.values() if not e.is_expired(now, ttl)]
            match = self._scorer.best_match(key, candidates, self._config.similarity_threshold)
            if match is not None:
                entry, score = match
                entry.touch(now)
                self._memory.move_to_end(entry.fingerprint.key)
                logger.debug(
                    "Approximate cache match",
                    cache_key=key.key,
                    matched=entry.fingerprint.key,
                    score=round(score, 3),
                )
                return entry, HitKind.APPROXIMATE

        return None

    async def _store_result(self, key: CacheKey, result: GenerationResult) -> None:
        now = self._clock()
        entry = CacheEntry.create(result, key, now)
        self._memory[key.key] = entry
        self._memory.move_to_end(key.key)
        self._sweep(now)
        await self._durable_set(key.key, entry)

    def _sweep(self, now: float) -> int:
        """Drop expired entries, then least-recently-used ones over capacity."""
        ttl = self._config.default_ttl
        removed = 0

        expired = [k for k, e in self._memory.items() if e.is_expired(now, ttl)]
        for k in expired:
            del self._memory[k]
        self._expirations += len(expired)
        removed += len(expired)

        while len(self._memory) > self._config.max_memory_entries:
            self._memory.popitem(last=False)
            self._evictions += 1
            removed += 1

        return removed

    # Durable tier: I/O failures degrade to memory-only caching

    async def _durable_get(self, key: str) -> CacheEntry | None:
        try:
            data = await self._store.get(key)
            if data is None:
                return None
            return CacheEntry.from_bytes(data)
        except (OSError, ValueError) as e:
            logger.warning("Durable cache read failed", cache_key=key, error=str(e))
            return None

    async def _durable_set(self, key: str, entry: CacheEntry) -> None:
        try:
            await self._store.set(key, entry.to_bytes())
            index = await self._load_durable_index()
            index.pop(key, None)
            index[key] = None
            while len(index) > self._config.max_storage_entries:
                oldest, _ = index.popitem(last=False)
                await self._store.remove(oldest)
        except (OSError, ValueError) as e:
            logger.warning("Durable cache write failed", cache_key=key, error=str(e))

    async def _durable_remove(self, key: str) -> None:
        try:
            await self._store.remove(key)
            if self._durable_index is not None:
                self._durable_index.pop(key, None)
        except (OSError, ValueError) as e:
            logger.warning("Durable cache remove failed", cache_key=key, error=str(e))

    async def _load_durable_index(self) -> OrderedDict[str, None]:
        if self._durable_index is None:
            keys = await self._store.keys(KEY_PREFIX)
            self._durable_index = OrderedDict.fromkeys(keys)
        return self._durable_index

    def get_cache_stats(self) -> CacheStats:
        """Get cache statistics.

        Returns:
            CacheStats snapshot
        """
        return CacheStats(
            total_requests=self._total_requests,
            exact_hits=self._exact_hits,
            approximate_hits=self._approximate_hits,
            durable_hits=self._durable_hits,
            misses=self._misses,
            cache_size=len(self._memory),
            evictions=self._evictions,
            expirations=self._expirations,
            tokens_used=self._tokens_used,
            tokens_saved=self._tokens_saved,
            average_generation_time=(
                self._generation_time / self._misses if self._misses else 0.0
            ),
        )

    async def clear_cache(self) -> None:
        """Drop both tiers; statistics are kept."""
        self._memory.clear()
        try:
            for key in await self._store.keys(KEY_PREFIX):
                await self._store.remove(key)
        except (OSError, ValueError) as e:
            logger.warning("Durable cache clear failed", error=str(e))
        self._durable_index = None
        logger.info("Cache cleared")

    def refresh_cache(self) -> int:
        """Run the TTL and capacity sweep now.

        Returns:
            Number of entries removed
        """
        removed = self._sweep(self._clock())
        if removed:
            logger.info("Cache refreshed", removed=removed, size=len(self._memory))
        return removed

    async def is_available(self) -> bool:
        return await self._inner.is_available()

    async def get_usage_stats(self) -> UsageStats:
        stats = await self._inner.get_usage_stats()
        return stats.with_section("cache", self.get_cache_stats().to_dict())

    def validate_content(self, content: str) -> ValidationResult:
        return self._inner.validate_content(content)

    async def close(self) -> None:
        await self._store.close()
        await self._inner.close()
