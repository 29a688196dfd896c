"""
Composition of the generation chain.

A Shield is the explicit context object a process constructs once and
passes to its call sites: admission limiter -> result cache -> failure
circuit -> provider client, with a shared metrics recorder and a health
aggregator reading from it.
"""

from __future__ import annotations

import time
import uuid
from dataclasses import dataclass
from pathlib import Path
from typing import TYPE_CHECKING, Any

from ai_shield.cache import CacheConfig, DiskStore, DurableStore, ResultCache
from ai_shield.client import ProviderClient
from ai_shield.errors import CircuitOpenError, ShieldError
from ai_shield.resilience import (
    AdmissionLimiter,
    CircuitBreakerConfig,
    FailureCircuit,
    RateLimitConfig,
    RateLimitPolicy,
    RateLimitStatus,
    load_policy_table,
)
from ai_shield.telemetry import (
    HealthAggregator,
    HealthSnapshot,
    HealthThresholds,
    LogContext,
    MetricsRecorder,
    get_log_context,
    get_logger,
    set_log_context,
)

if TYPE_CHECKING:
    from collections.abc import Callable, Mapping

    from ai_shield.client import GenerationClient
    from ai_shield.config import ShieldSettings
    from ai_shield.types import (
        GenerationRequest,
        GenerationResult,
        UsageStats,
        ValidationResult,
    )

logger = get_logger("ai_shield.shield")


@dataclass(frozen=True)
class GenerationOutcome:
    """Result of a shielded generation call; failures are returned, not raised.

    Attributes:
        success: Whether a result was produced
        value: The generation result (if success)
        error: Human-readable failure message (if failed)
        retry_after: Seconds the caller should wait before retrying
        cached: Whether the result was served from cache
        exception: The underlying error, if any
    """

    success: bool
    value: GenerationResult | None = None
    error: str | None = None
    retry_after: float | None = None
    cached: bool = False
    exception: ShieldError | None = None

    @classmethod
    def ok(cls, value: GenerationResult, cached: bool = False) -> GenerationOutcome:
        return cls(success=True, value=value, cached=cached)

    @classmethod
    def rejected(cls, status: RateLimitStatus) -> GenerationOutcome:
        """Outcome for a call refused by the admission limiter."""
        error = status.to_error()
        return cls(
            success=False,
            error=str(error),
            retry_after=float(error.retry_after),
            exception=error,
        )

    @classmethod
    def failed(cls, error: ShieldError) -> GenerationOutcome:
        retry_after = error.retry_after if isinstance(error, CircuitOpenError) else None
        return cls(success=False, error=str(error), retry_after=retry_after, exception=error)

    def unwrap(self) -> GenerationResult:
        """Return the value or raise the underlying error."""
        if self.success and self.value is not None:
            return self.value
        if self.exception is not None:
            raise self.exception
        raise ShieldError(self.error or "Generation failed")


class Shield:
    """The assembled generation chain.

    Example:
        >>> shield = ShieldBuilder().with_client(client).build()
        >>> outcome = await shield.generate(
        ...     GenerationRequest.of("Summarise tonight's meteor shower", max_tokens=300),
        ...     policy=RateLimitPolicy.CONTENT_GENERATION,
        ...     identifier="channel-42",
        ... )
        >>> if not outcome.success:
        ...     print(outcome.error, outcome.retry_after)
    """

    def __init__(
        self,
        client: GenerationClient,
        circuit: FailureCircuit,
        cache: ResultCache,
        limiter: AdmissionLimiter,
        metrics: MetricsRecorder,
        health: HealthAggregator,
        *,
        default_policy: RateLimitPolicy | str = RateLimitPolicy.CONTENT_GENERATION,
    ) -> None:
        self.client = client
        self.circuit = circuit
        self.cache = cache
        self.limiter = limiter
        self.metrics = metrics
        self.health_aggregator = health
        self._default_policy = default_policy

    async def generate(
        self,
        request: GenerationRequest,
        policy: RateLimitPolicy | str | None = None,
        identifier: str = "default",
    ) -> GenerationOutcome:
        """Generate through the full chain.

        Admission rejections and errors from the cache, circuit or provider
        are returned as failed outcomes carrying the retry hint.
        """
        policy = policy or self._default_policy
        status = self.limiter.check_limit(policy, identifier)
        if not status.allowed:
            return GenerationOutcome.rejected(status)

        previous = get_log_context()
        set_log_context(
            LogContext(
                request_id=uuid.uuid4().hex[:12],
                policy=status.policy,
                identifier=identifier,
                model=request.options.model,
            )
        )
        try:
            served = await self.cache.fetch(request)
        except ShieldError as e:
            logger.warning("Generation failed", error=str(e), error_type=type(e).__name__)
            return GenerationOutcome.failed(e)
        finally:
            set_log_context(previous)

        if served.cached:
            self.limiter.record_success(policy, identifier)
        return GenerationOutcome.ok(served.result, cached=served.cached)

    async def is_available(self) -> bool:
        return await self.cache.is_available()

    async def get_usage_stats(self) -> UsageStats:
        return await self.cache.get_usage_stats()

    def validate_content(self, content: str) -> ValidationResult:
        return self.cache.validate_content(content)

    def health(self) -> HealthSnapshot:
        return self.health_aggregator.snapshot()

    async def close(self) -> None:
        await self.cache.close()

    async def __aenter__(self) -> Shield:
        return self

    async def __aexit__(self, *args: Any) -> None:
        await self.close()


class ShieldBuilder:
    """Builder for Shield instances.

    Example:
        >>> shield = (
        ...     ShieldBuilder()
        ...     .with_provider("anthropic")
        ...     .with_circuit_config(CircuitBreakerConfig.production())
        ...     .with_cache_config(CacheConfig(default_ttl=3600))
        ...     .with_store(DiskStore("/var/cache/ai-shield"))
        ...     .build()
        ... )
    """

    def __init__(self) -> None:
        """Initialize the builder."""
        self._client: GenerationClient | None = None
        self._provider: str | None = None
        self._api_key: str | None = None
        self._settings: ShieldSettings | None = None
        self._circuit_config: CircuitBreakerConfig | None = None
        self._cache_config: CacheConfig | None = None
        self._store: DurableStore | None = None
        self._policies: dict[str, RateLimitConfig] | None = None
        self._default_policy: RateLimitPolicy | str = RateLimitPolicy.CONTENT_GENERATION
        self._thresholds: HealthThresholds | None = None
        self._metrics: MetricsRecorder | None = None
        self._clock: Callable[[], float] | None = None
        self._memory_probe: Callable[[], float] | None = None

    def with_client(self, client: GenerationClient) -> ShieldBuilder:
        """Use an existing client as the leaf of the chain.

        Returns:
            Self for chaining
        """
        self._client = client
        return self

    def with_provider(self, provider: str, api_key: str | None = None) -> ShieldBuilder:
        """Build a provider client by name ("openrouter" or "anthropic").

        Returns:
            Self for chaining
        """
        self._provider = provider
        self._api_key = api_key
        return self

    def with_settings(self, settings: ShieldSettings) -> ShieldBuilder:
        """Apply environment settings (provider, cache, policies).

        Returns:
            Self for chaining
        """
        self._settings = settings
        return self

    def with_circuit_config(self, config: CircuitBreakerConfig) -> ShieldBuilder:
        self._circuit_config = config
        return self

    def with_cache_config(self, config: CacheConfig) -> ShieldBuilder:
        self._cache_config = config
        return self

    def with_store(self, store: DurableStore) -> ShieldBuilder:
        self._store = store
        return self

    def with_policies(
        self, policies: Mapping[str, RateLimitConfig] | str | Path
    ) -> ShieldBuilder:
        """Set the policy table, or a YAML/JSON file to load it from.

        Returns:
            Self for chaining
        """
        if isinstance(policies, (str, Path)):
            self._policies = load_policy_table(policies)
        else:
            self._policies = dict(policies)
        return self

    def with_default_policy(self, policy: RateLimitPolicy | str) -> ShieldBuilder:
        self._default_policy = policy
        return self

    def with_thresholds(self, thresholds: HealthThresholds) -> ShieldBuilder:
        self._thresholds = thresholds
        return self

    def with_metrics(self, metrics: MetricsRecorder) -> ShieldBuilder:
        self._metrics = metrics
        return self

    def with_clock(self, clock: Callable[[], float]) -> ShieldBuilder:
        """Use one clock for every layer (tests).

        Returns:
            Self for chaining
        """
        self._clock = clock
        return self

    def with_memory_probe(self, probe: Callable[[], float]) -> ShieldBuilder:
        self._memory_probe = probe
        return self

    def _build_client(self) -> GenerationClient:
        if self._client is not None:
            return self._client
        settings = self._settings
        provider = self._provider or (settings.provider if settings else "openrouter")
        return ProviderClient.create(
            provider,
            self._api_key,
            base_url=settings.base_url if settings else None,
            model=settings.model if settings else None,
        )

    def _resolve_cache_config(self) -> CacheConfig:
        if self._cache_config is not None:
            return self._cache_config
        if self._settings is not None:
            return CacheConfig(
                default_ttl=self._settings.cache_ttl,
                max_memory_entries=self._settings.cache_max_entries,
            )
        return CacheConfig()

    def _resolve_store(self) -> DurableStore | None:
        if self._store is not None:
            return self._store
        if self._settings is not None and self._settings.cache_dir:
            return DiskStore(self._settings.cache_dir)
        return None

    def _resolve_policies(self) -> dict[str, RateLimitConfig] | None:
        if self._policies is not None:
            return self._policies
        if self._settings is not None and self._settings.policy_file:
            return load_policy_table(self._settings.policy_file)
        return None

    def build(self) -> Shield:
        """Build the Shield.

        Raises:
            ConfigurationError: If the client cannot be created
        """
        clock: dict[str, Any] = {"clock": self._clock} if self._clock else {}
        metrics = self._metrics or MetricsRecorder()
        client = self._build_client()

        circuit = FailureCircuit(
            client, self._circuit_config or CircuitBreakerConfig(), metrics=metrics, **clock
        )
        cache = ResultCache(
            circuit,
            self._resolve_cache_config(),
            store=self._resolve_store(),
            metrics=metrics,
            clock=self._clock or time.time,
        )
        limiter = AdmissionLimiter(self._resolve_policies(), metrics=metrics, **clock)

        health_kwargs: dict[str, Any] = dict(clock)
        if self._memory_probe is not None:
            health_kwargs["memory_probe"] = self._memory_probe
        health = HealthAggregator(
            metrics,
            circuit=circuit,
            limiter=limiter,
            thresholds=self._thresholds,
            **health_kwargs,
        )

        logger.info(
            "Shield assembled",
            client=type(client).__name__,
            policies=len(limiter.policies),
            cache_ttl=cache.config.default_ttl,
        )
        return Shield(
            client,
            circuit,
            cache,
            limiter,
            metrics,
            health,
            default_policy=self._default_policy,
        )
