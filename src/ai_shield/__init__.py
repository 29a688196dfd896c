"""AI 生成保护层：熔断、结果缓存、准入限流与健康汇总。

ai-shield-python: Resilience layer for AI content generation.

Wraps a generation provider in an admission limiter, a two-tier result
cache and a failure circuit, and reports health from the shared metrics.
"""
from __future__ import annotations

from ai_shield.cache import CacheConfig, DiskStore, ResultCache
from ai_shield.client import AnthropicClient, GenerationClient, OpenRouterClient, ProviderClient
from ai_shield.config import ShieldSettings
from ai_shield.errors import (
    CircuitOpenError,
    ConfigurationError,
    ProviderError,
    RateLimitExceeded,
    ShieldError,
)
from ai_shield.resilience import (
    AdmissionLimiter,
    CircuitBreakerConfig,
    FailureCircuit,
    RateLimitConfig,
    RateLimitPolicy,
)
from ai_shield.shield import GenerationOutcome, Shield, ShieldBuilder
from ai_shield.telemetry import HealthAggregator, HealthStatus, MetricsRecorder
from ai_shield.types import GenerationOptions, GenerationRequest, GenerationResult

__version__ = "0.3.0"

__all__ = [
    "AdmissionLimiter",
    "AnthropicClient",
    "CacheConfig",
    "CircuitBreakerConfig",
    "CircuitOpenError",
    "ConfigurationError",
    "DiskStore",
    "FailureCircuit",
    "GenerationClient",
    "GenerationOptions",
    "GenerationOutcome",
    "GenerationRequest",
    "GenerationResult",
    "HealthAggregator",
    "HealthStatus",
    "MetricsRecorder",
    "OpenRouterClient",
    "ProviderClient",
    "ProviderError",
    "RateLimitConfig",
    "RateLimitExceeded",
    "RateLimitPolicy",
    "ResultCache",
    "Shield",
    "ShieldBuilder",
    "ShieldError",
    "ShieldSettings",
    "__version__",
]
