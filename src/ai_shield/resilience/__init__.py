"""
Resilience layer - failure circuit and admission limiter.

- FailureCircuit: Closed/Open/Half-Open state machine over a sliding
  failure window
- AdmissionLimiter: Fixed-window quotas per (policy, identifier) with
  burst allowance and retry hints
"""

from ai_shield.resilience.circuit_breaker import (
    CircuitBreakerConfig,
    CircuitState,
    CircuitStats,
    FailureCircuit,
)
from ai_shield.resilience.rate_limiter import (
    DEFAULT_POLICIES,
    AdmissionLimiter,
    OperationResult,
    RateLimitConfig,
    RateLimitPolicy,
    RateLimitStats,
    RateLimitStatus,
    RateLimitWindow,
    RetryOptions,
    load_policy_table,
)

__all__ = [
    # Admission limiter
    "DEFAULT_POLICIES",
    "AdmissionLimiter",
    # Failure circuit
    "CircuitBreakerConfig",
    "CircuitState",
    "CircuitStats",
    "FailureCircuit",
    "OperationResult",
    "RateLimitConfig",
    "RateLimitPolicy",
    "RateLimitStats",
    "RateLimitStatus",
    "RateLimitWindow",
    "RetryOptions",
    "load_policy_table",
]
