"""
Health aggregation for the generation chain.

A pure read/derive component: every snapshot is recomputed from the
counters the layers record into the MetricsRecorder, the circuit state and
the limiter windows. Nothing is stored between snapshots.
"""

from __future__ import annotations

import sys
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING, Any

from ai_shield._features import HAS_RESOURCE
from ai_shield.telemetry.logger import get_logger

if TYPE_CHECKING:
    from collections.abc import Callable

    from ai_shield.resilience.circuit_breaker import FailureCircuit
    from ai_shield.resilience.rate_limiter import AdmissionLimiter
    from ai_shield.telemetry.metrics import Alert, MetricsRecorder

logger = get_logger("ai_shield.health")


class HealthStatus(str, Enum):
    """Health status levels."""

    HEALTHY = "healthy"
    DEGRADED = "degraded"
    CRITICAL = "critical"


@dataclass(frozen=True)
class HealthThresholds:
    """Thresholds for health status derivation.

    Attributes:
        critical_error_rate: Error rate above which status is critical
        degraded_error_rate: Error rate above which status is degraded
        max_average_response_time: Mean request duration ceiling in seconds
        max_memory_mb: Process memory ceiling in megabytes
        token_unit_price: Price per 1000 tokens used for the cost estimate
        token_quota: Token budget used for the remaining-quota figure
    """

    critical_error_rate: float = 0.2
    degraded_error_rate: float = 0.1
    max_average_response_time: float = 5.0
    max_memory_mb: float = 512.0
    token_unit_price: float = 0.002
    token_quota: int = 1_000_000


def default_memory_probe() -> float:
    """Peak resident memory of this process in MB (0 where unsupported)."""
    if not HAS_RESOURCE:
        return 0.0
    import resource

    peak = resource.getrusage(resource.RUSAGE_SELF).ru_maxrss
    # ru_maxrss is bytes on macOS and kilobytes elsewhere
    if sys.platform == "darwin":
        return peak / (1024 * 1024)
    return peak / 1024


@dataclass(frozen=True)
class HealthSnapshot:
    """Point-in-time health report."""

    status: HealthStatus
    performance: dict[str, Any]
    system: dict[str, Any]
    api_usage: dict[str, Any]
    issues: tuple[str, ...] = ()
    timestamp: float = field(default_factory=time.time)

    @property
    def is_healthy(self) -> bool:
        return self.status == HealthStatus.HEALTHY

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        return {
            "status": self.status.value,
            "performance": dict(self.performance),
            "system": dict(self.system),
            "api_usage": dict(self.api_usage),
            "issues": list(self.issues),
            "timestamp": self.timestamp,
        }


class HealthAggregator:
    """Derives a health report from the layers' recorded counters.

    Example:
        >>> health = HealthAggregator(metrics, circuit=circuit, limiter=limiter)
        >>> snapshot = health.snapshot()
        >>> print(snapshot.status, snapshot.issues)
    """

    def __init__(
        self,
        metrics: MetricsRecorder,
        *,
        circuit: FailureCircuit | None = None,
        limiter: AdmissionLimiter | None = None,
        thresholds: HealthThresholds | None = None,
        memory_probe: Callable[[], float] = default_memory_probe,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        """Initialize the aggregator.

        Args:
            metrics: Recorder the layers report into
            circuit: Failure circuit whose state is reported
            limiter: Admission limiter whose windows are reported
            thresholds: Status thresholds
            memory_probe: Returns process memory in MB
            clock: Monotonic clock in seconds, used for uptime
        """
        self._metrics = metrics
        self._circuit = circuit
        self._limiter = limiter
        self._thresholds = thresholds or HealthThresholds()
        self._memory_probe = memory_probe
        self._clock = clock
        self._started_at = clock()

    @property
    def thresholds(self) -> HealthThresholds:
        return self._thresholds

    def snapshot(self) -> HealthSnapshot:
        """Compute the current health report."""
        t = self._thresholds
        metrics = self._metrics.get_snapshot()
        memory_mb = self._memory_probe()
        circuit_state = self._circuit.state.value if self._circuit is not None else None
        limits_exceeded = self._limiter.any_exceeded() if self._limiter is not None else False

        performance = {
            "total_requests": metrics.total_requests,
            "cache_hit_rate": metrics.cache_hit_rate,
            "average_response_time": metrics.average_response_time,
            "p90_response_time_ms": metrics.latency_p90_ms,
            "cache_response_time": metrics.layer_average("cache"),
            "provider_response_time": metrics.layer_average("circuit"),
            "error_rate": metrics.error_rate,
            "tokens_used": metrics.tokens_used,
            "tokens_saved": metrics.tokens_saved,
        }
        system = {
            "memory_mb": round(memory_mb, 2),
            "active_limit_windows": (
                self._limiter.active_windows if self._limiter is not None else 0
            ),
            "circuit_state": circuit_state,
            "uptime_seconds": self._clock() - self._started_at,
        }
        api_usage = {
            "provider_requests": metrics.provider_requests,
            "rate_limit_hits": metrics.rate_limit_hits,
            "circuit_opens": metrics.circuit_opens,
            "quota_remaining": max(0, t.token_quota - metrics.tokens_used),
            "cost_estimate": metrics.tokens_used / 1000 * t.token_unit_price,
        }

        critical: list[str] = []
        degraded: list[str] = []

        if metrics.error_rate > t.critical_error_rate:
            critical.append(f"Critical error rate: {metrics.error_rate:.1%}")
        elif metrics.error_rate > t.degraded_error_rate:
            degraded.append(f"Elevated error rate: {metrics.error_rate:.1%}")

        if circuit_state == "open":
            critical.append("Circuit is open; provider calls are suspended")

        if metrics.average_response_time > t.max_average_response_time:
            degraded.append(
                f"Slow responses: {metrics.average_response_time:.2f}s average"
            )

        if limits_exceeded:
            degraded.append("Rate limits exceeded")
        elif self._limiter is None and metrics.rate_limit_hits > 0:
            degraded.append(f"Rate limit hits recorded: {metrics.rate_limit_hits}")

        if memory_mb > t.max_memory_mb:
            degraded.append(f"High memory usage: {memory_mb:.0f}MB")

        if critical:
            status = HealthStatus.CRITICAL
        elif degraded:
            status = HealthStatus.DEGRADED
        else:
            status = HealthStatus.HEALTHY

        return HealthSnapshot(
            status=status,
            performance=performance,
            system=system,
            api_usage=api_usage,
            issues=tuple(critical + degraded),
        )

    def recent_alerts(self, limit: int = 10) -> list[Alert]:
        """Most recent alerts, newest first."""
        return self._metrics.recent_alerts(limit)

    def log_summary(self) -> HealthSnapshot:
        """Log the current snapshot and return it."""
        snapshot = self.snapshot()
        perf = snapshot.performance
        fields = {
            "status": snapshot.status.value,
            "requests": perf["total_requests"],
            "cache_hit_rate": round(perf["cache_hit_rate"], 3),
            "error_rate": round(perf["error_rate"], 3),
            "avg_response_s": round(perf["average_response_time"], 3),
            "cost_estimate": round(snapshot.api_usage["cost_estimate"], 4),
        }
        if snapshot.status == HealthStatus.HEALTHY:
            logger.info("Health summary", **fields)
        else:
            logger.warning("Health summary", issues=list(snapshot.issues), **fields)
        return snapshot
