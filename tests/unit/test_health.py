"""Tests for health aggregation."""

import pytest

from ai_shield.resilience import AdmissionLimiter, FailureCircuit, RateLimitConfig
from ai_shield.telemetry import (
    HealthAggregator,
    HealthStatus,
    HealthThresholds,
    MetricsRecorder,
    default_memory_probe,
)


def low_memory() -> float:
    return 64.0


class TestHealthAggregator:
    """Tests for status derivation."""

    def test_healthy_when_idle(self, clock) -> None:
        health = HealthAggregator(MetricsRecorder(), memory_probe=low_memory, clock=clock)
        snapshot = health.snapshot()
        assert snapshot.status == HealthStatus.HEALTHY
        assert snapshot.is_healthy
        assert snapshot.issues == ()

    def test_degraded_error_rate(self, clock) -> None:
        metrics = MetricsRecorder()
        for _ in range(17):
            metrics.record_request(0.1, 10)
        for _ in range(3):
            metrics.record_error(RuntimeError("boom"), "generation")

        snapshot = HealthAggregator(metrics, memory_probe=low_memory, clock=clock).snapshot()
        assert snapshot.status == HealthStatus.DEGRADED
        assert snapshot.performance["error_rate"] == pytest.approx(0.15)

    def test_critical_error_rate(self, clock) -> None:
        metrics = MetricsRecorder()
        metrics.record_request(0.1, 10)
        metrics.record_error(RuntimeError("boom"), "generation")

        snapshot = HealthAggregator(metrics, memory_probe=low_memory, clock=clock).snapshot()
        assert snapshot.status == HealthStatus.CRITICAL
        assert any("Critical error rate" in issue for issue in snapshot.issues)

    def test_open_circuit_is_critical(self, clock) -> None:
        circuit = FailureCircuit(clock=clock)
        circuit.force_open()
        snapshot = HealthAggregator(
            MetricsRecorder(), circuit=circuit, memory_probe=low_memory, clock=clock
        ).snapshot()
        assert snapshot.status == HealthStatus.CRITICAL
        assert snapshot.system["circuit_state"] == "open"

    def test_slow_responses_degrade(self, clock) -> None:
        metrics = MetricsRecorder()
        metrics.record_request(8.0, 10)
        snapshot = HealthAggregator(metrics, memory_probe=low_memory, clock=clock).snapshot()
        assert snapshot.status == HealthStatus.DEGRADED

    def test_exceeded_limit_degrades_until_window_resets(self, clock) -> None:
        limiter = AdmissionLimiter(
            {"p": RateLimitConfig(max_requests=1, window_seconds=60)}, clock=clock
        )
        limiter.check_limit("p")
        limiter.check_limit("p")
        health = HealthAggregator(
            MetricsRecorder(), limiter=limiter, memory_probe=low_memory, clock=clock
        )
        assert health.snapshot().status == HealthStatus.DEGRADED

        clock.advance(61)
        assert health.snapshot().status == HealthStatus.HEALTHY

    def test_rate_limit_hits_without_limiter(self, clock) -> None:
        metrics = MetricsRecorder()
        metrics.record_rate_limit("p_default")
        snapshot = HealthAggregator(metrics, memory_probe=low_memory, clock=clock).snapshot()
        assert snapshot.status == HealthStatus.DEGRADED

    def test_high_memory_degrades(self, clock) -> None:
        health = HealthAggregator(
            MetricsRecorder(),
            thresholds=HealthThresholds(max_memory_mb=100.0),
            memory_probe=lambda: 250.0,
            clock=clock,
        )
        snapshot = health.snapshot()
        assert snapshot.status == HealthStatus.DEGRADED
        assert snapshot.system["memory_mb"] == 250.0

    def test_api_usage_figures(self, clock) -> None:
        metrics = MetricsRecorder()
        metrics.record_request(0.1, 1500)
        metrics.record_request(0.1, 1500, cached=True)
        health = HealthAggregator(
            metrics,
            thresholds=HealthThresholds(token_unit_price=0.002, token_quota=10_000),
            memory_probe=low_memory,
            clock=clock,
        )
        clock.advance(30)

        snapshot = health.snapshot()
        assert snapshot.api_usage["provider_requests"] == 1
        assert snapshot.api_usage["cost_estimate"] == pytest.approx(0.003)
        assert snapshot.api_usage["quota_remaining"] == 8500
        assert snapshot.performance["tokens_saved"] == 1500
        assert snapshot.system["uptime_seconds"] == 30
        assert snapshot.to_dict()["status"] == "healthy"

    def test_layer_latency_in_performance(self, clock) -> None:
        metrics = MetricsRecorder()
        metrics.record_latency("cache", 0.01)
        metrics.record_latency("circuit", 0.4)
        metrics.record_latency("circuit", 0.6)

        performance = HealthAggregator(
            metrics, memory_probe=low_memory, clock=clock
        ).snapshot().performance
        assert performance["cache_response_time"] == pytest.approx(0.01)
        assert performance["provider_response_time"] == pytest.approx(0.5)

    def test_recent_alerts_and_summary(self, clock, log_stream) -> None:
        metrics = MetricsRecorder()
        metrics.record_rate_limit("p_default")
        health = HealthAggregator(metrics, memory_probe=low_memory, clock=clock)

        assert health.recent_alerts()[0].message == "Rate limit hit for p_default"
        snapshot = health.log_summary()
        assert snapshot.status == HealthStatus.DEGRADED
        assert "Health summary" in log_stream.getvalue()


def test_default_memory_probe_is_non_negative() -> None:
    assert default_memory_probe() >= 0.0
