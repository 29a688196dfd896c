"""
Metrics collection for ai-shield-python.

The recorder is the shared sink every layer reports into: request outcomes
and latency, cache hits, provider errors, admission rejections and circuit
transitions. It also keeps a bounded ring of operator-facing alerts.
"""

from __future__ import annotations

import statistics
import threading
import time
from collections import defaultdict, deque
from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from collections.abc import Callable


class AlertLevel(str, Enum):
    """Alert severity levels."""

    WARNING = "warning"
    ERROR = "error"
    CRITICAL = "critical"


@dataclass(frozen=True)
class Alert:
    """An operator-facing event raised by one of the layers."""

    level: AlertLevel
    message: str
    timestamp: float = field(default_factory=time.time)

    def to_dict(self) -> dict[str, Any]:
        return {
            "level": self.level.value,
            "message": self.message,
            "timestamp": self.timestamp,
        }


@dataclass
class MetricSnapshot:
    """Snapshot of recorded counters.

    Attributes:
        completed_requests: Requests that returned a result (cached or not)
        failed_requests: Requests that ended with an error
        cache_hits: Requests served from cache
        cache_misses: Requests that reached the provider
        tokens_used: Tokens spent on provider calls
        tokens_saved: Tokens not re-spent thanks to cache hits
        rate_limit_hits: Admission rejections
        circuit_opens: Times the circuit transitioned to open
        latency_samples: Request durations in seconds
        layer_latency: Per-layer duration samples in seconds
    """

    completed_requests: int = 0
    failed_requests: int = 0
    cache_hits: int = 0
    cache_misses: int = 0
    tokens_used: int = 0
    tokens_saved: int = 0
    rate_limit_hits: int = 0
    circuit_opens: int = 0
    latency_samples: list[float] = field(default_factory=list)
    layer_latency: dict[str, list[float]] = field(default_factory=dict)

    @property
    def total_requests(self) -> int:
        return self.completed_requests + self.failed_requests

    @property
    def provider_requests(self) -> int:
        """Requests that consumed provider quota."""
        return self.cache_misses

    @property
    def cache_hit_rate(self) -> float:
        if self.total_requests == 0:
            return 0.0
        return self.cache_hits / self.total_requests

    @property
    def error_rate(self) -> float:
        if self.total_requests == 0:
            return 0.0
        return self.failed_requests / self.total_requests

    @property
    def average_response_time(self) -> float:
        """Mean request duration in seconds."""
        if not self.latency_samples:
            return 0.0
        return statistics.mean(self.latency_samples)

    @property
    def latency_p90_ms(self) -> float:
        if len(self.latency_samples) < 2:
            return self.average_response_time * 1000
        return statistics.quantiles(self.latency_samples, n=10)[-1] * 1000

    def layer_average(self, layer: str) -> float:
        """Mean duration in seconds for one layer."""
        samples = self.layer_latency.get(layer)
        if not samples:
            return 0.0
        return statistics.mean(samples)


class MetricsRecorder:
    """Collects counters, latency samples and alerts from the layers.

    Thread-safe; each layer holds a reference and calls the ``record_*``
    methods, the health aggregator reads ``get_snapshot`` and
    ``recent_alerts``.

    Example:
        >>> recorder = MetricsRecorder()
        >>> recorder.record_request(duration=0.8, tokens=120, cached=False)
        >>> recorder.get_snapshot().cache_misses
        1
    """

    def __init__(
        self,
        *,
        slow_request_seconds: float = 10.0,
        high_token_threshold: int = 2000,
        alert_error_rate: float = 0.1,
        max_samples: int = 1000,
        max_alerts: int = 100,
    ) -> None:
        """Initialize recorder.

        Args:
            slow_request_seconds: Duration above which a warning alert is raised
            high_token_threshold: Token count above which a warning alert is raised
            alert_error_rate: Running error rate above which a critical alert is raised
            max_samples: Latency samples kept per series
            max_alerts: Alerts kept in the ring
        """
        self._lock = threading.Lock()
        self._slow_request_seconds = slow_request_seconds
        self._high_token_threshold = high_token_threshold
        self._alert_error_rate = alert_error_rate
        self._max_samples = max_samples

        self._counters: dict[str, int] = defaultdict(int)
        self._latency: deque[float] = deque(maxlen=max_samples)
        self._layer_latency: dict[str, deque[float]] = defaultdict(
            lambda: deque(maxlen=max_samples)
        )
        self._alerts: deque[Alert] = deque(maxlen=max_alerts)

        self._callbacks: list[Callable[[str, dict[str, Any]], None]] = []

    def record_request(self, duration: float, tokens: int, cached: bool = False) -> None:
        """Record a request that produced a result.

        Args:
            duration: End-to-end duration in seconds
            tokens: Tokens of the returned result
            cached: Whether the result was served from cache
        """
        with self._lock:
            self._counters["completed"] += 1
            if cached:
                self._counters["cache_hits"] += 1
                self._counters["tokens_saved"] += tokens
            else:
                self._counters["cache_misses"] += 1
                self._counters["tokens_used"] += tokens
            self._latency.append(duration)

        self._check_thresholds(duration, tokens)
        self._notify("request", {"duration": duration, "tokens": tokens, "cached": cached})

    def record_latency(self, layer: str, duration: float) -> None:
        """Record a duration sample for one layer (e.g. ``"circuit"``)."""
        with self._lock:
            self._layer_latency[layer].append(duration)

    def record_error(self, error: BaseException, context: str) -> None:
        """Record a failed request."""
        with self._lock:
            self._counters["failed"] += 1
        self.add_alert(AlertLevel.ERROR, f"{context}: {error}")
        self._notify("error", {"context": context, "error": str(error)})

    def record_rate_limit(self, key: str) -> None:
        """Record an admission rejection for a limiter key."""
        with self._lock:
            self._counters["rate_limit_hits"] += 1
        self.add_alert(AlertLevel.WARNING, f"Rate limit hit for {key}")
        self._notify("rate_limit", {"key": key})

    def record_circuit_transition(self, old_state: str, new_state: str) -> None:
        """Record a circuit state change."""
        if new_state == "open":
            with self._lock:
                self._counters["circuit_opens"] += 1
            self.add_alert(
                AlertLevel.ERROR, f"Circuit opened (was {old_state})"
            )
        self._notify("circuit", {"from": old_state, "to": new_state})

    def add_alert(self, level: AlertLevel, message: str) -> None:
        with self._lock:
            self._alerts.append(Alert(level=level, message=message))

    def recent_alerts(self, limit: int = 10) -> list[Alert]:
        """Return up to ``limit`` alerts, newest first."""
        with self._lock:
            alerts = list(self._alerts)
        return list(reversed(alerts[-limit:])) if limit > 0 else []

    def _check_thresholds(self, duration: float, tokens: int) -> None:
        if duration > self._slow_request_seconds:
            self.add_alert(
                AlertLevel.WARNING, f"Slow generation request: {duration * 1000:.0f}ms"
            )
        if tokens > self._high_token_threshold:
            self.add_alert(AlertLevel.WARNING, f"High token consumption: {tokens}")

        with self._lock:
            failed = self._counters["failed"]
            total = self._counters["completed"] + failed
        error_rate = failed / total if total else 0.0
        if error_rate > self._alert_error_rate:
            self.add_alert(
                AlertLevel.CRITICAL, f"High error rate: {round(error_rate * 100)}%"
            )

    def get_snapshot(self) -> MetricSnapshot:
        """Get a copy of the current counters."""
        with self._lock:
            return MetricSnapshot(
                completed_requests=self._counters["completed"],
                failed_requests=self._counters["failed"],
                cache_hits=self._counters["cache_hits"],
                cache_misses=self._counters["cache_misses"],
                tokens_used=self._counters["tokens_used"],
                tokens_saved=self._counters["tokens_saved"],
                rate_limit_hits=self._counters["rate_limit_hits"],
                circuit_opens=self._counters["circuit_opens"],
                latency_samples=list(self._latency),
                layer_latency={k: list(v) for k, v in self._layer_latency.items()},
            )

    def add_callback(self, callback: Callable[[str, dict[str, Any]], None]) -> None:
        """Add a callback called with (event_type, data) on every record."""
        self._callbacks.append(callback)

    def remove_callback(self, callback: Callable[[str, dict[str, Any]], None]) -> None:
        if callback in self._callbacks:
            self._callbacks.remove(callback)

    def _notify(self, event_type: str, data: dict[str, Any]) -> None:
        for callback in self._callbacks:
            try:
                callback(event_type, data)
            except Exception:
                pass  # Don't let callback errors affect metrics

    def reset(self) -> None:
        """Reset all counters, samples and alerts."""
        with self._lock:
            self._counters.clear()
            self._latency.clear()
            self._layer_latency.clear()
            self._alerts.clear()

    def to_prometheus(self) -> str:
        """Export counters in Prometheus text format."""
        snapshot = self.get_snapshot()
        series = [
            ("aishield_requests_completed_total", "counter", "Requests that returned a result", snapshot.completed_requests),
            ("aishield_requests_failed_total", "counter", "Requests that ended with an error", snapshot.failed_requests),
            ("aishield_cache_hits_total", "counter", "Requests served from cache", snapshot.cache_hits),
            ("aishield_cache_misses_total", "counter", "Requests sent to the provider", snapshot.cache_misses),
            ("aishield_tokens_used_total", "counter", "Tokens spent on provider calls", snapshot.tokens_used),
            ("aishield_tokens_saved_total", "counter", "Tokens saved by cache hits", snapshot.tokens_saved),
            ("aishield_rate_limit_hits_total", "counter", "Admission rejections", snapshot.rate_limit_hits),
            ("aishield_circuit_opens_total", "counter", "Circuit open transitions", snapshot.circuit_opens),
            ("aishield_response_time_seconds_avg", "gauge", "Mean request duration", snapshot.average_response_time),
        ]

        lines: list[str] = []
        for name, kind, help_text, value in series:
            lines.append(f"# HELP {name} {help_text}")
            lines.append(f"# TYPE {name} {kind}")
            lines.append(f"{name} {value}")
        return "\n".join(lines)
