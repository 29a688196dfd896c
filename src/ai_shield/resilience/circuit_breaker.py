"""
Failure circuit for the generation chain.

Implements the circuit breaker pattern with three states:
- Closed: Normal operation; failures are kept in a sliding time window
- Open: Circuit tripped, calls fail fast with a retry hint
- Half-Open: Probe calls decide whether the provider recovered

There is no background timer: the move from Open to Half-Open happens on
the first call after the recovery timeout.
"""

from __future__ import annotations

import asyncio
import os
import time
from collections import deque
from dataclasses import dataclass
from enum import Enum
from typing import TYPE_CHECKING, TypeVar

from ai_shield.client.base import GenerationClient
from ai_shield.client.validation import ContentValidator
from ai_shield.errors import (
    CircuitOpenError,
    ConfigurationError,
    GenerationTimeoutError,
    ProviderError,
    ShieldError,
)
from ai_shield.telemetry.logger import get_logger
from ai_shield.types import UsageStats

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable

    from ai_shield.telemetry.metrics import MetricsRecorder
    from ai_shield.types import GenerationRequest, GenerationResult, ValidationResult

T = TypeVar("T")

logger = get_logger("ai_shield.circuit")


class CircuitState(str, Enum):
    """Circuit breaker states."""

    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half_open"


@dataclass
class CircuitBreakerConfig:
    """Configuration for the failure circuit.

    Attributes:
        failure_threshold: Failures inside the window that trip the circuit
        recovery_timeout: Seconds to stay open before admitting a probe
        success_threshold: Consecutive half-open successes needed to close
        monitoring_window: Age in seconds after which a failure is forgotten
        timeout: Optional deadline applied to every wrapped call
        half_open_max_concurrent: Probe calls allowed at once in half-open
    """

    failure_threshold: int = 5
    recovery_timeout: float = 60.0
    success_threshold: int = 3
    monitoring_window: float = 300.0
    timeout: float | None = None
    half_open_max_concurrent: int = 1

    def __post_init__(self) -> None:
        if self.failure_threshold < 1:
            raise ConfigurationError(
                "failure_threshold must be at least 1", setting="failure_threshold"
            )
        if self.success_threshold < 1:
            raise ConfigurationError(
                "success_threshold must be at least 1", setting="success_threshold"
            )
        if self.recovery_timeout < 0 or self.monitoring_window <= 0:
            raise ConfigurationError(
                "recovery_timeout and monitoring_window must be positive",
                setting="recovery_timeout",
            )

    @classmethod
    def default(cls) -> CircuitBreakerConfig:
        """Create default configuration."""
        return cls()

    @classmethod
    def quick_recovery(cls) -> CircuitBreakerConfig:
        """Trip early and probe again after 30 seconds."""
        return cls(
            failure_threshold=3,
            recovery_timeout=30.0,
            success_threshold=2,
            monitoring_window=120.0,
        )

    @classmethod
    def production(cls) -> CircuitBreakerConfig:
        """Tolerant settings for production traffic."""
        return cls(
            failure_threshold=5,
            recovery_timeout=60.0,
            success_threshold=3,
            monitoring_window=300.0,
        )

    @classmethod
    def from_env(cls) -> CircuitBreakerConfig:
        """Create configuration from environment variables."""
        timeout = os.getenv("AI_SHIELD_BREAKER_TIMEOUT_SECS")
        try:
            return cls(
                failure_threshold=int(
                    os.getenv("AI_SHIELD_BREAKER_FAILURE_THRESHOLD", "5")
                ),
                recovery_timeout=float(
                    os.getenv("AI_SHIELD_BREAKER_RECOVERY_SECS", "60")
                ),
                success_threshold=int(
                    os.getenv("AI_SHIELD_BREAKER_SUCCESS_THRESHOLD", "3")
                ),
                monitoring_window=float(
                    os.getenv("AI_SHIELD_BREAKER_WINDOW_SECS", "300")
                ),
                timeout=float(timeout) if timeout else None,
            )
        except ValueError as e:
            raise ConfigurationError(
                f"Invalid circuit breaker environment setting: {e}"
            ) from e


@dataclass(frozen=True)
class CircuitStats:
    """Point-in-time statistics for the failure circuit."""

    state: CircuitState
    failure_count: int
    success_count: int
    total_requests: int
    total_failures: int
    total_successes: int
    rejected_requests: int
    state_changes: int
    last_failure_time: float | None
    last_success_time: float | None
    failure_rate: float
    """Failures as a percentage of completed calls"""
    time_until_recovery: float
    """Seconds until a probe is admitted (0 unless open)"""

    def to_dict(self) -> dict:
        return {
            "state": self.state.value,
            "failure_count": self.failure_count,
            "success_count": self.success_count,
            "total_requests": self.total_requests,
            "total_failures": self.total_failures,
            "total_successes": self.total_successes,
            "rejected_requests": self.rejected_requests,
            "failure_rate": self.failure_rate,
            "time_until_recovery": self.time_until_recovery,
        }


class FailureCircuit(GenerationClient):
    """Failure circuit wrapping a generation client.

    Stops calling a failing provider for a cooling period, then probes it
    with a limited number of calls before resuming normal traffic.

    Example:
        >>> circuit = FailureCircuit(client, CircuitBreakerConfig.production())
        >>> try:
        ...     result = await circuit.generate(request)
        ... except CircuitOpenError as e:
        ...     print(f"retry in {e.retry_after_ms} ms")
    """

    def __init__(
        self,
        inner: GenerationClient | None = None,
        config: CircuitBreakerConfig | None = None,
        *,
        metrics: MetricsRecorder | None = None,
        clock: Callable[[], float] = time.monotonic,
        name: str = "generation",
    ) -> None:
        """Initialize the circuit.

        Args:
            inner: Wrapped client (may be None when only ``execute`` is used)
            config: Circuit configuration
            metrics: Recorder for transitions and latency
            clock: Monotonic clock in seconds
            name: Circuit name used in logs
        """
        self._inner = inner
        self._config = config or CircuitBreakerConfig()
        self._metrics = metrics
        self._clock = clock
        self._name = name
        self._validator = ContentValidator()

        self._state = CircuitState.CLOSED
        self._failures: deque[float] = deque()
        self._success_count = 0
        self._opened_at: float | None = None
        self._half_open_in_flight = 0

        # Statistics
        self._total_requests = 0
        self._total_failures = 0
        self._total_successes = 0
        self._rejected_requests = 0
        self._state_changes = 0
        self._last_failure_time: float | None = None
        self._last_success_time: float | None = None

    @property
    def state(self) -> CircuitState:
        """Current state (without applying the lazy open -> half-open move)."""
        return self._state

    @property
    def config(self) -> CircuitBreakerConfig:
        return self._config

    @property
    def inner(self) -> GenerationClient | None:
        return self._inner

    @property
    def is_open(self) -> bool:
        return self._state == CircuitState.OPEN

    def _prune(self, now: float) -> None:
        cutoff = now - self._config.monitoring_window
        while self._failures and self._failures[0] <= cutoff:
            self._failures.popleft()

    def _transition_to(self, new_state: CircuitState) -> None:
        old_state = self._state
        if new_state == old_state:
            return

        self._state = new_state
        self._state_changes += 1

        if new_state == CircuitState.OPEN:
            self._opened_at = self._clock()
            self._success_count = 0
            logger.error(
                "Circuit opened",
                circuit=self._name,
                previous=old_state.value,
                failures=len(self._failures),
            )
        elif new_state == CircuitState.HALF_OPEN:
            self._success_count = 0
            logger.info("Circuit half-open, probing provider", circuit=self._name)
        else:
            self._failures.clear()
            self._success_count = 0
            self._opened_at = None
            logger.info("Circuit closed", circuit=self._name, previous=old_state.value)

        if self._metrics is not None:
            self._metrics.record_circuit_transition(old_state.value, new_state.value)

    def _time_until_recovery(self, now: float) -> float:
        if self._state != CircuitState.OPEN or self._opened_at is None:
            return 0.0
        return max(0.0, self._config.recovery_timeout - (now - self._opened_at))

    def _admit(self) -> bool:
        """Apply state rules before a call.

        Returns:
            True if the call is a half-open probe

        Raises:
            CircuitOpenError: If the call is rejected
        """
        now = self._clock()
        if self._state == CircuitState.OPEN:
            remaining = self._time_until_recovery(now)
            if remaining > 0:
                self._rejected_requests += 1
                raise CircuitOpenError(retry_after=remaining)
            self._transition_to(CircuitState.HALF_OPEN)

        if self._state == CircuitState.HALF_OPEN:
            if self._half_open_in_flight >= self._config.half_open_max_concurrent:
                self._rejected_requests += 1
                raise CircuitOpenError(retry_after=0.0)
            self._half_open_in_flight += 1
            return True

        return False

    def _record_success(self) -> None:
        self._total_successes += 1
        self._last_success_time = self._clock()

        if self._state == CircuitState.HALF_OPEN:
            self._success_count += 1
            if self._success_count >= self._config.success_threshold:
                self._transition_to(CircuitState.CLOSED)

    def _record_failure(self, error: BaseException) -> None:
        now = self._clock()
        self._total_failures += 1
        self._last_failure_time = now

        if self._state == CircuitState.HALF_OPEN:
            # Single failure in half-open trips back to open
            self._transition_to(CircuitState.OPEN)
        elif self._state == CircuitState.CLOSED:
            self._failures.append(now)
            self._prune(now)
            logger.warning(
                "Generation call failed",
                circuit=self._name,
                failures=len(self._failures),
                threshold=self._config.failure_threshold,
                error=str(error),
            )
            if len(self._failures) >= self._config.failure_threshold:
                self._transition_to(CircuitState.OPEN)

    async def execute(
        self,
        operation: Callable[[], Awaitable[T]],
        *,
        timeout: float | None = None,
    ) -> T:
        """Execute an operation through the circuit.

        Args:
            operation: Async operation to execute
            timeout: Deadline in seconds (defaults to ``config.timeout``)

        Returns:
            Operation result

        Raises:
            CircuitOpenError: If the circuit rejects the call
            GenerationTimeoutError: If the deadline elapses
        """
        self._total_requests += 1
        probe = self._admit()
        started = self._clock()

        try:
            result = await self._execute_with_timeout(operation, timeout or self._config.timeout)
        except Exception as e:
            self._record_failure(e)
            raise
        else:
            self._record_success()
            return result
        finally:
            if probe:
                self._half_open_in_flight -= 1
            if self._metrics is not None:
                self._metrics.record_latency("circuit", self._clock() - started)

    async def _execute_with_timeout(
        self, operation: Callable[[], Awaitable[T]], timeout: float | None
    ) -> T:
        if not timeout:
            return await operation()
        try:
            return await asyncio.wait_for(operation(), timeout=timeout)
        except GenerationTimeoutError:
            raise
        except asyncio.TimeoutError as e:
            raise GenerationTimeoutError(
                f"Request timeout after {timeout}s", timeout=timeout
            ) from e

    def _require_inner(self) -> GenerationClient:
        if self._inner is None:
            raise ConfigurationError(
                "FailureCircuit has no wrapped client; use execute() instead",
                setting="inner",
            )
        return self._inner

    async def generate(self, request: GenerationRequest) -> GenerationResult:
        inner = self._require_inner()
        return await self.execute(
            lambda: inner.generate(request), timeout=request.options.timeout
        )

    async def is_available(self) -> bool:
        """Probe availability through the state machine; False while open."""
        inner = self._require_inner()

        async def check() -> bool:
            if not await inner.is_available():
                raise ProviderError("Service unavailable")
            return True

        try:
            return await self.execute(check)
        except CircuitOpenError:
            return False
        except ShieldError as e:
            logger.warning("Availability check failed", circuit=self._name, error=str(e))
            return False

    def get_stats(self) -> CircuitStats:
        """Get circuit statistics.

        Returns:
            CircuitStats with current statistics
        """
        now = self._clock()
        self._prune(now)
        completed = self._total_failures + self._total_successes
        return CircuitStats(
            state=self._state,
            failure_count=len(self._failures),
            success_count=self._success_count,
            total_requests=self._total_requests,
            total_failures=self._total_failures,
            total_successes=self._total_successes,
            rejected_requests=self._rejected_requests,
            state_changes=self._state_changes,
            last_failure_time=self._last_failure_time,
            last_success_time=self._last_success_time,
            failure_rate=(self._total_failures / completed * 100) if completed else 0.0,
            time_until_recovery=self._time_until_recovery(now),
        )

    async def get_usage_stats(self) -> UsageStats:
        base = await self._inner.get_usage_stats() if self._inner else UsageStats()
        return base.with_section("circuit_breaker", self.get_stats().to_dict())

    def validate_content(self, content: str) -> ValidationResult:
        if self._inner is None:
            return self._validator.validate(content)
        return self._inner.validate_content(content)

    def force_open(self) -> None:
        """Open the circuit manually (e.g. during maintenance)."""
        self._transition_to(CircuitState.OPEN)
        self._opened_at = self._clock()

    def force_close(self) -> None:
        """Close the circuit manually and clear failure bookkeeping."""
        self._transition_to(CircuitState.CLOSED)
        self._failures.clear()
        self._success_count = 0
        self._opened_at = None

    async def close(self) -> None:
        if self._inner is not None:
            await self._inner.close()

    def __repr__(self) -> str:
        return (
            f"FailureCircuit(state={self._state.value}, "
            f"failures={len(self._failures)}/{self._config.failure_threshold})"
        )
