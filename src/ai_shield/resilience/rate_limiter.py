"""
Admission limiter using fixed windows per (policy, identifier).

Each key keeps a counter and a window reset time. Calls are admitted while
the counter is below ``max_requests + burst_allowance``; rejections are
returned as a structured status carrying a retry hint instead of raising.
"""

from __future__ import annotations

import asyncio
import json
import math
import time
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import TYPE_CHECKING, Any, Generic, TypeVar

import yaml

from ai_shield.errors import ConfigurationError, RateLimitExceeded
from ai_shield.telemetry.logger import get_logger

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable, Mapping

    from ai_shield.telemetry.metrics import MetricsRecorder

T = TypeVar("T")

# Seconds between sweeps of expired windows
SWEEP_INTERVAL = 60.0

logger = get_logger("ai_shield.limiter")


@dataclass(frozen=True)
class RateLimitConfig:
    """Configuration for one admission policy.

    Attributes:
        max_requests: Requests admitted per window
        window_seconds: Window length in seconds
        burst_allowance: Extra requests admitted on top of ``max_requests``
        skip_successful: Cache-served successes give their slot back
    """

    max_requests: int
    window_seconds: float
    burst_allowance: int = 0
    skip_successful: bool = False

    def __post_init__(self) -> None:
        if self.max_requests < 0 or self.burst_allowance < 0:
            raise ConfigurationError(
                "max_requests and burst_allowance must not be negative",
                setting="max_requests",
            )
        if self.window_seconds <= 0:
            raise ConfigurationError(
                "window_seconds must be positive", setting="window_seconds"
            )

    @property
    def effective_limit(self) -> int:
        return self.max_requests + self.burst_allowance

    @classmethod
    def per_minute(cls, max_requests: int, burst_allowance: int = 0) -> RateLimitConfig:
        return cls(max_requests=max_requests, window_seconds=60.0, burst_allowance=burst_allowance)

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> RateLimitConfig:
        """Create config from a policy-table entry.

        Accepts ``window_seconds`` or ``window_ms``.
        """
        try:
            if "window_seconds" in data:
                window = float(data["window_seconds"])
            else:
                window = float(data["window_ms"]) / 1000
            return cls(
                max_requests=int(data["max_requests"]),
                window_seconds=window,
                burst_allowance=int(data.get("burst_allowance", 0)),
                skip_successful=bool(data.get("skip_successful", False)),
            )
        except (KeyError, TypeError, ValueError) as e:
            raise ConfigurationError(f"Invalid rate limit policy entry: {e}") from e


class RateLimitPolicy(str, Enum):
    """Named admission policies."""

    OPENAI_API = "openai_api"
    CONTENT_GENERATION = "content_generation"
    TAG_SUGGESTIONS = "tag_suggestions"
    ARCHIVE_ACCESS = "archive_access"


DEFAULT_POLICIES: dict[str, RateLimitConfig] = {
    RateLimitPolicy.OPENAI_API.value: RateLimitConfig.per_minute(20, burst_allowance=5),
    RateLimitPolicy.CONTENT_GENERATION.value: RateLimitConfig.per_minute(10, burst_allowance=2),
    RateLimitPolicy.TAG_SUGGESTIONS.value: RateLimitConfig(
        max_requests=50, window_seconds=60.0, skip_successful=True
    ),
    RateLimitPolicy.ARCHIVE_ACCESS.value: RateLimitConfig.per_minute(100, burst_allowance=10),
}


def _policy_name(policy: RateLimitPolicy | str) -> str:
    return policy.value if isinstance(policy, RateLimitPolicy) else str(policy)


@dataclass
class RateLimitWindow:
    """Counter state for one (policy, identifier) key."""

    count: int
    reset_at: float
    config: RateLimitConfig


@dataclass(frozen=True)
class RateLimitStatus:
    """Admission decision.

    Attributes:
        allowed: Whether the call was admitted
        limit: Effective limit of the window
        remaining: Calls left in the window
        reset_at: Clock time at which the window resets
        retry_after: Whole seconds to wait (only set on rejection)
        key: Limiter key the decision applies to
        policy: Policy name (the key itself for custom limits)
        identifier: Caller identifier
    """

    allowed: bool
    limit: int
    remaining: int
    reset_at: float
    retry_after: int | None = None
    key: str = ""
    policy: str = ""
    identifier: str = "default"

    def to_error(self) -> RateLimitExceeded:
        """Build the error a raising caller would throw for this status."""
        return RateLimitExceeded(
            policy=self.policy or self.key,
            retry_after=self.retry_after or 0,
            identifier=self.identifier,
        )


@dataclass
class RetryOptions:
    """Admission retry settings for ``with_rate_limit``.

    Attributes:
        max_retries: Admission retries after the first rejection
        base_delay: Base backoff delay in seconds
    """

    max_retries: int = 3
    base_delay: float = 1.0

    def delay_for(self, attempt: int, retry_after: int) -> float:
        """Backoff delay capped by the window's retry hint."""
        return min(float(retry_after), self.base_delay * (2**attempt))


@dataclass
class OperationResult(Generic[T]):
    """Result of a rate-limited operation.

    Attributes:
        success: Whether the operation ran and succeeded
        value: The operation's return value (if success)
        error: Failure description (if failed)
        retry_after: Seconds to wait when admission was refused
        attempts: Admission attempts made
    """

    success: bool
    value: T | None = None
    error: str | None = None
    retry_after: int | None = None
    attempts: int = 0


@dataclass(frozen=True)
class RateLimitStats:
    """Aggregate limiter statistics."""

    active_limits: int
    exceeded_limits: int
    healthy_limits: int
    blocked_requests: int
    total_policies: int


class AdmissionLimiter:
    """Fixed-window admission limiter.

    Example:
        >>> limiter = AdmissionLimiter()
        >>> status = limiter.check_limit(RateLimitPolicy.CONTENT_GENERATION, "user-1")
        >>> if not status.allowed:
        ...     print(f"retry after {status.retry_after}s")
    """

    def __init__(
        self,
        policies: Mapping[str, RateLimitConfig] | None = None,
        *,
        metrics: MetricsRecorder | None = None,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        """Initialize the limiter.

        Args:
            policies: Policy table (defaults to the built-in presets)
            metrics: Recorder for rejections and failed operations
            clock: Monotonic clock in seconds
            sleep: Async sleep used between admission retries
        """
        self._policies: dict[str, RateLimitConfig] = dict(
            DEFAULT_POLICIES if policies is None else policies
        )
        self._metrics = metrics
        self._clock = clock
        self._sleep = sleep
        self._windows: dict[str, RateLimitWindow] = {}
        self._next_sweep = 0.0

    @staticmethod
    def make_key(policy: RateLimitPolicy | str, identifier: str = "default") -> str:
        return f"{_policy_name(policy)}_{identifier}"

    def check_limit(
        self, policy: RateLimitPolicy | str, identifier: str = "default"
    ) -> RateLimitStatus:
        """Check and consume one admission for a policy.

        Unknown policies are admitted with a warning.
        """
        name = _policy_name(policy)
        config = self._policies.get(name)
        if config is None:
            logger.warning("Unknown rate limit policy, admitting", policy=name)
            return RateLimitStatus(
                allowed=True,
                limit=0,
                remaining=0,
                reset_at=self._clock(),
                key=name,
                policy=name,
                identifier=identifier,
            )
        return self._check(self.make_key(name, identifier), config, name, identifier)

    def _sweep(self, now: float) -> None:
        expired = [k for k, w in self._windows.items() if now > w.reset_at]
        for k in expired:
            del self._windows[k]
        self._next_sweep = now + SWEEP_INTERVAL
        if expired:
            logger.debug("Expired rate limit windows dropped", count=len(expired))

    def check_custom_limit(self, key: str, config: RateLimitConfig) -> RateLimitStatus:
        """Check and consume one admission for an arbitrary key."""
        return self._check(key, config, key, "default")

    def _check(
        self, key: str, config: RateLimitConfig, policy: str, identifier: str
    ) -> RateLimitStatus:
        now = self._clock()
        if now >= self._next_sweep:
            self._sweep(now)
        window = self._windows.get(key)

        if window is None or now > window.reset_at:
            window = RateLimitWindow(count=1, reset_at=now + config.window_seconds, config=config)
            self._windows[key] = window
            return RateLimitStatus(
                allowed=True,
                limit=config.effective_limit,
                remaining=max(0, config.effective_limit - 1),
                reset_at=window.reset_at,
                key=key,
                policy=policy,
                identifier=identifier,
            )

        limit = window.config.effective_limit
        if window.count >= limit:
            retry_after = max(1, math.ceil(window.reset_at - now))
            logger.warning(
                "Rate limit exceeded",
                key=key,
                count=window.count,
                limit=limit,
                retry_after=retry_after,
            )
            if self._metrics is not None:
                self._metrics.record_rate_limit(key)
            return RateLimitStatus(
                allowed=False,
                limit=limit,
                remaining=0,
                reset_at=window.reset_at,
                retry_after=retry_after,
                key=key,
                policy=policy,
                identifier=identifier,
            )

        window.count += 1
        return RateLimitStatus(
            allowed=True,
            limit=limit,
            remaining=limit - window.count,
            reset_at=window.reset_at,
            key=key,
            policy=policy,
            identifier=identifier,
        )

    def record_success(self, policy: RateLimitPolicy | str, identifier: str = "default") -> None:
        """Give back the slot of a success that did not consume provider quota.

        Only applies to ``skip_successful`` policies.
        """
        config = self._policies.get(_policy_name(policy))
        if config is None or not config.skip_successful:
            return

        key = self.make_key(policy, identifier)
        window = self._windows.get(key)
        if window is not None and window.count > 0:
            window.count -= 1
            logger.debug("Successful request recorded", key=key, count=window.count)

    async def with_rate_limit(
        self,
        policy: RateLimitPolicy | str,
        operation: Callable[[], Awaitable[T]],
        identifier: str = "default",
        retry_options: RetryOptions | None = None,
    ) -> OperationResult[T]:
        """Run an operation once admitted, retrying admission with backoff.

        Args:
            policy: Policy name
            operation: Async operation to execute
            identifier: Caller identifier
            retry_options: Admission retry settings

        Returns:
            OperationResult with the value, or a failure description
        """
        options = retry_options or RetryOptions()
        name = _policy_name(policy)
        status: RateLimitStatus | None = None

        for attempt in range(options.max_retries + 1):
            status = self.check_limit(name, identifier)

            if status.allowed:
                try:
                    value = await operation()
                except Exception as e:
                    if self._metrics is not None:
                        self._metrics.record_error(
                            e, self.make_key(name, identifier)
                        )
                    logger.warning(
                        "Rate limited operation failed", policy=name, error=str(e)
                    )
                    return OperationResult(
                        success=False,
                        error=f"Operation failed: {e}",
                        attempts=attempt + 1,
                    )
                self.record_success(name, identifier)
                return OperationResult(success=True, value=value, attempts=attempt + 1)

            if attempt < options.max_retries and status.retry_after:
                delay = options.delay_for(attempt, status.retry_after)
                logger.info(
                    "Rate limit hit, waiting before retry",
                    policy=name,
                    delay=delay,
                    attempt=attempt + 1,
                    max_retries=options.max_retries,
                )
                await self._sleep(delay)
                continue

            return OperationResult(
                success=False,
                error=str(status.to_error()),
                retry_after=status.retry_after,
                attempts=attempt + 1,
            )

        return OperationResult(
            success=False,
            error=f"Max retries exceeded for {name}",
            retry_after=status.retry_after if status else None,
            attempts=options.max_retries + 1,
        )

    def get_all_limits_status(self) -> dict[str, RateLimitStatus]:
        """Status of every window that has not yet reset (read-only)."""
        now = self._clock()
        statuses: dict[str, RateLimitStatus] = {}
        for key, window in self._windows.items():
            if now > window.reset_at:
                continue
            limit = window.config.effective_limit
            exceeded = window.count >= limit
            statuses[key] = RateLimitStatus(
                allowed=not exceeded,
                limit=limit,
                remaining=max(0, limit - window.count),
                reset_at=window.reset_at,
                retry_after=max(1, math.ceil(window.reset_at - now)) if exceeded else None,
                key=key,
            )
        return statuses

    def get_rate_limit_stats(self) -> RateLimitStats:
        statuses = self.get_all_limits_status()
        exceeded = sum(1 for s in statuses.values() if not s.allowed)
        blocked = sum(1 for s in statuses.values() if s.retry_after)
        return RateLimitStats(
            active_limits=len(statuses),
            exceeded_limits=exceeded,
            healthy_limits=len(statuses) - exceeded,
            blocked_requests=blocked,
            total_policies=len(self._policies),
        )

    def any_exceeded(self) -> bool:
        """Whether any live window is currently exhausted."""
        return any(not s.allowed for s in self.get_all_limits_status().values())

    @property
    def window_count(self) -> int:
        """Windows currently held, including expired ones not yet swept."""
        return len(self._windows)

    @property
    def active_windows(self) -> int:
        return len(self.get_all_limits_status())

    def update_policy(self, policy: RateLimitPolicy | str, config: RateLimitConfig) -> None:
        """Replace or add a policy; live windows keep the config they started with."""
        name = _policy_name(policy)
        self._policies[name] = config
        logger.info(
            "Rate limit policy updated",
            policy=name,
            max_requests=config.max_requests,
            window_seconds=config.window_seconds,
            burst_allowance=config.burst_allowance,
        )

    def get_policy_config(self, policy: RateLimitPolicy | str) -> RateLimitConfig | None:
        return self._policies.get(_policy_name(policy))

    @property
    def policies(self) -> dict[str, RateLimitConfig]:
        return dict(self._policies)

    def clear_all_limits(self) -> None:
        """Drop every window (emergency reset)."""
        self._windows.clear()
        logger.warning("All rate limit windows cleared")

    def reset(self) -> None:
        self._windows.clear()
        logger.info("Admission limiter reset")

    def log_stats(self) -> None:
        stats = self.get_rate_limit_stats()
        logger.info(
            "Rate limiting stats",
            active=stats.active_limits,
            healthy=stats.healthy_limits,
            exceeded=stats.exceeded_limits,
            blocked=stats.blocked_requests,
            policies=stats.total_policies,
        )
        if stats.exceeded_limits > 0:
            logger.warning("Some rate limits are exceeded; check load balancing")


def load_policy_table(
    path: str | Path, *, merge_defaults: bool = True
) -> dict[str, RateLimitConfig]:
    """Load a policy table from a YAML or JSON file.

    The file maps policy names to entries with ``max_requests``,
    ``window_seconds`` (or ``window_ms``), ``burst_allowance`` and
    ``skip_successful``. An optional top-level ``policies`` key is accepted.

    Args:
        path: File path (``.json`` parsed as JSON, anything else as YAML)
        merge_defaults: Start from the built-in presets

    Raises:
        ConfigurationError: If the file is missing or malformed
    """
    path = Path(path)
    try:
        content = path.read_text(encoding="utf-8")
        data = json.loads(content) if path.suffix == ".json" else yaml.safe_load(content)
    except (OSError, ValueError, yaml.YAMLError) as e:
        raise ConfigurationError(
            f"Cannot load rate limit policies from {path}: {e}", setting="policy_file"
        ) from e

    if isinstance(data, dict) and isinstance(data.get("policies"), dict):
        data = data["policies"]
    if not isinstance(data, dict):
        raise ConfigurationError(
            f"Rate limit policy file {path} must contain a mapping", setting="policy_file"
        )

    table = dict(DEFAULT_POLICIES) if merge_defaults else {}
    for name, entry in data.items():
        if not isinstance(entry, dict):
            raise ConfigurationError(
                f"Policy {name!r} must be a mapping", setting="policy_file"
            )
        table[str(name)] = RateLimitConfig.from_dict(entry)
    return table

