"""错误基类：生成链路的分层错误体系。

Base error classes for ai-shield-python.

Provides a layered error hierarchy:
- ShieldError: Base class for all library errors
- ProviderError: Remote generation call failed or returned malformed data
- GenerationTimeoutError: Provider call exceeded its deadline
- CircuitOpenError: Failure circuit refused the call
- RateLimitExceeded: Admission limiter refused the call
- ValidationError: Generated content failed post-generation checks
- ConfigurationError: Invalid configuration or policy table
"""

from __future__ import annotations

import math
from dataclasses import dataclass, field
from typing import Any


@dataclass
class ErrorContext:
    """Structured error context for diagnostics."""

    details: dict[str, Any] = field(default_factory=dict)
    """Additional details about the error"""

    source: str | None = None
    """Error source (e.g., 'provider', 'circuit', 'limiter')"""

    hint: str | None = None
    """Actionable hint for resolving the error"""

    def __str__(self) -> str:
        parts = []
        if self.source:
            parts.append(f"[{self.source}]")
        if self.hint:
            parts.append(f"(hint: {self.hint})")
        return " ".join(parts)


class ShieldError(Exception):
    """Base class for all ai-shield-python errors.

    Attributes:
        message: Human-readable error message
        context: Optional structured error context
    """

    def __init__(
        self,
        message: str,
        context: ErrorContext | None = None,
    ) -> None:
        self.message = message
        self.context = context or ErrorContext()
        super().__init__(self._format_message())

    def _format_message(self) -> str:
        """Format the full error message."""
        ctx_str = str(self.context)
        if ctx_str:
            return f"{self.message} {ctx_str}"
        return self.message

    def with_hint(self, hint: str) -> ShieldError:
        """Add a hint to this error."""
        self.context.hint = hint
        return self


class ProviderError(ShieldError):
    """Error from the remote generation provider.

    Raised when:
    - The provider answers with a non-2xx status
    - The response body is not in the expected format
    - The connection fails
    """

    def __init__(
        self,
        message: str,
        context: ErrorContext | None = None,
        *,
        provider: str | None = None,
        status_code: int | None = None,
        retryable: bool = False,
        cause: Exception | None = None,
    ) -> None:
        ctx = context or ErrorContext(source="provider")
        if provider:
            ctx.details["provider"] = provider
        if status_code:
            ctx.details["status_code"] = status_code
        super().__init__(message, ctx)
        self.provider = provider
        self.status_code = status_code
        self.retryable = retryable
        self.__cause__ = cause

    @classmethod
    def from_status(
        cls, status_code: int, reason: str = "", provider: str | None = None
    ) -> ProviderError:
        """Create a ProviderError for a non-2xx HTTP status."""
        message = f"API request failed: {status_code} {reason}".rstrip()
        return cls(
            message,
            provider=provider,
            status_code=status_code,
            retryable=status_code == 429 or status_code >= 500,
        )


class GenerationTimeoutError(ShieldError, TimeoutError):
    """Provider call exceeded the request deadline.

    Also catchable as the builtin ``TimeoutError``.
    """

    def __init__(
        self,
        message: str = "Request timeout",
        context: ErrorContext | None = None,
        *,
        timeout: float | None = None,
    ) -> None:
        ctx = context or ErrorContext(source="provider")
        if timeout is not None:
            ctx.details["timeout"] = timeout
        super().__init__(message, ctx)
        self.timeout = timeout


class CircuitOpenError(ShieldError):
    """Raised when the circuit is open and the call is rejected.

    Attributes:
        retry_after: Seconds until the circuit will admit a probe call
    """

    def __init__(
        self,
        retry_after: float = 0.0,
        message: str | None = None,
    ) -> None:
        self.retry_after = max(0.0, retry_after)
        super().__init__(
            message or f"Service degraded, retry after {self.retry_after_ms} ms",
            ErrorContext(source="circuit", details={"retry_after": self.retry_after}),
        )

    @property
    def retry_after_ms(self) -> int:
        """Retry hint in whole milliseconds."""
        return math.ceil(self.retry_after * 1000)


class RateLimitExceeded(ShieldError):
    """Raised when the admission limiter refuses a call.

    The limiter itself returns a structured ``RateLimitStatus``; this error is
    produced by callers that prefer raising (``RateLimitStatus.to_error``).

    Attributes:
        policy: Policy name
        identifier: Caller identifier
        retry_after: Whole seconds until the window resets
    """

    def __init__(
        self,
        policy: str,
        retry_after: int,
        identifier: str = "default",
        message: str | None = None,
    ) -> None:
        self.policy = policy
        self.identifier = identifier
        self.retry_after = retry_after
        super().__init__(
            message
            or f"Rate limit exceeded for {policy}; try again after {retry_after} seconds",
            ErrorContext(
                source="limiter",
                details={"policy": policy, "identifier": identifier},
            ),
        )


class ValidationError(ShieldError):
    """Generated content failed post-generation checks.

    Only raised on explicit strict validation; findings are otherwise carried
    as warnings inside ``ValidationResult``.
    """

    def __init__(
        self,
        message: str,
        context: ErrorContext | None = None,
        *,
        errors: list[str] | None = None,
        warnings: list[str] | None = None,
    ) -> None:
        ctx = context or ErrorContext(source="validation")
        super().__init__(message, ctx)
        self.errors = list(errors or [])
        self.warnings = list(warnings or [])


class ConfigurationError(ShieldError):
    """Invalid configuration, missing credentials or malformed policy table."""

    def __init__(
        self,
        message: str,
        context: ErrorContext | None = None,
        *,
        setting: str | None = None,
    ) -> None:
        ctx = context or ErrorContext(source="config")
        if setting:
            ctx.details["setting"] = setting
        super().__init__(message, ctx)
        self.setting = setting
