"""
Generation request and result types.

Immutable pydantic models shared by every layer of the generation chain:
- GenerationOptions / GenerationRequest: what the caller asks for
- GenerationMetadata / ValidationResult / GenerationResult: what comes back
- UsageStats: usage counters reported by clients and wrapping layers
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from ai_shield.errors import ValidationError

DEFAULT_TIMEOUT = 30.0


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class GenerationOptions(BaseModel):
    """Options for one generation call."""

    model_config = ConfigDict(frozen=True, protected_namespaces=())

    model: str | None = Field(default=None, description="Model identifier")
    system_prompt: str | None = Field(default=None, description="System instructions")
    max_tokens: int | None = Field(default=None, ge=1, description="Max output tokens")
    temperature: float | None = Field(default=None, ge=0.0, le=2.0)
    timeout: float = Field(default=DEFAULT_TIMEOUT, gt=0, description="Deadline in seconds")

    def fingerprint_fields(self) -> dict[str, Any]:
        """Fields that change the generated output (timeout excluded)."""
        return {
            "model": self.model,
            "max_tokens": self.max_tokens,
            "temperature": self.temperature,
            "system_prompt": self.system_prompt,
        }


class GenerationRequest(BaseModel):
    """Prompt text plus generation options."""

    model_config = ConfigDict(frozen=True)

    prompt: str
    options: GenerationOptions = Field(default_factory=GenerationOptions)

    @classmethod
    def of(cls, prompt: str, **options: Any) -> GenerationRequest:
        """Create a request from a prompt and keyword options.

        Example:
            >>> GenerationRequest.of("Describe the eclipse", max_tokens=200)
        """
        return cls(prompt=prompt, options=GenerationOptions(**options))


class GenerationMetadata(BaseModel):
    """Metadata describing how a result was produced."""

    model_config = ConfigDict(frozen=True, protected_namespaces=())

    model: str
    tokens: int = Field(default=0, ge=0)
    confidence: float = Field(default=0.0, ge=0.0, le=1.0)
    timestamp: datetime = Field(default_factory=_utcnow)


class ValidationResult(BaseModel):
    """Outcome of post-generation content checks."""

    model_config = ConfigDict(frozen=True)

    is_valid: bool = True
    warnings: tuple[str, ...] = ()
    errors: tuple[str, ...] = ()

    @classmethod
    def from_findings(
        cls, warnings: list[str] | None = None, errors: list[str] | None = None
    ) -> ValidationResult:
        """Build a result; valid exactly when there are no errors."""
        errors = errors or []
        return cls(
            is_valid=not errors,
            warnings=tuple(warnings or []),
            errors=tuple(errors),
        )


class GenerationResult(BaseModel):
    """Generated text with metadata and validation outcome."""

    model_config = ConfigDict(frozen=True)

    content: str
    metadata: GenerationMetadata
    validation: ValidationResult = Field(default_factory=ValidationResult)

    @property
    def tokens(self) -> int:
        """Tokens spent producing this result."""
        return self.metadata.tokens

    def raise_for_validation(self) -> GenerationResult:
        """Raise ValidationError if validation reported errors.

        Returns:
            Self, for chaining

        Raises:
            ValidationError: If ``validation.errors`` is non-empty
        """
        if self.validation.errors:
            raise ValidationError(
                "Generated content failed validation: "
                + "; ".join(self.validation.errors),
                errors=list(self.validation.errors),
                warnings=list(self.validation.warnings),
            )
        return self


class UsageStats(BaseModel):
    """Usage counters reported through the chain.

    Wrapping layers add their own section (``cache``, ``circuit_breaker``).
    """

    model_config = ConfigDict(frozen=True)

    requests_today: int = 0
    tokens_used: int = 0
    remaining_quota: int = 0
    cache: dict[str, Any] | None = None
    circuit_breaker: dict[str, Any] | None = None

    def with_section(self, name: str, section: dict[str, Any]) -> UsageStats:
        """Return a copy with one layer section set."""
        return self.model_copy(update={name: section})
