"""错误体系：生成保护链路的结构化错误类型。

Error hierarchy for ai-shield-python.
"""

from ai_shield.errors.base import (
    CircuitOpenError,
    ConfigurationError,
    ErrorContext,
    GenerationTimeoutError,
    ProviderError,
    RateLimitExceeded,
    ShieldError,
    ValidationError,
)

__all__ = [
    "CircuitOpenError",
    "ConfigurationError",
    "ErrorContext",
    "GenerationTimeoutError",
    "ProviderError",
    "RateLimitExceeded",
    "ShieldError",
    "ValidationError",
]
