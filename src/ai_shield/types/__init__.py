"""
Type definitions for ai-shield-python.
"""

from ai_shield.types.generation import (
    DEFAULT_TIMEOUT,
    GenerationMetadata,
    GenerationOptions,
    GenerationRequest,
    GenerationResult,
    UsageStats,
    ValidationResult,
)

__all__ = [
    "DEFAULT_TIMEOUT",
    "GenerationMetadata",
    "GenerationOptions",
    "GenerationRequest",
    "GenerationResult",
    "UsageStats",
    "ValidationResult",
]
