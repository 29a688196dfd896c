"""
Generation client interface.

Every element of the chain (provider client, failure circuit, result cache)
implements this interface, so layers compose by holding a reference to the
next one and each can be tested alone.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from ai_shield.types import (
        GenerationRequest,
        GenerationResult,
        UsageStats,
        ValidationResult,
    )


class GenerationClient(ABC):
    """Abstract generation interface."""

    @abstractmethod
    async def generate(self, request: GenerationRequest) -> GenerationResult:
        """Generate text for a request.

        Raises:
            ProviderError: Remote call failed or returned malformed data
            GenerationTimeoutError: Request deadline exceeded
        """
        raise NotImplementedError

    @abstractmethod
    async def is_available(self) -> bool:
        """Check whether the provider can currently serve requests."""
        raise NotImplementedError

    @abstractmethod
    async def get_usage_stats(self) -> UsageStats:
        """Get usage counters."""
        raise NotImplementedError

    @abstractmethod
    def validate_content(self, content: str) -> ValidationResult:
        """Run post-generation checks on content."""
        raise NotImplementedError

    async def close(self) -> None:
        """Release resources held by the client."""
        pass
