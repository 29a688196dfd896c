"""
Client layer - generation interface, provider clients and content checks.
"""

from ai_shield.client.base import GenerationClient
from ai_shield.client.provider import (
    AnthropicClient,
    OpenRouterClient,
    ProviderClient,
)
from ai_shield.client.validation import ContentValidator

__all__ = [
    "AnthropicClient",
    "ContentValidator",
    "GenerationClient",
    "OpenRouterClient",
    "ProviderClient",
]
