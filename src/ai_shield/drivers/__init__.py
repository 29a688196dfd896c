"""Provider 驱动抽象层：把统一的生成请求转换为各厂商的 HTTP 格式。

Provider driver abstraction layer.

A driver translates a GenerationRequest into a provider-specific HTTP
request and parses the provider's response back. Drivers are pure: they do
no I/O, so they are tested without a network.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

from ai_shield.errors import ConfigurationError

if TYPE_CHECKING:
    from ai_shield.types import GenerationRequest

DEFAULT_SYSTEM_PROMPT = (
    "You are an expert writer for an astronomy and crypto-markets channel. "
    "Write accurate, informative content grounded in verifiable facts. "
    "Keep the text concise with practical takeaways. "
    "Never give financial advice; provide educational information only."
)


@dataclass
class DriverRequest:
    """Unified HTTP request representation for provider communication."""

    path: str = ""
    method: str = "POST"
    headers: dict[str, str] = field(default_factory=dict)
    body: dict[str, Any] = field(default_factory=dict)


@dataclass
class DriverResponse:
    """Unified generation response from provider."""

    content: str
    model: str
    total_tokens: int = 0
    finish_reason: str | None = None
    raw: dict[str, Any] = field(default_factory=dict)

    @property
    def confidence(self) -> float:
        """Heuristic confidence: complete answers score higher than truncated ones."""
        return 0.9 if self.finish_reason == "stop" else 0.7


class ProviderDriver(ABC):
    """Core abstract class for provider-specific API adaptation."""

    default_model: str = ""
    default_max_tokens: int = 1000
    default_temperature: float = 0.7

    @property
    @abstractmethod
    def provider_id(self) -> str:
        """Unique provider identifier."""

    @property
    @abstractmethod
    def base_url(self) -> str:
        """Default API base URL."""

    @abstractmethod
    def auth_headers(self, api_key: str) -> dict[str, str]:
        """Headers carrying the API key."""

    @abstractmethod
    def build_request(self, request: GenerationRequest) -> DriverRequest:
        """Build a provider-specific HTTP request."""

    @abstractmethod
    def parse_response(self, body: dict[str, Any], request: GenerationRequest) -> DriverResponse:
        """Parse a response body.

        Raises:
            ProviderError: If the body is not in the expected format
        """

    def availability_request(self) -> DriverRequest:
        """Cheap request used to probe availability."""
        return DriverRequest(path="/models", method="GET")

    def resolve_model(self, request: GenerationRequest) -> str:
        return request.options.model or self.default_model

    def resolve_system_prompt(self, request: GenerationRequest) -> str:
        return request.options.system_prompt or DEFAULT_SYSTEM_PROMPT


def create_driver(provider_id: str) -> ProviderDriver:
    """Create the driver for a provider.

    Raises:
        ConfigurationError: If the provider is unknown
    """
    from ai_shield.drivers.anthropic import AnthropicDriver
    from ai_shield.drivers.openrouter import OpenRouterDriver

    drivers: dict[str, type[ProviderDriver]] = {
        "openrouter": OpenRouterDriver,
        "anthropic": AnthropicDriver,
    }
    driver_cls = drivers.get(provider_id.lower())
    if driver_cls is None:
        raise ConfigurationError(
            f"Unknown provider: {provider_id}. Available: {', '.join(sorted(drivers))}",
            setting="provider",
        )
    return driver_cls()


__all__ = [
    "DEFAULT_SYSTEM_PROMPT",
    "DriverRequest",
    "DriverResponse",
    "ProviderDriver",
    "create_driver",
]
