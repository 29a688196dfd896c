"""
Provider clients - the leaf of the generation chain.

Makes exactly one remote call per ``generate`` (no retries; retry policy
belongs to the wrapping layers) and keeps per-instance usage counters.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from ai_shield.client.base import GenerationClient
from ai_shield.client.validation import ContentValidator
from ai_shield.drivers import ProviderDriver, create_driver
from ai_shield.drivers.anthropic import AnthropicDriver
from ai_shield.drivers.openrouter import OpenRouterDriver
from ai_shield.errors import ProviderError, ShieldError
from ai_shield.telemetry.logger import get_logger
from ai_shield.transport import HttpTransport, require_api_key
from ai_shield.types import (
    GenerationMetadata,
    GenerationRequest,
    GenerationResult,
    UsageStats,
    ValidationResult,
)

if TYPE_CHECKING:
    import httpx

logger = get_logger("ai_shield.client")

DEFAULT_QUOTA = 10000


class ProviderClient(GenerationClient):
    """Generation client for one provider, driven by a ProviderDriver.

    Example:
        >>> client = ProviderClient.create("openrouter", api_key="sk-...")
        >>> result = await client.generate(GenerationRequest.of("Describe the eclipse"))
    """

    def __init__(
        self,
        driver: ProviderDriver,
        api_key: str | None = None,
        *,
        base_url: str | None = None,
        model: str | None = None,
        quota: int = DEFAULT_QUOTA,
        validator: ContentValidator | None = None,
        http_client: httpx.AsyncClient | None = None,
    ) -> None:
        """Initialize the client.

        Args:
            driver: Provider driver
            api_key: Explicit API key (falls back to env/keyring)
            base_url: Override the driver's base URL
            model: Default model when a request names none
            quota: Daily request quota reported in usage stats
            validator: Content validator
            http_client: Preconfigured httpx client (owned by the caller)

        Raises:
            ConfigurationError: If no API key can be resolved
        """
        self._driver = driver
        if model:
            driver.default_model = model
        key = require_api_key(driver.provider_id, api_key)
        self._transport = HttpTransport(
            driver.provider_id,
            base_url or driver.base_url,
            driver.auth_headers(key),
            client=http_client,
        )
        self._validator = validator or ContentValidator()
        self._quota = quota
        self._requests_today = 0
        self._tokens_used = 0

    @classmethod
    def create(cls, provider: str, api_key: str | None = None, **kwargs) -> ProviderClient:
        """Create a client by provider name ("openrouter" or "anthropic")."""
        return cls(create_driver(provider), api_key, **kwargs)

    @property
    def provider_id(self) -> str:
        return self._driver.provider_id

    @property
    def driver(self) -> ProviderDriver:
        return self._driver

    async def generate(self, request: GenerationRequest) -> GenerationResult:
        driver_request = self._driver.build_request(request)
        logger.debug(
            "Sending generation request",
            provider=self.provider_id,
            model=driver_request.body.get("model"),
        )

        response = await self._transport.request(
            driver_request.method,
            driver_request.path,
            json=driver_request.body,
            headers=driver_request.headers,
            timeout=request.options.timeout,
        )

        try:
            body = response.json()
        except ValueError as e:
            raise ProviderError(
                f"Invalid response format from {self.provider_id}: body is not JSON",
                provider=self.provider_id,
                cause=e,
            ) from e
        if not isinstance(body, dict):
            raise ProviderError(
                f"Invalid response format from {self.provider_id}",
                provider=self.provider_id,
            )

        parsed = self._driver.parse_response(body, request)

        self._requests_today += 1
        self._tokens_used += parsed.total_tokens

        return GenerationResult(
            content=parsed.content,
            metadata=GenerationMetadata(
                model=parsed.model,
                tokens=parsed.total_tokens,
                confidence=parsed.confidence,
            ),
            validation=self.validate_content(parsed.content),
        )

    async def is_available(self) -> bool:
        probe = self._driver.availability_request()
        try:
            await self._transport.request(probe.method, probe.path, timeout=10.0)
        except ShieldError as e:
            logger.warning("Availability probe failed", provider=self.provider_id, error=str(e))
            return False
        return True

    async def get_usage_stats(self) -> UsageStats:
        return UsageStats(
            requests_today=self._requests_today,
            tokens_used=self._tokens_used,
            remaining_quota=max(0, self._quota - self._requests_today),
        )

    def validate_content(self, content: str) -> ValidationResult:
        return self._validator.validate(content)

    async def close(self) -> None:
        await self._transport.close()

    async def __aenter__(self) -> ProviderClient:
        return self

    async def __aexit__(self, *args) -> None:
        await self.close()


class OpenRouterClient(ProviderClient):
    """OpenRouter client (OpenAI-style chat completions)."""

    def __init__(
        self,
        api_key: str | None = None,
        *,
        app_title: str = "ai-shield",
        referer: str | None = None,
        **kwargs,
    ) -> None:
        super().__init__(OpenRouterDriver(app_title=app_title, referer=referer), api_key, **kwargs)


class AnthropicClient(ProviderClient):
    """Anthropic Messages API client."""

    def __init__(self, api_key: str | None = None, **kwargs) -> None:
        super().__init__(AnthropicDriver(), api_key, **kwargs)
