"""OpenRouter 驱动：OpenAI 兼容的 chat-completions 格式。

OpenRouter chat-completions driver (OpenAI-compatible request shape).
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

from ai_shield.drivers import DriverRequest, DriverResponse, ProviderDriver
from ai_shield.errors import ProviderError

if TYPE_CHECKING:
    from ai_shield.types import GenerationRequest


class OpenRouterDriver(ProviderDriver):
    """OpenRouter driver."""

    default_model = "openai/gpt-3.5-turbo"

    def __init__(self, app_title: str = "ai-shield", referer: str | None = None) -> None:
        self._app_title = app_title
        self._referer = referer

    @property
    def provider_id(self) -> str:
        return "openrouter"

    @property
    def base_url(self) -> str:
        return "https://openrouter.ai/api/v1"

    def auth_headers(self, api_key: str) -> dict[str, str]:
        return {"Authorization": f"Bearer {api_key}"}

    def build_request(self, request: GenerationRequest) -> DriverRequest:
        options = request.options
        headers = {"X-Title": self._app_title}
        if self._referer:
            headers["HTTP-Referer"] = self._referer

        body: dict[str, Any] = {
            "model": self.resolve_model(request),
            "messages": [
                {"role": "system", "content": self.resolve_system_prompt(request)},
                {"role": "user", "content": request.prompt},
            ],
            "max_tokens": options.max_tokens or self.default_max_tokens,
            "temperature": (
                options.temperature
                if options.temperature is not None
                else self.default_temperature
            ),
        }
        return DriverRequest(path="/chat/completions", headers=headers, body=body)

    def parse_response(self, body: dict[str, Any], request: GenerationRequest) -> DriverResponse:
        choices = body.get("choices") or []
        message = choices[0].get("message") if choices else None
        if not message or message.get("content") is None:
            raise ProviderError(
                "Invalid response format from OpenRouter API", provider=self.provider_id
            )

        usage = body.get("usage") or {}
        return DriverResponse(
            content=message["content"],
            model=body.get("model") or self.resolve_model(request),
            total_tokens=int(usage.get("total_tokens") or 0),
            finish_reason=choices[0].get("finish_reason"),
            raw=body,
        )
