"""Anthropic Messages API 驱动。

Anthropic Messages API driver. Key differences from OpenRouter:
- Authentication uses ``x-api-key`` plus a pinned ``anthropic-version``.
- System instructions are a top-level ``system`` parameter.
- Response text is ``content[0].text``; usage is split into input/output.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

from ai_shield.drivers import DriverRequest, DriverResponse, ProviderDriver
from ai_shield.errors import ProviderError

if TYPE_CHECKING:
    from ai_shield.types import GenerationRequest

ANTHROPIC_VERSION = "2023-06-01"

_STOP_REASON_MAP: dict[str, str] = {
    "end_turn": "stop",
    "stop_sequence": "stop",
    "max_tokens": "length",
}


class AnthropicDriver(ProviderDriver):
    """Anthropic Messages API driver."""

    default_model = "claude-3-5-haiku-latest"

    @property
    def provider_id(self) -> str:
        return "anthropic"

    @property
    def base_url(self) -> str:
        return "https://api.anthropic.com/v1"

    def auth_headers(self, api_key: str) -> dict[str, str]:
        return {"x-api-key": api_key, "anthropic-version": ANTHROPIC_VERSION}

    def build_request(self, request: GenerationRequest) -> DriverRequest:
        options = request.options
        body: dict[str, Any] = {
            "model": self.resolve_model(request),
            "system": self.resolve_system_prompt(request),
            "max_tokens": options.max_tokens or self.default_max_tokens,
            "temperature": (
                options.temperature
                if options.temperature is not None
                else self.default_temperature
            ),
            "messages": [{"role": "user", "content": request.prompt}],
        }
        return DriverRequest(path="/messages", body=body)

    def parse_response(self, body: dict[str, Any], request: GenerationRequest) -> DriverResponse:
        blocks = body.get("content") or []
        text = blocks[0].get("text") if blocks and isinstance(blocks[0], dict) else None
        if not text:
            raise ProviderError(
                "Invalid response format from Anthropic API", provider=self.provider_id
            )

        usage = body.get("usage") or {}
        tokens = int(usage.get("input_tokens") or 0) + int(usage.get("output_tokens") or 0)
        stop_reason = body.get("stop_reason")
        return DriverResponse(
            content=text,
            model=body.get("model") or self.resolve_model(request),
            total_tokens=tokens,
            finish_reason=_STOP_REASON_MAP.get(stop_reason, stop_reason),
            raw=body,
        )
