"""HTTP 传输层：基于 httpx 的异步 HTTP 客户端。

HTTP transport using httpx for provider requests.

Maps transport failures onto the generation error taxonomy:
- Timeouts become GenerationTimeoutError
- Connection failures and non-2xx responses become ProviderError
"""

from __future__ import annotations

import os
from contextlib import suppress
from typing import Any

import httpx

from ai_shield.errors import GenerationTimeoutError, ProviderError

_DEFAULT_TIMEOUT = 30.0
_DEFAULT_CONNECT_TIMEOUT = 10.0
_USER_AGENT = "ai-shield-python/0.3.0"


def _trust_env_enabled() -> bool:
    """Use env proxy settings only when explicitly enabled."""
    return os.getenv("AI_SHIELD_HTTP_TRUST_ENV", "0") == "1"


class HttpTransport:
    """HTTP transport for one provider.

    Example:
        >>> transport = HttpTransport("openrouter", "https://openrouter.ai/api/v1",
        ...                           {"Authorization": "Bearer sk-..."})
        >>> response = await transport.post("/chat/completions", payload, timeout=30)
    """

    def __init__(
        self,
        provider: str,
        base_url: str,
        auth_headers: dict[str, str] | None = None,
        *,
        timeout: float | None = None,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        """Initialize HTTP transport.

        Args:
            provider: Provider name used in errors and logs
            base_url: Base URL of the provider API
            auth_headers: Authentication headers sent with every request
            timeout: Default timeout in seconds
            client: Preconfigured httpx client (owned by the caller)
        """
        self._provider = provider
        self._base_url = base_url.rstrip("/")
        self._auth_headers = auth_headers or {}
        self._timeout = timeout or _DEFAULT_TIMEOUT
        self._client = client
        self._owns_client = client is None

    @property
    def base_url(self) -> str:
        return self._base_url

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(
                base_url=self._base_url,
                timeout=httpx.Timeout(self._timeout, connect=_DEFAULT_CONNECT_TIMEOUT),
                trust_env=_trust_env_enabled(),
            )
        return self._client

    async def close(self) -> None:
        """Close the HTTP client if this transport created it."""
        if self._client is not None and self._owns_client:
            await self._client.aclose()
            self._client = None

    def _build_headers(self, extra_headers: dict[str, str] | None = None) -> dict[str, str]:
        headers = {
            "Content-Type": "application/json",
            "Accept": "application/json",
            "User-Agent": _USER_AGENT,
        }
        headers.update(self._auth_headers)
        if extra_headers:
            headers.update(extra_headers)
        return headers

    async def request(
        self,
        method: str,
        path: str,
        *,
        json: dict[str, Any] | None = None,
        headers: dict[str, str] | None = None,
        timeout: float | None = None,
    ) -> httpx.Response:
        """Make an HTTP request.

        Raises:
            GenerationTimeoutError: On timeout
            ProviderError: On network errors or non-2xx responses
        """
        client = self._get_client()
        effective_timeout = timeout or self._timeout
        url = f"{self._base_url}{path}"

        try:
            response = await client.request(
                method=method,
                url=url,
                json=json,
                headers=self._build_headers(headers),
                timeout=effective_timeout,
            )
        except httpx.TimeoutException as e:
            raise GenerationTimeoutError(
                f"Request timeout after {effective_timeout}s", timeout=effective_timeout
            ) from e
        except httpx.HTTPError as e:
            raise ProviderError(
                f"Connection failed: {e}",
                provider=self._provider,
                retryable=True,
                cause=e,
            ) from e

        if response.status_code >= 400:
            detail = ""
            with suppress(Exception):
                detail = response.text[:200]
            error = ProviderError.from_status(
                response.status_code, response.reason_phrase, provider=self._provider
            )
            if detail:
                error.context.details["body"] = detail
            raise error

        return response

    async def post(
        self,
        path: str,
        json: dict[str, Any],
        *,
        headers: dict[str, str] | None = None,
        timeout: float | None = None,
    ) -> httpx.Response:
        """Make a POST request."""
        return await self.request("POST", path, json=json, headers=headers, timeout=timeout)

    async def get(
        self,
        path: str,
        *,
        headers: dict[str, str] | None = None,
        timeout: float | None = None,
    ) -> httpx.Response:
        """Make a GET request."""
        return await self.request("GET", path, headers=headers, timeout=timeout)
