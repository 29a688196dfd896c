"""
API key resolution utilities.

Resolves API keys from multiple sources:
1. Explicit value
2. Environment variables
3. System keyring (optional)
"""

from __future__ import annotations

import os

from ai_shield._features import HAS_KEYRING
from ai_shield.errors import ConfigurationError

KEYRING_SERVICES = ("ai-shield", "ai-protocol")


def resolve_api_key(
    provider_id: str,
    explicit_key: str | None = None,
    env_var: str | None = None,
) -> str | None:
    """Resolve API key for a provider.

    Resolution order:
    1. Explicit key if provided
    2. ``env_var`` if given
    3. Standard environment variable ({PROVIDER_ID}_API_KEY)
    4. System keyring (if available)

    Args:
        provider_id: Provider identifier (e.g., "openrouter", "anthropic")
        explicit_key: Explicitly provided API key
        env_var: Custom environment variable to check first

    Returns:
        Resolved API key or None if not found
    """
    if explicit_key:
        return explicit_key

    if env_var:
        key = os.getenv(env_var)
        if key:
            return key

    standard_var = f"{provider_id.upper().replace('-', '_')}_API_KEY"
    key = os.getenv(standard_var)
    if key:
        return key

    return _try_keyring(provider_id)


def require_api_key(
    provider_id: str,
    explicit_key: str | None = None,
    env_var: str | None = None,
) -> str:
    """Resolve an API key or fail with a configuration error."""
    key = resolve_api_key(provider_id, explicit_key, env_var)
    if not key:
        expected = env_var or f"{provider_id.upper().replace('-', '_')}_API_KEY"
        raise ConfigurationError(
            f"{provider_id} API key not configured. Please set {expected} environment variable.",
            setting=expected,
        )
    return key


def _try_keyring(provider_id: str) -> str | None:
    """Try to get API key from system keyring."""
    if not HAS_KEYRING:
        return None

    import keyring

    try:
        for service in KEYRING_SERVICES:
            key = keyring.get_password(service, provider_id)
            if key:
                return key
    except Exception:
        # Keyring backend error (common in containers, WSL, etc.)
        pass

    return None
