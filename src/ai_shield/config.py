"""
Process-level settings read from the environment.

Variables:
    AI_SHIELD_PROVIDER: ``openrouter`` (default) or ``anthropic``
    AI_SHIELD_MODEL: Default model for requests built by callers
    AI_SHIELD_BASE_URL: Override the provider base URL
    AI_SHIELD_CACHE_TTL: Cache entry lifetime in seconds
    AI_SHIELD_CACHE_MAX_ENTRIES: Memory tier capacity
    AI_SHIELD_CACHE_DIR: Directory of the durable tier (unset: no durable tier)
    AI_SHIELD_POLICY_FILE: YAML/JSON rate limit policy table
    AI_SHIELD_LOG_LEVEL / AI_SHIELD_LOG_FORMAT: Logging output
"""

from __future__ import annotations

import os
from typing import TYPE_CHECKING

from pydantic import BaseModel, ConfigDict, Field
from pydantic import ValidationError as PydanticValidationError

from ai_shield.errors import ConfigurationError
from ai_shield.telemetry.logger import LogLevel, ShieldLogger

if TYPE_CHECKING:
    from collections.abc import Mapping

_ENV_FIELDS: dict[str, str] = {
    "provider": "AI_SHIELD_PROVIDER",
    "model": "AI_SHIELD_MODEL",
    "base_url": "AI_SHIELD_BASE_URL",
    "cache_ttl": "AI_SHIELD_CACHE_TTL",
    "cache_max_entries": "AI_SHIELD_CACHE_MAX_ENTRIES",
    "cache_dir": "AI_SHIELD_CACHE_DIR",
    "policy_file": "AI_SHIELD_POLICY_FILE",
    "log_level": "AI_SHIELD_LOG_LEVEL",
    "log_format": "AI_SHIELD_LOG_FORMAT",
}


class ShieldSettings(BaseModel):
    """Settings for building a Shield."""

    model_config = ConfigDict(frozen=True, protected_namespaces=())

    provider: str = "openrouter"
    model: str | None = None
    base_url: str | None = None
    cache_ttl: float = Field(default=86400.0, gt=0)
    cache_max_entries: int = Field(default=100, ge=0)
    cache_dir: str | None = None
    policy_file: str | None = None
    log_level: LogLevel = LogLevel.INFO
    log_format: str = Field(default="text", pattern="^(json|text)$")

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None) -> ShieldSettings:
        """Create settings from environment variables.

        Raises:
            ConfigurationError: If a variable has an invalid value
        """
        env = os.environ if environ is None else environ
        values = {
            name: env[var] for name, var in _ENV_FIELDS.items() if env.get(var)
        }
        if "log_level" in values:
            values["log_level"] = values["log_level"].upper()
        try:
            return cls(**values)
        except PydanticValidationError as e:
            raise ConfigurationError(f"Invalid AI_SHIELD_* environment settings: {e}") from e

    def configure_logging(self) -> None:
        ShieldLogger.configure(level=self.log_level, format=self.log_format)
