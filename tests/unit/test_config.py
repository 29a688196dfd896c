"""Tests for environment settings."""

import pytest

from ai_shield.config import ShieldSettings
from ai_shield.errors import ConfigurationError
from ai_shield.telemetry import LogLevel


class TestShieldSettings:
    def test_defaults(self) -> None:
        settings = ShieldSettings.from_env({})
        assert settings.provider == "openrouter"
        assert settings.cache_ttl == 86400.0
        assert settings.cache_max_entries == 100
        assert settings.cache_dir is None
        assert settings.log_level == LogLevel.INFO

    def test_reads_variables(self) -> None:
        settings = ShieldSettings.from_env(
            {
                "AI_SHIELD_PROVIDER": "anthropic",
                "AI_SHIELD_MODEL": "claude-3-5-haiku-latest",
                "AI_SHIELD_CACHE_TTL": "3600",
                "AI_SHIELD_CACHE_MAX_ENTRIES": "25",
                "AI_SHIELD_CACHE_DIR": "/tmp/ai-shield",
                "AI_SHIELD_LOG_LEVEL": "debug",
                "AI_SHIELD_LOG_FORMAT": "json",
            }
        )
        assert settings.provider == "anthropic"
        assert settings.model == "claude-3-5-haiku-latest"
        assert settings.cache_ttl == 3600.0
        assert settings.cache_max_entries == 25
        assert settings.cache_dir == "/tmp/ai-shield"
        assert settings.log_level == LogLevel.DEBUG
        assert settings.log_format == "json"

    def test_empty_values_are_ignored(self) -> None:
        settings = ShieldSettings.from_env({"AI_SHIELD_CACHE_TTL": ""})
        assert settings.cache_ttl == 86400.0

    @pytest.mark.parametrize(
        ("variable", "value"),
        [
            ("AI_SHIELD_CACHE_TTL", "0"),
            ("AI_SHIELD_CACHE_TTL", "soon"),
            ("AI_SHIELD_CACHE_MAX_ENTRIES", "-1"),
            ("AI_SHIELD_LOG_LEVEL", "verbose"),
            ("AI_SHIELD_LOG_FORMAT", "xml"),
        ],
    )
    def test_invalid_values(self, variable: str, value: str) -> None:
        with pytest.raises(ConfigurationError):
            ShieldSettings.from_env({variable: value})

    def test_reads_process_environment(self, monkeypatch) -> None:
        monkeypatch.setenv("AI_SHIELD_PROVIDER", "anthropic")
        assert ShieldSettings.from_env().provider == "anthropic"

    def test_configure_logging(self, log_stream) -> None:
        import logging

        from ai_shield.telemetry import get_logger

        logger = get_logger("ai_shield.test")
        ShieldSettings(log_level=LogLevel.ERROR, log_format="json").configure_logging()
        assert logging.getLogger("ai_shield.test").level == logging.ERROR
        logger.warning("suppressed")
        assert "suppressed" not in log_stream.getvalue()
