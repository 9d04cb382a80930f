"""Tests for environment configuration."""

import pytest

from threatlens.config import (
    DEFAULT_ANTHROPIC_MODEL,
    DEFAULT_OPENAI_ENDPOINT,
    load_config,
)

ENV_VARS = [
    "OPENAI_API_KEY",
    "OPENAI_BASE_URL",
    "OPENAI_MODEL",
    "ANTHROPIC_API_KEY",
    "ANTHROPIC_BASE_URL",
    "ANTHROPIC_MODEL",
    "LLM_GATEWAY_API_KEY",
    "LLM_GATEWAY_URL",
    "LLM_GATEWAY_MODEL",
    "THREATLENS_NARRATIVE_PROVIDERS",
    "THREATLENS_LLM_TIMEOUT",
    "THREATLENS_ATTACH_WINDOW_MINUTES",
    "THREATLENS_BURST_MIN_ALERTS",
    "THREATLENS_TRIGGER_ON_NEW_ALERT",
    "THREATLENS_DATABASE_URL",
    "THREATLENS_DATABASE_ECHO",
    "THREATLENS_DATABASE_POOL_SIZE",
    "THREATLENS_LOG_FORMAT",
]


@pytest.fixture
def env(monkeypatch, tmp_path):
    """Clean environment; returns a loader that ignores any local .env."""
    for name in ENV_VARS:
        monkeypatch.delenv(name, raising=False)
    return lambda: load_config(tmp_path / "missing.env")


class TestLoadConfig:
    """Tests for load_config."""

    def test_defaults(self, env):
        config = env()
        assert config.narrative.providers == []
        assert config.correlation.burst_window_seconds == 300
        assert config.correlation.attach_window_minutes is None
        assert config.correlation.trigger_on_new_alert
        assert config.log_format == "json"

    def test_well_known_keys_build_chain(self, env, monkeypatch):
        """Test the default provider order: OpenAI, gateway, Anthropic."""
        monkeypatch.setenv("ANTHROPIC_API_KEY", "sk-ant")
        monkeypatch.setenv("OPENAI_API_KEY", "sk-openai")
        monkeypatch.setenv("LLM_GATEWAY_API_KEY", "gw-key")
        monkeypatch.setenv("LLM_GATEWAY_URL", "https://gateway.internal/v1")

        providers = env().narrative.providers

        assert [p.name for p in providers] == ["openai", "gateway", "anthropic"]
        assert providers[0].endpoint == DEFAULT_OPENAI_ENDPOINT
        assert providers[2].model_id == DEFAULT_ANTHROPIC_MODEL

    def test_gateway_needs_url(self, env, monkeypatch):
        monkeypatch.setenv("LLM_GATEWAY_API_KEY", "gw-key")
        assert env().narrative.providers == []

    def test_named_providers(self, env, monkeypatch):
        """Test an explicit provider list; keyless entries are skipped."""
        monkeypatch.setenv("THREATLENS_NARRATIVE_PROVIDERS", "claude, backup")
        monkeypatch.setenv("THREATLENS_PROVIDER_CLAUDE_API_KEY", "sk-ant")
        monkeypatch.setenv("THREATLENS_PROVIDER_CLAUDE_KIND", "anthropic")
        monkeypatch.setenv("THREATLENS_PROVIDER_CLAUDE_TIMEOUT", "12.5")
        monkeypatch.setenv("THREATLENS_PROVIDER_BACKUP_API_KEY", " ")

        providers = env().narrative.providers

        assert len(providers) == 1
        assert providers[0].name == "claude"
        assert providers[0].kind == "anthropic"
        assert providers[0].timeout_seconds == 12.5

    def test_invalid_provider_kind(self, env, monkeypatch):
        monkeypatch.setenv("THREATLENS_NARRATIVE_PROVIDERS", "odd")
        monkeypatch.setenv("THREATLENS_PROVIDER_ODD_API_KEY", "key")
        monkeypatch.setenv("THREATLENS_PROVIDER_ODD_KIND", "cohere")
        with pytest.raises(ValueError, match="Invalid"):
            env()

    def test_correlation_overrides(self, env, monkeypatch):
        monkeypatch.setenv("THREATLENS_ATTACH_WINDOW_MINUTES", "60")
        monkeypatch.setenv("THREATLENS_BURST_MIN_ALERTS", "5")
        monkeypatch.setenv("THREATLENS_TRIGGER_ON_NEW_ALERT", "false")

        correlation = env().correlation

        assert correlation.attach_window_minutes == 60
        assert correlation.burst_min_alerts == 5
        assert not correlation.trigger_on_new_alert

    def test_api_key_not_in_repr(self, env, monkeypatch):
        monkeypatch.setenv("OPENAI_API_KEY", "sk-secret")
        assert "sk-secret" not in repr(env().narrative.providers[0])

    def test_database_settings(self, env, monkeypatch):
        assert env().database.pool_size is None

        monkeypatch.setenv("THREATLENS_DATABASE_URL", "postgresql+asyncpg://soc@db:5432/triage")
        monkeypatch.setenv("THREATLENS_DATABASE_ECHO", "TRUE")
        monkeypatch.setenv("THREATLENS_DATABASE_POOL_SIZE", "5")

        database = env().database

        assert database.url == "postgresql+asyncpg://soc@db:5432/triage"
        assert database.echo
        assert database.pool_size == 5
