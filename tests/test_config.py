"""Tests for configuration defaults and helpers."""

import pytest
from pydantic import ValidationError

from app.config import Settings, get_provider_api_key, get_repair_model, settings


def test_settings_type():
    """Settings object should exist with expected attributes."""
    for name in ("DATABASE_URL", "JWT_SECRET", "FRONTEND_URL", "LLM_PROVIDER",
                 "AGENT_MAX_REPAIRS", "AGENT_DRAFT_TTL_MINUTES"):
        assert hasattr(settings, name)


def test_defaults(monkeypatch):
    for var in ("AGENT_MAX_REPAIRS", "AGENT_DRAFT_TTL_MINUTES", "LLM_PROVIDER"):
        monkeypatch.delenv(var, raising=False)
    fresh = Settings(_env_file=None)
    assert fresh.AGENT_MAX_REPAIRS == 2
    assert fresh.AGENT_DRAFT_TTL_MINUTES == 15
    assert fresh.LLM_PROVIDER == "anthropic"


def test_env_overrides(monkeypatch):
    monkeypatch.setenv("AGENT_MAX_REPAIRS", "4")
    monkeypatch.setenv("LLM_PROVIDER", " OpenAI ")
    fresh = Settings(_env_file=None)
    assert fresh.AGENT_MAX_REPAIRS == 4
    assert fresh.LLM_PROVIDER == "openai"


def test_unknown_provider_falls_back_to_anthropic(monkeypatch):
    monkeypatch.setenv("LLM_PROVIDER", "llamafarm")
    assert Settings(_env_file=None).LLM_PROVIDER == "anthropic"


def test_repair_budget_bounds(monkeypatch):
    monkeypatch.setenv("AGENT_MAX_REPAIRS", "9")
    with pytest.raises(ValidationError):
        Settings(_env_file=None)


def test_repair_model_falls_back_to_agent_model(monkeypatch):
    assert get_repair_model() == "test-model"
    monkeypatch.setattr("app.config.settings.LLM_REPAIR_MODEL", "cheap-model")
    assert get_repair_model() == "cheap-model"


def test_provider_api_key(monkeypatch):
    monkeypatch.setattr("app.config.settings.OPENAI_API_KEY", "sk-openai")
    assert get_provider_api_key() == "test-key"
    monkeypatch.setattr("app.config.settings.LLM_PROVIDER", "openai")
    assert get_provider_api_key() == "sk-openai"
