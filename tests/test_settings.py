"""
Tests for environment-driven settings.
"""

from __future__ import annotations

from backend_chainsage.config.env import mask_secret
from backend_chainsage.config.settings import DEFAULT_ETHERSCAN_BASE_URL, load_settings


def test_defaults(monkeypatch):
    for name in ("ETHERSCAN_API_KEY", "ANTHROPIC_API_KEY", "DATABASE_URL", "DATABASE_PATH", "API_PORT"):
        monkeypatch.setenv(name, "")
    settings = load_settings()
    assert settings.etherscan_base_url == DEFAULT_ETHERSCAN_BASE_URL
    assert settings.request_delay_sec == 0.2
    assert settings.database_url == "sqlite:///chainsage.db"
    assert settings.api_port == 3001
    assert settings.ai_enabled is False


def test_env_overrides(monkeypatch):
    monkeypatch.setenv("ANTHROPIC_API_KEY", "sk-test")
    monkeypatch.setenv("DATABASE_URL", "postgresql://u:p@db/chainsage")
    monkeypatch.setenv("ETHERSCAN_CHAIN_ID", "137")
    monkeypatch.setenv("AGGREGATION_MAX_CONCURRENCY", "0")
    monkeypatch.setenv("API_PORT", "not-a-number")
    settings = load_settings()
    assert settings.ai_enabled is True
    assert settings.database_url.startswith("postgresql://")
    assert settings.etherscan_chain_id == "137"
    assert settings.max_concurrency == 1
    assert settings.api_port == 3001


def test_mask_secret():
    assert mask_secret("") == ""
    assert mask_secret("abc") == "***"
    assert mask_secret("abcdef") == "abcd***"
