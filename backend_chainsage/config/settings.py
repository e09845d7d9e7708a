"""
Application settings and environment configuration.

Responsibilities:
- Load configuration from environment variables and the project .env file.
- Provide defaults for optional settings (free-tier Etherscan rate, SQLite store).
- Expose one typed Settings object for the fetcher, classifier, registry,
  aggregator and API server.
"""

from __future__ import annotations

import functools
from dataclasses import dataclass

from backend_chainsage.config.env import (
    env_float,
    env_int,
    env_str,
    get_project_root,
    load_chainsage_env,
)

DEFAULT_ETHERSCAN_BASE_URL = "https://api.etherscan.io/v2/api"
DEFAULT_CHAIN_ID = "1"  # Ethereum mainnet
# Free tier: 5 requests per second
DEFAULT_REQUEST_DELAY_SEC = 0.2
DEFAULT_REQUEST_TIMEOUT_SEC = 15.0
DEFAULT_ANTHROPIC_MODEL = "claude-haiku-4-5-20251001"
DEFAULT_AI_TIMEOUT_SEC = 30.0
DEFAULT_ALERT_THRESHOLD = 1000.0
DEFAULT_AGGREGATION_INTERVAL_SEC = 60.0
DEFAULT_MAX_CONCURRENCY = 3
DEFAULT_SUMMARY_FETCH_LIMIT = 200
DEFAULT_SUBSCRIBER_QUEUE_SIZE = 256


@dataclass(frozen=True)
class Settings:
    """Typed settings; build with get_settings() or directly in tests."""

    etherscan_api_key: str = ""
    etherscan_base_url: str = DEFAULT_ETHERSCAN_BASE_URL
    etherscan_chain_id: str = DEFAULT_CHAIN_ID
    request_delay_sec: float = DEFAULT_REQUEST_DELAY_SEC
    request_timeout_sec: float = DEFAULT_REQUEST_TIMEOUT_SEC

    anthropic_api_key: str = ""
    anthropic_model: str = DEFAULT_ANTHROPIC_MODEL
    ai_timeout_sec: float = DEFAULT_AI_TIMEOUT_SEC

    database_url: str = "sqlite:///chainsage.db"
    backup_file_path: str = "monitored_wallets_backup.json"

    default_alert_threshold: float = DEFAULT_ALERT_THRESHOLD
    aggregation_interval_sec: float = DEFAULT_AGGREGATION_INTERVAL_SEC
    max_concurrency: int = DEFAULT_MAX_CONCURRENCY
    summary_fetch_limit: int = DEFAULT_SUMMARY_FETCH_LIMIT
    subscriber_queue_size: int = DEFAULT_SUBSCRIBER_QUEUE_SIZE

    api_host: str = "0.0.0.0"
    api_port: int = 3001

    @property
    def ai_enabled(self) -> bool:
        return bool(self.anthropic_api_key)


def _database_url() -> str:
    """DATABASE_URL if set (PostgreSQL or any SQLAlchemy URL); else SQLite from DATABASE_PATH."""
    url = env_str("DATABASE_URL")
    if url:
        return url
    path = env_str("DATABASE_PATH", "chainsage.db")
    return f"sqlite:///{path}"


def load_settings() -> Settings:
    """Build Settings from the environment (reads .env first)."""
    load_chainsage_env()
    return Settings(
        etherscan_api_key=env_str("ETHERSCAN_API_KEY"),
        etherscan_base_url=env_str("ETHERSCAN_BASE_URL", DEFAULT_ETHERSCAN_BASE_URL),
        etherscan_chain_id=env_str("ETHERSCAN_CHAIN_ID", DEFAULT_CHAIN_ID),
        request_delay_sec=env_float("ETHERSCAN_REQUEST_DELAY_SEC", DEFAULT_REQUEST_DELAY_SEC),
        request_timeout_sec=env_float("ETHERSCAN_TIMEOUT_SEC", DEFAULT_REQUEST_TIMEOUT_SEC),
        anthropic_api_key=env_str("ANTHROPIC_API_KEY"),
        anthropic_model=env_str("ANTHROPIC_MODEL", DEFAULT_ANTHROPIC_MODEL),
        ai_timeout_sec=env_float("AI_TIMEOUT_SEC", DEFAULT_AI_TIMEOUT_SEC),
        database_url=_database_url(),
        backup_file_path=env_str(
            "BACKUP_FILE_PATH",
            str(get_project_root() / "monitored_wallets_backup.json"),
        ),
        default_alert_threshold=env_float("DEFAULT_ALERT_THRESHOLD", DEFAULT_ALERT_THRESHOLD),
        aggregation_interval_sec=env_float("AGGREGATION_INTERVAL_SEC", DEFAULT_AGGREGATION_INTERVAL_SEC),
        max_concurrency=max(1, env_int("AGGREGATION_MAX_CONCURRENCY", DEFAULT_MAX_CONCURRENCY)),
        summary_fetch_limit=max(1, env_int("SUMMARY_FETCH_LIMIT", DEFAULT_SUMMARY_FETCH_LIMIT)),
        subscriber_queue_size=max(1, env_int("SUBSCRIBER_QUEUE_SIZE", DEFAULT_SUBSCRIBER_QUEUE_SIZE)),
        api_host=env_str("API_HOST", "0.0.0.0"),
        api_port=env_int("API_PORT", 3001),
    )


@functools.lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Return the process-wide settings (cached after first call)."""
    return load_settings()
