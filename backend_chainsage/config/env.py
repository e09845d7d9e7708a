"""
Environment variable loading for ChainSage.

- Loads .env from the project root when available.
- Small typed readers used by settings.py (str, int, float with defaults).
"""

from __future__ import annotations

import os
from pathlib import Path

from dotenv import load_dotenv

# Project root: config is backend_chainsage/config/, root is 2 levels up
_CONFIG_DIR = Path(__file__).resolve().parent
_BACKEND_DIR = _CONFIG_DIR.parent
_ROOT = _BACKEND_DIR.parent
_ENV_PATH = _ROOT / ".env"


def load_chainsage_env() -> None:
    """Load .env from project root. Safe to call multiple times; existing env wins."""
    load_dotenv(_ENV_PATH, override=False)


def get_project_root() -> Path:
    return _ROOT


def env_str(name: str, default: str = "") -> str:
    """Return stripped env value, or default when unset or blank."""
    raw = (os.getenv(name) or "").strip()
    return raw or default


def env_int(name: str, default: int) -> int:
    raw = (os.getenv(name) or "").strip()
    if not raw:
        return default
    try:
        return int(raw)
    except ValueError:
        return default


def env_float(name: str, default: float) -> float:
    raw = (os.getenv(name) or "").strip()
    if not raw:
        return default
    try:
        return float(raw)
    except ValueError:
        return default


def mask_secret(value: str) -> str:
    """Mask an API key for logs: keep first 4 chars."""
    if not value:
        return ""
    return value[:4] + "***" if len(value) > 4 else "***"
