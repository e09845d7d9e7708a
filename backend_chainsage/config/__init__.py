"""
Configuration management for Backend ChainSage.

Loads settings from environment variables and the optional .env file.
Exposes a single source of truth for all service configuration.
"""

from backend_chainsage.config.settings import Settings, get_settings  # noqa: F401

__all__ = ["Settings", "get_settings"]
