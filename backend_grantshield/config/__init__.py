"""
Configuration management for the GrantShield screening backend.

Loads settings from environment variables and an optional .env file.
Exposes a single source of truth for provider, pipeline and storage settings.
"""

from backend_grantshield.config.settings import Settings, get_settings  # noqa: F401

__all__ = ["Settings", "get_settings"]
