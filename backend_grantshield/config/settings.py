"""
Application settings.

Typed view over the environment (see env.py) for use across providers,
the screening pipeline, the database layer and the API server.
"""

from __future__ import annotations

from dataclasses import dataclass
from functools import lru_cache

from backend_grantshield.config.env import (
    env_float,
    env_int,
    env_str,
    get_crs_base_url,
    get_database_url,
)

# Gateway tokens live for 60 minutes; refresh a little early.
DEFAULT_TOKEN_TTL_SEC = 55 * 60
DEFAULT_PROVIDER_TIMEOUT_SEC = 30.0
# Credit pulls only for requests above this amount.
DEFAULT_CREDIT_CHECK_THRESHOLD = 10_000.0


@dataclass(frozen=True)
class Settings:
    """Resolved configuration; build with get_settings()."""

    crs_base_url: str
    crs_username: str
    crs_password: str
    token_ttl_sec: float = DEFAULT_TOKEN_TTL_SEC
    provider_timeout_sec: float = DEFAULT_PROVIDER_TIMEOUT_SEC
    credit_check_threshold: float = DEFAULT_CREDIT_CHECK_THRESHOLD
    database_url: str = "sqlite:///grantshield.db"
    api_host: str = "0.0.0.0"
    api_port: int = 8000
    log_level: str = "info"

    @property
    def has_provider_credentials(self) -> bool:
        return bool(self.crs_username and self.crs_password)


def load_settings() -> Settings:
    """Read settings from the environment (no caching)."""
    return Settings(
        crs_base_url=get_crs_base_url(),
        crs_username=env_str("CRS_USERNAME"),
        crs_password=env_str("CRS_PASSWORD"),
        token_ttl_sec=env_float("CRS_TOKEN_TTL_SEC", DEFAULT_TOKEN_TTL_SEC),
        provider_timeout_sec=env_float("PROVIDER_TIMEOUT_SEC", DEFAULT_PROVIDER_TIMEOUT_SEC),
        credit_check_threshold=env_float("CREDIT_CHECK_THRESHOLD", DEFAULT_CREDIT_CHECK_THRESHOLD),
        database_url=get_database_url(),
        api_host=env_str("API_HOST", "0.0.0.0"),
        api_port=env_int("API_PORT", 8000),
        log_level=env_str("LOG_LEVEL", "info").lower(),
    )


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Return the process-wide settings, read once from the environment."""
    return load_settings()
