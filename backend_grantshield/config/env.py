"""
Environment variable loading for GrantShield.

- CRS_BASE_URL: verification provider gateway (default: sandbox)
- CRS_USERNAME / CRS_PASSWORD: gateway login used by the credential provider
- DATABASE_URL or DB_PATH: persistence target
- Loads .env from project root when available.
"""

from __future__ import annotations

import os
from pathlib import Path

from dotenv import load_dotenv

# Project root: config is backend_grantshield/config/, root is 2 levels up
_CONFIG_DIR = Path(__file__).resolve().parent
_BACKEND_DIR = _CONFIG_DIR.parent
_ROOT = _BACKEND_DIR.parent
_ENV_PATH = _ROOT / ".env"

CRS_SANDBOX_URL = "https://api-sandbox.stitchcredit.com/api"
DEFAULT_SQLITE_PATH = "grantshield.db"


def load_grantshield_env() -> None:
    """Load .env from project root. Safe to call multiple times; existing env wins."""
    load_dotenv(_ENV_PATH, override=False)


def env_str(name: str, default: str = "") -> str:
    load_grantshield_env()
    return (os.getenv(name) or default).strip()


def env_float(name: str, default: float) -> float:
    raw = env_str(name)
    if not raw:
        return default
    try:
        return float(raw)
    except ValueError as e:
        raise ValueError(f"{name} must be a number, got {raw!r}") from e


def env_int(name: str, default: int) -> int:
    return int(env_float(name, float(default)))


def get_crs_base_url() -> str:
    """Return CRS_BASE_URL without a trailing slash; sandbox by default."""
    return env_str("CRS_BASE_URL", CRS_SANDBOX_URL).rstrip("/")


def get_database_url() -> str:
    """Return DATABASE_URL if set; else SQLite from DB_PATH or the default file."""
    url = env_str("DATABASE_URL")
    if url:
        return url
    path = env_str("DB_PATH") or DEFAULT_SQLITE_PATH
    return f"sqlite:///{path}"
