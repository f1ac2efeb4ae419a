"""
Verification providers: credential handling, HTTP clients and adapters.

build_default_adapters() wires one shared httpx.AsyncClient and one
CredentialProvider into an adapter per check type.
"""

from __future__ import annotations

import httpx

from backend_grantshield.config.settings import Settings
from backend_grantshield.providers.background import (
    BackgroundCheckAdapter,
    CriminalAdapter,
    EvictionAdapter,
)
from backend_grantshield.providers.base import VerificationAdapter
from backend_grantshield.providers.client import (
    CREDIT_PATH,
    CRIMINAL_FETCH_PATH,
    CRIMINAL_SUBMIT_PATH,
    EVICTION_FETCH_PATH,
    EVICTION_SUBMIT_PATH,
    FRAUD_PATH,
    IDENTITY_PATH,
    CrsHttpClient,
    ProviderClient,
    ProviderHTTPError,
    TwoPhaseClient,
)
from backend_grantshield.providers.credentials import CredentialProvider, gateway_login
from backend_grantshield.providers.credit import CreditAdapter
from backend_grantshield.providers.fraud_signal import FraudSignalAdapter
from backend_grantshield.providers.identity import IdentityAdapter
from backend_grantshield.screening.models import CheckType


def build_default_adapters(
    settings: Settings,
    http: httpx.AsyncClient | None = None,
) -> dict[CheckType, VerificationAdapter]:
    """Adapters for every check type against the configured CRS gateway."""
    http = http or httpx.AsyncClient(timeout=httpx.Timeout(settings.provider_timeout_sec))
    base_url = settings.crs_base_url
    credentials = CredentialProvider(
        gateway_login(http, base_url, settings.crs_username, settings.crs_password),
        ttl_sec=settings.token_ttl_sec,
    )

    def client(path: str, fetch_path: str | None = None, *, name: str) -> CrsHttpClient:
        return CrsHttpClient(http, base_url, credentials, path, fetch_path, name=name)

    options = {"credentials": credentials, "timeout_sec": settings.provider_timeout_sec}
    return {
        CheckType.IDENTITY: IdentityAdapter(client(IDENTITY_PATH, name="identity"), **options),
        CheckType.FRAUD: FraudSignalAdapter(client(FRAUD_PATH, name="fraud_signal"), **options),
        CheckType.CREDIT: CreditAdapter(client(CREDIT_PATH, name="credit"), **options),
        CheckType.CRIMINAL: CriminalAdapter(
            client(CRIMINAL_SUBMIT_PATH, CRIMINAL_FETCH_PATH, name="criminal"), **options
        ),
        CheckType.EVICTION: EvictionAdapter(
            client(EVICTION_SUBMIT_PATH, EVICTION_FETCH_PATH, name="eviction"), **options
        ),
    }


__all__ = [
    "BackgroundCheckAdapter",
    "CredentialProvider",
    "CreditAdapter",
    "CriminalAdapter",
    "CrsHttpClient",
    "EvictionAdapter",
    "FraudSignalAdapter",
    "IdentityAdapter",
    "ProviderClient",
    "ProviderHTTPError",
    "TwoPhaseClient",
    "VerificationAdapter",
    "build_default_adapters",
    "gateway_login",
]
