"""
Common verification adapter behaviour.

An adapter turns the canonical ApplicantProfile into one provider request,
calls its client under a per-call timeout, classifies failures into
ValidationError / AuthError / ServerError / NetworkError, retries exactly once
after a forced credential refresh on AuthError, and normalizes the response
into a CheckResult.
"""

from __future__ import annotations

import asyncio
from abc import ABC, abstractmethod
from typing import Any, Awaitable, Callable

from backend_grantshield.config.settings import DEFAULT_PROVIDER_TIMEOUT_SEC
from backend_grantshield.core.exceptions import (
    ERRORS_BY_KIND,
    AuthError,
    NetworkError,
    ProviderError,
    classify_http_status,
)
from backend_grantshield.grantshield_logging import get_logger
from backend_grantshield.providers.client import ProviderClient, ProviderHTTPError
from backend_grantshield.providers.credentials import CredentialProvider
from backend_grantshield.screening.models import ApplicantProfile, CheckResult, CheckType

logger = get_logger(__name__)


class VerificationAdapter(ABC):
    """Base class for single-call adapters (identity, fraud signal, credit)."""

    check_type: CheckType
    name: str = "provider"

    def __init__(
        self,
        client: ProviderClient,
        *,
        credentials: CredentialProvider | None = None,
        timeout_sec: float = DEFAULT_PROVIDER_TIMEOUT_SEC,
    ) -> None:
        self.client = client
        self.credentials = credentials
        self.timeout_sec = timeout_sec

    @abstractmethod
    def build_request(self, profile: ApplicantProfile) -> dict[str, Any]:
        """Provider request for profile. Raises ValidationError on missing data."""
        ...

    @abstractmethod
    def parse(self, payload: dict[str, Any]) -> CheckResult:
        """Normalize a provider response into a COMPLETED CheckResult."""
        ...

    async def invoke(self, profile: ApplicantProfile) -> CheckResult:
        request = self.build_request(profile)
        payload = await self._call(self.client.submit, request)
        result = self.parse(payload)
        logger.info(
            "provider_check_completed",
            provider=self.name,
            check_type=self.check_type.key,
            score=result.score,
            risk_level=result.risk_level.value if result.risk_level else None,
        )
        return result

    def recover(self, error: ProviderHTTPError) -> dict[str, Any] | None:
        """Return a substitute payload for an HTTP error that is not a failure, else None."""
        return None

    def classify(self, error: ProviderHTTPError) -> ProviderError:
        kind = classify_http_status(error.status)
        cls = ERRORS_BY_KIND[kind]
        prefix = f"{self.name} error" if error.status is None else f"{self.name} error (HTTP {error.status})"
        return cls(
            f"{prefix}: {error.message}",
            provider=self.name,
            http_status=error.status,
            details={"payload": error.payload} if error.payload is not None else None,
        )

    async def _call(self, operation: Callable[..., Awaitable[dict[str, Any]]], *args: Any) -> dict[str, Any]:
        """One provider call; on AuthError refresh the credential and retry exactly once."""
        generation = await self._token_generation()
        try:
            return await self._send(operation, *args)
        except AuthError as e:
            logger.warning("provider_auth_retry", provider=self.name, error=str(e))
            if self.credentials is not None:
                await self.credentials.refresh(since_generation=generation)
            return await self._send(operation, *args)

    async def _token_generation(self) -> int | None:
        if self.credentials is None:
            return None
        await self.credentials.get_token()
        return self.credentials.generation

    async def _send(self, operation: Callable[..., Awaitable[dict[str, Any]]], *args: Any) -> dict[str, Any]:
        try:
            return await asyncio.wait_for(operation(*args), timeout=self.timeout_sec)
        except asyncio.TimeoutError as e:
            raise NetworkError(
                f"{self.name} timed out after {self.timeout_sec:g}s",
                provider=self.name,
            ) from e
        except ProviderHTTPError as e:
            substitute = self.recover(e)
            if substitute is not None:
                return substitute
            raise self.classify(e) from e


def digits_only(value: str | None) -> str:
    return "".join(ch for ch in (value or "") if ch.isdigit())
