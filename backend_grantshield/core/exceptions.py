"""
Application-level exceptions.

Provider failures carry a kind (VALIDATION, AUTH, SERVER, NETWORK) so the
screening pipeline can record them per check and decide on retries. NotReadyError
is not a failure: it marks a two-phase check whose results are still pending.
"""

from __future__ import annotations

from enum import Enum
from typing import Any


class ProviderErrorKind(str, Enum):
    VALIDATION = "VALIDATION"
    AUTH = "AUTH"
    SERVER = "SERVER"
    NETWORK = "NETWORK"


class GrantShieldError(Exception):
    """Base class for all GrantShield errors."""


class ProviderError(GrantShieldError):
    """A verification provider call failed (or was refused locally)."""

    kind: ProviderErrorKind = ProviderErrorKind.SERVER

    def __init__(
        self,
        message: str,
        *,
        provider: str | None = None,
        http_status: int | None = None,
        details: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.provider = provider
        self.http_status = http_status
        self.details = details or {}

    def to_dict(self) -> dict[str, Any]:
        return {
            "kind": self.kind.value,
            "message": self.message,
            "provider": self.provider,
            "http_status": self.http_status,
        }


class ValidationError(ProviderError):
    """Required applicant data is missing or malformed, or the provider rejected the request (4xx)."""

    kind = ProviderErrorKind.VALIDATION


class AuthError(ProviderError):
    """Provider rejected our credentials (401/403)."""

    kind = ProviderErrorKind.AUTH


class ServerError(ProviderError):
    """Provider answered with a 5xx."""

    kind = ProviderErrorKind.SERVER


class NetworkError(ProviderError):
    """Transport failure or per-call timeout; no HTTP status available."""

    kind = ProviderErrorKind.NETWORK


class NotReadyError(GrantShieldError):
    """Two-phase check submitted but results are not available yet."""

    def __init__(self, request_id: str, message: str | None = None) -> None:
        super().__init__(message or f"Results not ready for request {request_id}")
        self.request_id = request_id


class ApplicationNotFound(GrantShieldError):
    def __init__(self, application_id: str) -> None:
        super().__init__(f"Application not found: {application_id}")
        self.application_id = application_id


class ScreeningNotAllowed(GrantShieldError):
    """Screening refused for the application's current status (e.g. ARCHIVED)."""

    def __init__(self, application_id: str, status: str) -> None:
        super().__init__(f"Application {application_id} cannot be screened in status {status}")
        self.application_id = application_id
        self.status = status


class CredentialError(AuthError):
    """Login to the provider gateway failed or credentials are not configured."""


ERRORS_BY_KIND: dict[ProviderErrorKind, type[ProviderError]] = {
    ProviderErrorKind.VALIDATION: ValidationError,
    ProviderErrorKind.AUTH: AuthError,
    ProviderErrorKind.SERVER: ServerError,
    ProviderErrorKind.NETWORK: NetworkError,
}


def classify_http_status(status: int | None) -> ProviderErrorKind:
    """Map an HTTP status (None for transport failures) to a provider error kind."""
    if status is None:
        return ProviderErrorKind.NETWORK
    if status in (401, 403):
        return ProviderErrorKind.AUTH
    if status >= 500:
        return ProviderErrorKind.SERVER
    return ProviderErrorKind.VALIDATION
