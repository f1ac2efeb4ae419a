"""
Provider client contract and the CRS gateway HTTP implementation.

A client only moves provider-native JSON: submit(request) -> dict, and for
two-phase providers fetch(request_id) -> dict. Failures raise ProviderHTTPError
with the HTTP status (None for transport failures); adapters classify them.
"""

from __future__ import annotations

from typing import Any, Protocol, runtime_checkable

import httpx

from backend_grantshield.grantshield_logging import get_logger
from backend_grantshield.providers.credentials import CredentialProvider

logger = get_logger(__name__)

IDENTITY_PATH = "/flex-id/flex-id"
FRAUD_PATH = "/fraud-finder/fraud-finder"
CREDIT_PATH = "/experian/credit-profile/credit-report/standard/exp-prequal-vantage4"
CRIMINAL_SUBMIT_PATH = "/criminal/new-request"
CRIMINAL_FETCH_PATH = "/criminal/get-response/{request_id}"
EVICTION_SUBMIT_PATH = "/eviction/new-request"
EVICTION_FETCH_PATH = "/eviction/get-response/{request_id}"


class ProviderHTTPError(Exception):
    """Provider call failed; status is None when no HTTP response was received."""

    def __init__(self, status: int | None, message: str, payload: Any = None) -> None:
        super().__init__(message)
        self.status = status
        self.message = message
        self.payload = payload

    def __repr__(self) -> str:
        return f"ProviderHTTPError(status={self.status!r}, message={self.message!r})"


@runtime_checkable
class ProviderClient(Protocol):
    async def submit(self, request: dict[str, Any]) -> dict[str, Any]:
        ...


@runtime_checkable
class TwoPhaseClient(ProviderClient, Protocol):
    async def fetch(self, request_id: str) -> dict[str, Any]:
        ...


def _first_item(value: Any) -> Any:
    if isinstance(value, list):
        return value[0] if value else None
    return value


def error_message(payload: Any, fallback: str) -> str:
    """Best human-readable message from a gateway error body."""
    if not isinstance(payload, dict):
        return fallback
    error = payload.get("error")
    message = (
        _first_item(payload.get("messages"))
        or (error.get("message") if isinstance(error, dict) else None)
        or payload.get("message")
        or fallback
    )
    detail = _first_item(payload.get("details"))
    return f"{message} - {detail}" if detail else str(message)


class CrsHttpClient:
    """
    httpx client for one CRS gateway endpoint.

    Authenticates every request with the shared CredentialProvider token.
    fetch_path, when set, is formatted with request_id for two-phase results.
    """

    def __init__(
        self,
        http: httpx.AsyncClient,
        base_url: str,
        credentials: CredentialProvider,
        submit_path: str,
        fetch_path: str | None = None,
        *,
        name: str = "crs",
    ) -> None:
        self._http = http
        self._base_url = base_url.rstrip("/")
        self._credentials = credentials
        self._submit_path = submit_path
        self._fetch_path = fetch_path
        self.name = name

    async def submit(self, request: dict[str, Any]) -> dict[str, Any]:
        return await self._request("POST", self._submit_path, json=request)

    async def fetch(self, request_id: str) -> dict[str, Any]:
        if not self._fetch_path:
            raise NotImplementedError(f"{self.name} has no result endpoint")
        return await self._request("GET", self._fetch_path.format(request_id=request_id))

    async def _request(self, method: str, path: str, **kwargs: Any) -> dict[str, Any]:
        token = await self._credentials.get_token()
        url = f"{self._base_url}{path}"
        try:
            resp = await self._http.request(
                method,
                url,
                headers={"Authorization": f"Bearer {token}", "Content-Type": "application/json"},
                **kwargs,
            )
        except httpx.HTTPError as e:
            logger.warning("provider_transport_error", provider=self.name, error=str(e))
            raise ProviderHTTPError(None, f"{self.name} request failed: {e}") from e

        payload = _decode(resp)
        if resp.status_code >= 400:
            message = error_message(payload, resp.reason_phrase or f"HTTP {resp.status_code}")
            logger.warning(
                "provider_http_error",
                provider=self.name,
                status_code=resp.status_code,
                message=message,
            )
            raise ProviderHTTPError(resp.status_code, message, payload)

        logger.debug("provider_response", provider=self.name, status_code=resp.status_code)
        if payload is None:
            return {}
        if isinstance(payload, dict):
            return payload
        return {"data": payload}


def _decode(resp: httpx.Response) -> Any:
    if not resp.content:
        return None
    try:
        return resp.json()
    except ValueError:
        return None
