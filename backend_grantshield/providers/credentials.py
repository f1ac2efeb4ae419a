"""
Shared gateway credential with time-based expiry.

One token is cached for all adapters. Refresh is guarded by an asyncio.Lock so
concurrent callers share one login. A generation counter lets a caller that saw
an auth rejection force a refresh only if nobody refreshed since it read the token.
"""

from __future__ import annotations

import asyncio
import time
from typing import Awaitable, Callable

import httpx

from backend_grantshield.core.exceptions import CredentialError, NetworkError
from backend_grantshield.config.settings import DEFAULT_TOKEN_TTL_SEC
from backend_grantshield.grantshield_logging import get_logger
from backend_grantshield.providers.fields import first_present

logger = get_logger(__name__)

LoginFunc = Callable[[], Awaitable[str]]

TOKEN_KEYS = ("token", "id", "accessToken", "access_token")


class CredentialProvider:
    """
    Cached bearer token for the provider gateway.

    login is an async callable returning a fresh token; clock is injectable
    for tests (defaults to time.monotonic).
    """

    def __init__(
        self,
        login: LoginFunc,
        *,
        ttl_sec: float = DEFAULT_TOKEN_TTL_SEC,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._login = login
        self._ttl_sec = ttl_sec
        self._clock = clock
        self._lock = asyncio.Lock()
        self._token: str | None = None
        self._expires_at = 0.0
        self._generation = 0
        self.login_count = 0

    @property
    def generation(self) -> int:
        """Incremented on every successful refresh."""
        return self._generation

    def _valid(self) -> bool:
        return self._token is not None and self._clock() < self._expires_at

    async def get_token(self) -> str:
        if self._valid():
            return self._token  # type: ignore[return-value]
        async with self._lock:
            if not self._valid():
                await self._refresh_locked()
            return self._token  # type: ignore[return-value]

    async def refresh(self, since_generation: int | None = None) -> str:
        """
        Force a new token.

        When since_generation is given and another caller already refreshed
        after that generation, the existing token is returned without logging in.
        """
        async with self._lock:
            if since_generation is not None and self._generation > since_generation and self._valid():
                return self._token  # type: ignore[return-value]
            await self._refresh_locked()
            return self._token  # type: ignore[return-value]

    def invalidate(self) -> None:
        self._token = None
        self._expires_at = 0.0

    async def _refresh_locked(self) -> None:
        token = await self._login()
        if not token:
            raise CredentialError("Gateway login returned no token", provider="gateway")
        self._token = token
        self._expires_at = self._clock() + self._ttl_sec
        self._generation += 1
        self.login_count += 1
        logger.info("credential_refreshed", generation=self._generation, ttl_sec=self._ttl_sec)


def gateway_login(
    http: httpx.AsyncClient,
    base_url: str,
    username: str,
    password: str,
) -> LoginFunc:
    """Build a login callable for the gateway's POST /users/login."""

    async def _login() -> str:
        if not username or not password:
            raise CredentialError("Provider credentials are not configured", provider="gateway")
        try:
            resp = await http.post(
                f"{base_url}/users/login",
                json={"username": username, "password": password},
            )
        except httpx.HTTPError as e:
            raise NetworkError(f"Gateway login failed: {e}", provider="gateway") from e
        if resp.status_code >= 400:
            logger.warning("credential_login_rejected", status_code=resp.status_code)
            raise CredentialError(
                f"Gateway login rejected ({resp.status_code})",
                provider="gateway",
                http_status=resp.status_code,
            )
        try:
            body = resp.json()
        except ValueError as e:
            raise CredentialError("Gateway login returned invalid JSON", provider="gateway") from e
        token = first_present(body, TOKEN_KEYS)
        if not token:
            raise CredentialError("Gateway login response has no token", provider="gateway")
        return str(token)

    return _login
