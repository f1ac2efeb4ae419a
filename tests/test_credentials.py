"""
Tests for the shared gateway credential and the CRS HTTP client.
"""

from __future__ import annotations

import asyncio
import json

import httpx
import pytest

from backend_grantshield.core.exceptions import CredentialError, NetworkError
from backend_grantshield.providers.client import CrsHttpClient, ProviderHTTPError, error_message
from backend_grantshield.providers.credentials import CredentialProvider, gateway_login


class FakeClock:
    def __init__(self) -> None:
        self.now = 1000.0

    def __call__(self) -> float:
        return self.now


def _counting_login(delay: float = 0.0):
    calls = []

    async def _login() -> str:
        calls.append(1)
        if delay:
            await asyncio.sleep(delay)
        return f"token-{len(calls)}"

    return _login, calls


def test_token_is_cached_until_expiry():
    login, calls = _counting_login()
    clock = FakeClock()
    provider = CredentialProvider(login, ttl_sec=3300, clock=clock)

    async def run():
        first = await provider.get_token()
        second = await provider.get_token()
        clock.now += 3299
        third = await provider.get_token()
        clock.now += 2
        fourth = await provider.get_token()
        return first, second, third, fourth

    first, second, third, fourth = asyncio.run(run())
    assert first == second == third == "token-1"
    assert fourth == "token-2"
    assert provider.login_count == 2
    assert provider.generation == 2


def test_concurrent_callers_share_one_login():
    login, calls = _counting_login(delay=0.01)
    provider = CredentialProvider(login)

    async def run():
        return await asyncio.gather(*(provider.get_token() for _ in range(10)))

    tokens = asyncio.run(run())
    assert set(tokens) == {"token-1"}
    assert len(calls) == 1


def test_refresh_skips_login_when_already_refreshed():
    login, calls = _counting_login()
    provider = CredentialProvider(login)

    async def run():
        await provider.get_token()
        seen = provider.generation
        await provider.refresh(since_generation=seen)
        # second caller that observed the same stale generation
        token = await provider.refresh(since_generation=seen)
        return token

    token = asyncio.run(run())
    assert token == "token-2"
    assert len(calls) == 2


def test_invalidate_forces_new_login():
    login, calls = _counting_login()
    provider = CredentialProvider(login)

    async def run():
        await provider.get_token()
        provider.invalidate()
        return await provider.get_token()

    assert asyncio.run(run()) == "token-2"


def test_empty_token_is_a_credential_error():
    async def login() -> str:
        return ""

    provider = CredentialProvider(login)
    with pytest.raises(CredentialError):
        asyncio.run(provider.get_token())


def _login_with(handler, username="svc", password="secret"):
    async def run():
        async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as http:
            return await gateway_login(http, "https://crs.test", username, password)()

    return asyncio.run(run())


@pytest.mark.parametrize("key", ["token", "id", "accessToken", "access_token"])
def test_gateway_login_reads_token_keys(key):
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["url"] = str(request.url)
        seen["body"] = json.loads(request.content)
        return httpx.Response(200, json={key: "abc123"})

    assert _login_with(handler) == "abc123"
    assert seen["url"] == "https://crs.test/users/login"
    assert seen["body"] == {"username": "svc", "password": "secret"}


def test_gateway_login_rejected():
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(401, json={"message": "bad credentials"})

    with pytest.raises(CredentialError) as exc:
        _login_with(handler)
    assert exc.value.http_status == 401


def test_gateway_login_without_token():
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json={"ttl": 3600})

    with pytest.raises(CredentialError):
        _login_with(handler)


def test_gateway_login_requires_credentials():
    def handler(request: httpx.Request) -> httpx.Response:
        raise AssertionError("no request expected")

    with pytest.raises(CredentialError):
        _login_with(handler, username="", password="")


def test_gateway_login_transport_failure():
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("connection refused", request=request)

    with pytest.raises(NetworkError):
        _login_with(handler)


async def _static_login() -> str:
    return "tok"


def _client_call(handler, method="submit", arg=None):
    async def run():
        async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as http:
            client = CrsHttpClient(
                http,
                "https://crs.test/",
                CredentialProvider(_static_login),
                "/flex-id/flex-id",
                "/criminal/get-response/{request_id}",
                name="identity",
            )
            if method == "submit":
                return await client.submit(arg or {"firstName": "Jane"})
            return await client.fetch(arg)

    return asyncio.run(run())


def test_client_sends_bearer_token_and_json():
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["auth"] = request.headers["Authorization"]
        seen["url"] = str(request.url)
        seen["body"] = json.loads(request.content)
        return httpx.Response(200, json={"cviScore": 45})

    assert _client_call(handler) == {"cviScore": 45}
    assert seen["auth"] == "Bearer tok"
    assert seen["url"] == "https://crs.test/flex-id/flex-id"
    assert seen["body"] == {"firstName": "Jane"}


def test_client_fetch_formats_request_id():
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["method"] = request.method
        seen["path"] = request.url.path
        return httpx.Response(200, json=[{"status": "complete"}])

    assert _client_call(handler, "fetch", "req-9") == {"data": [{"status": "complete"}]}
    assert seen == {"method": "GET", "path": "/criminal/get-response/req-9"}


def test_client_empty_body_is_empty_dict():
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200)

    assert _client_call(handler) == {}


def test_client_http_error_carries_status_and_message():
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(500, json={"messages": ["Upstream failure"], "details": ["timeout at bureau"]})

    with pytest.raises(ProviderHTTPError) as exc:
        _client_call(handler)
    assert exc.value.status == 500
    assert exc.value.message == "Upstream failure - timeout at bureau"
    assert exc.value.payload["messages"] == ["Upstream failure"]


def test_client_transport_error_has_no_status():
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("connection refused", request=request)

    with pytest.raises(ProviderHTTPError) as exc:
        _client_call(handler)
    assert exc.value.status is None


def test_error_message_fallbacks():
    assert error_message({"error": {"message": "Nope"}}, "Bad Request") == "Nope"
    assert error_message({"message": "Plain"}, "Bad Request") == "Plain"
    assert error_message("oops", "Bad Request") == "Bad Request"
    assert error_message({}, "Bad Request") == "Bad Request"
