"""
Pytest fixtures for GrantShield tests. Uses a temporary SQLite DB per test and
scripted fake provider clients (no network).
"""

from __future__ import annotations

import asyncio
from typing import Any

import pytest

from backend_grantshield.database.store import SQLAlchemyStore


class FakeClient:
    """
    Scripted provider client.

    Each submit()/fetch() pops the next scripted item: a dict is returned, an
    exception instance is raised, and a float is slept (seconds) before
    returning an empty dict. Calls are recorded for assertions.
    """

    def __init__(self, *responses: Any, fetch: tuple[Any, ...] | list[Any] = ()) -> None:
        self.responses = list(responses)
        self.fetch_responses = list(fetch)
        self.requests: list[dict[str, Any]] = []
        self.fetched: list[str] = []

    async def submit(self, request: dict[str, Any]) -> dict[str, Any]:
        self.requests.append(request)
        return await self._next(self.responses)

    async def fetch(self, request_id: str) -> dict[str, Any]:
        self.fetched.append(request_id)
        return await self._next(self.fetch_responses)

    @staticmethod
    async def _next(script: list[Any]) -> dict[str, Any]:
        if not script:
            raise AssertionError("unexpected provider call")
        item = script.pop(0)
        if isinstance(item, BaseException):
            raise item
        if isinstance(item, float):
            await asyncio.sleep(item)
            return {}
        return item


APPLICANT = {
    "program_type": "home_energy_rebate",
    "requested_amount": 5_000.0,
    "applicant_first_name": "Jane",
    "applicant_last_name": "Doe",
    "applicant_email": "jane.doe@example.com",
    "applicant_phone": "(555) 010-2000",
    "applicant_ssn": "123-45-6789",
    "applicant_dob": "1985-04-12",
    "applicant_address1": "123 Main St",
    "applicant_city": "Springfield",
    "applicant_state": "IL",
    "applicant_zip": "62701",
}


@pytest.fixture
def store(tmp_path):
    """Fresh SQLite-backed store with tables created."""
    s = SQLAlchemyStore(f"sqlite:///{tmp_path / 'grantshield.db'}")
    s.ensure_schema()
    yield s
    s.dispose()


@pytest.fixture
def make_application(store):
    """Factory: create an application with APPLICANT defaults overridden by kwargs."""

    def _make(**overrides: Any):
        fields = dict(APPLICANT)
        fields.update(overrides)
        return store.create_application(**fields)

    return _make


@pytest.fixture
def fake_client():
    return FakeClient
