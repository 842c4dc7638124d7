"""Pytest configuration and shared fixtures.

Usage Guide:
- For token/quota/client tests: use the `intra` fixture (a fake 42 API
  behind httpx.MockTransport) and `http` (an AsyncClient bound to it)
- For limiter/backend tests: use `clock` (a manually advanced clock)
- For settings: use `settings` (no .env, no spacing margin)
"""

from __future__ import annotations

from collections.abc import AsyncIterator

import httpx
import pytest

from fast42.config import ApiSecret, LimiterConfig, Settings
from tests.fixtures.intra_responses import FakeIntraApi


class FakeClock:
    """Monotonic clock that only moves when told to."""

    def __init__(self, start: float = 1000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


# -----------------------------------------------------------------------------
# Clock & Settings
# -----------------------------------------------------------------------------
@pytest.fixture
def clock() -> FakeClock:
    """Manually advanced clock for tokens and in-memory backends."""
    return FakeClock()


@pytest.fixture
def settings() -> Settings:
    """Settings isolated from the environment, tuned for fast tests."""
    return Settings(
        _env_file=None,
        limiter=LimiterConfig(spacing_margin_ms=0, job_expiration_seconds=5.0),
    )


# -----------------------------------------------------------------------------
# Fake 42 API
# -----------------------------------------------------------------------------
@pytest.fixture
def intra() -> FakeIntraApi:
    """Fake 42 API with one application per client id."""
    return FakeIntraApi()


@pytest.fixture
async def http(intra: FakeIntraApi) -> AsyncIterator[httpx.AsyncClient]:
    """AsyncClient whose transport is the fake API."""
    async with intra.client() as client:
        yield client


@pytest.fixture
def secrets() -> list[ApiSecret]:
    """Two keys belonging to two different applications."""
    return [
        ApiSecret(client_id="uid-0", client_secret="secret-0"),
        ApiSecret(client_id="uid-1", client_secret="secret-1"),
    ]
