"""
Shared test fixtures for pytest.

Provides common fakes and test data for all test modules:
- fake_settings: Test environment configuration (no Redis)
- clock: Controllable clock for TTL and window tests
- memory_backend: InMemoryCacheBackend driven by the fake clock
- failing_backend: Backend whose every operation raises CacheBackendError
- test_app / client: FastAPI app with cache components initialised
- admin_headers, viewer_headers: Bearer token headers per role
- make_token: Helper to create test JWT tokens
"""

from __future__ import annotations

from collections.abc import AsyncGenerator
from typing import Any

import httpx
import pytest
from fastapi import FastAPI

from cachelayer.auth.tokens import create_dev_token
from cachelayer.cache.backend import (
    CacheBackend,
    CacheBackendError,
    InMemoryCacheBackend,
    WindowHit,
)
from cachelayer.config import Environment, Settings, get_settings


# ------------------------------------------------------------------ #
# Session-scoped: clear settings cache between test sessions
# ------------------------------------------------------------------ #

@pytest.fixture(autouse=True, scope="session")
def _clear_settings_cache():
    """Clear the lru_cache on get_settings so test overrides take effect."""
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


# ------------------------------------------------------------------ #
# Constants for Test JWTs
# ------------------------------------------------------------------ #

TEST_JWT_SECRET = "unit-test-jwt-signing-key"
TEST_AUDIENCE = "cachelayer-admin"


def make_token(sub: str, role: str = "admin") -> str:
    """Create a test JWT token using HS256."""
    return create_dev_token(
        sub=sub, role=role, secret=TEST_JWT_SECRET, audience=TEST_AUDIENCE
    )


# ------------------------------------------------------------------ #
# Fakes
# ------------------------------------------------------------------ #

class FakeClock:
    """Manually advanced clock returning seconds as a float."""

    def __init__(self, start: float = 1_700_000_000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FailingBackend(CacheBackend):
    """Backend standing in for an unreachable store."""

    name = "failing"

    def __init__(self) -> None:
        self.calls: list[str] = []

    def _fail(self, op: str) -> CacheBackendError:
        self.calls.append(op)
        return CacheBackendError(f"{op} failed: connection refused")

    async def get(self, key: str) -> str | None:
        raise self._fail("get")

    async def set(self, key: str, value: str, ttl: int | None = None) -> None:
        raise self._fail("set")

    async def delete(self, key: str) -> None:
        raise self._fail("delete")

    async def delete_pattern(self, pattern: str) -> int:
        raise self._fail("delete_pattern")

    async def flush_all(self) -> None:
        raise self._fail("flush_all")

    async def hit_window(self, key: str, limit: int, window_ms: int) -> WindowHit:
        raise self._fail("hit_window")

    async def info(self) -> dict[str, Any]:
        return {"backend": self.name, "connected": False}


# ------------------------------------------------------------------ #
# Settings & backend fixtures
# ------------------------------------------------------------------ #

@pytest.fixture
def fake_settings() -> Settings:
    """Test environment settings with safe defaults."""
    return Settings(
        environment=Environment.TEST,
        redis_url=None,
        auth_jwt_secret=TEST_JWT_SECRET,
        auth_audience=TEST_AUDIENCE,
        cache_compute_timeout_seconds=5.0,
    )


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def memory_backend(clock: FakeClock) -> InMemoryCacheBackend:
    return InMemoryCacheBackend(clock=clock)


@pytest.fixture
def failing_backend() -> FailingBackend:
    return FailingBackend()


# ------------------------------------------------------------------ #
# App Fixtures
# ------------------------------------------------------------------ #

@pytest.fixture
def test_app(fake_settings: Settings) -> FastAPI:
    """Create FastAPI test app with the cache layer initialised.

    ASGITransport does not run the lifespan, so the components the
    lifespan would build are created here directly.
    """
    from cachelayer.main import create_app, init_cache_layer

    app = create_app(fake_settings)
    init_cache_layer(app, fake_settings)
    return app


@pytest.fixture
async def client(test_app: FastAPI) -> AsyncGenerator[httpx.AsyncClient, None]:
    """Async HTTP client for testing the FastAPI application."""
    transport = httpx.ASGITransport(app=test_app)  # type: ignore[arg-type]
    async with httpx.AsyncClient(
        transport=transport,
        base_url="http://testserver",
    ) as ac:
        yield ac


@pytest.fixture
def admin_headers() -> dict[str, str]:
    return {"Authorization": f"Bearer {make_token('admin-sub', role='admin')}"}


@pytest.fixture
def viewer_headers() -> dict[str, str]:
    return {"Authorization": f"Bearer {make_token('viewer-sub', role='viewer')}"}
