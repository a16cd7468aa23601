"""Pytest configuration and fixtures for the Omeka proxy tests.

This module provides reusable fixtures for:
- Test settings
- An in-memory stand-in for ``redis.asyncio.Redis``
- A fake Omeka-S API served through ``httpx.MockTransport``
- The FastAPI application and an async test client
"""

import fnmatch
import json
import math
import time
from collections.abc import AsyncGenerator, AsyncIterator, Callable
from typing import Any
from unittest.mock import AsyncMock, MagicMock

import httpx
import pytest
from fastapi import FastAPI
from httpx import ASGITransport, AsyncClient

from omeka_proxy.config import Settings
from omeka_proxy.dependencies import ProxyServices, build_services
from omeka_proxy.main import create_app
from omeka_proxy.services.cache import CacheStore
from omeka_proxy.services.omeka import OmekaClient

OMEKA_API = "https://omeka.test/api"


# =============================================================================
# In-memory Redis
# =============================================================================


class InMemoryRedis:
    """The subset of ``redis.asyncio.Redis`` used by CacheStore."""

    def __init__(self) -> None:
        self.store: dict[str, tuple[str, float | None]] = {}
        self.fail = False

    def _check(self) -> None:
        if self.fail:
            raise ConnectionError("redis unavailable")

    def _live(self, key: str) -> tuple[str, float | None] | None:
        entry = self.store.get(key)
        if entry is None:
            return None
        expires_at = entry[1]
        if expires_at is not None and expires_at <= time.monotonic():
            del self.store[key]
            return None
        return entry

    async def get(self, key: str) -> str | None:
        self._check()
        entry = self._live(key)
        return entry[0] if entry else None

    async def setex(self, key: str, ttl: int, value: str) -> bool:
        self._check()
        self.store[key] = (value, time.monotonic() + ttl)
        return True

    async def set(self, key: str, value: str) -> bool:
        self._check()
        self.store[key] = (value, None)
        return True

    async def delete(self, *keys: str) -> int:
        self._check()
        return sum(1 for key in keys if self.store.pop(key, None) is not None)

    async def ttl(self, key: str) -> int:
        self._check()
        entry = self._live(key)
        if entry is None:
            return -2
        if entry[1] is None:
            return -1
        return math.ceil(entry[1] - time.monotonic())

    async def flushall(self) -> bool:
        self._check()
        self.store.clear()
        return True

    async def scan_iter(self, match: str | None = None) -> AsyncIterator[str]:
        self._check()
        for key in list(self.store):
            if match is None or fnmatch.fnmatchcase(key, match):
                yield key

    async def ping(self) -> bool:
        self._check()
        return True

    async def aclose(self) -> None:
        return None

    def value(self, key: str) -> Any:
        """Decoded value stored under ``key`` (test helper)."""
        entry = self._live(key)
        return json.loads(entry[0]) if entry else None


# =============================================================================
# Fake Omeka-S API
# =============================================================================


class FakeOmeka:
    """Routes ``path -> JSON`` served through ``httpx.MockTransport``.

    A route value may be a callable taking the request, for paging or
    asserting on query parameters. Every request is recorded.
    """

    def __init__(self) -> None:
        self.routes: dict[str, Any] = {}
        self.requests: list[httpx.Request] = []

    def add(self, path: str, body: Any, status_code: int = 200) -> None:
        self.routes[path] = (status_code, body)

    def add_handler(self, path: str, handler: Callable[[httpx.Request], Any]) -> None:
        self.routes[path] = handler

    def calls(self, path: str) -> list[httpx.Request]:
        return [r for r in self.requests if r.url.path.endswith(path)]

    def handle(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        path = request.url.path.removeprefix("/api")
        route = self.routes.get(path)
        if route is None:
            return httpx.Response(404, json={"errors": {"error": "Not found"}})
        if callable(route):
            route = route(request)
            if isinstance(route, httpx.Response):
                return route
            route = (200, route)
        status_code, body = route
        return httpx.Response(status_code, json=body)

    def client(self, settings: Settings) -> OmekaClient:
        """OmekaClient whose transport is this fake."""
        client = OmekaClient(settings)
        client._client = httpx.AsyncClient(
            base_url=settings.omeka_api,
            transport=httpx.MockTransport(self.handle),
        )
        return client


# =============================================================================
# Settings Fixtures
# =============================================================================


@pytest.fixture
def test_settings() -> Settings:
    """Settings with fast timings and fixed item sets."""
    return Settings(
        app_env="development",  # type: ignore[arg-type]
        log_level="DEBUG",  # type: ignore[arg-type]
        log_format="console",  # type: ignore[arg-type]
        redis_url="redis://localhost:6379/15",
        omeka_api=OMEKA_API,
        omeka_site="3",
        featured_item_set=7,
        heroes_item_set=8,
        mirror_page_delay=0,
        mirror_lock_timeout=5,
        invalidation_enabled=False,
    )


# =============================================================================
# Infrastructure Fixtures
# =============================================================================


@pytest.fixture
def fake_redis() -> InMemoryRedis:
    return InMemoryRedis()


@pytest.fixture
def cache_store(fake_redis: InMemoryRedis) -> CacheStore:
    return CacheStore(fake_redis)  # type: ignore[arg-type]


@pytest.fixture
def fake_omeka() -> FakeOmeka:
    return FakeOmeka()


@pytest.fixture
def mock_client() -> MagicMock:
    """OmekaClient double for service-level tests."""
    client = MagicMock(spec=OmekaClient)
    client.fetch_items = AsyncMock(return_value=[])
    client.fetch_item = AsyncMock()
    client.fetch_media = AsyncMock(return_value=[])
    client.fetch_site_pages = AsyncMock(return_value=[])
    client.passthrough = AsyncMock()
    return client


@pytest.fixture
async def services(
    test_settings: Settings, fake_redis: InMemoryRedis, fake_omeka: FakeOmeka
) -> AsyncGenerator[ProxyServices, None]:
    """Fully wired services talking to the fake Omeka-S and in-memory Redis."""
    bundle = build_services(
        test_settings,
        fake_redis,  # type: ignore[arg-type]
        client=fake_omeka.client(test_settings),
    )
    yield bundle
    await bundle.aclose()


# =============================================================================
# Application Fixtures
# =============================================================================


@pytest.fixture
def app(test_settings: Settings, services: ProxyServices) -> FastAPI:
    """Test application with services installed (the lifespan does not run)."""
    application = create_app(settings=test_settings)
    application.state.services = services
    return application


@pytest.fixture
async def async_client(app: FastAPI) -> AsyncGenerator[AsyncClient, None]:
    """Create an async HTTP client for testing.

    Usage:
        async def test_endpoint(async_client: AsyncClient):
            response = await async_client.get("/health/live")
            assert response.status_code == 200
    """
    async with AsyncClient(
        transport=ASGITransport(app=app),
        base_url="http://test",
    ) as client:
        yield client
