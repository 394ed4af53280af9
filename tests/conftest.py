"""Shared pytest fixtures for resolver, store, cache and HTTP tests.

None of these fixtures need a live PostgreSQL, Redis or Kafka. The durable
store is a ``LinkStore`` whose ``fetch_active`` is replaced per test, Redis is
a small in-memory stand-in, and the analytics emitter is an ``AsyncMock``.
"""

import datetime
from typing import AsyncGenerator
from unittest.mock import AsyncMock, MagicMock

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient

from linkresolver.analytics import AnalyticsEmitter
from linkresolver.background import BackgroundTaskTracker
from linkresolver.cache import LinkCache
from linkresolver.circuit_breaker import CircuitBreaker
from linkresolver.dependencies import get_link_resolver, get_service_manager
from linkresolver.main import app
from linkresolver.models import ShortLink
from linkresolver.resolution import LinkResolver
from linkresolver.store import LinkStore

# ============================================================================
# TEST DOUBLES
# ============================================================================


class FakeClock:
    """Manually advanced monotonic clock for breaker tests."""

    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FakeRedis:
    """In-memory subset of ``redis.asyncio.Redis`` used by ``LinkCache``."""

    def __init__(self) -> None:
        self.values: dict[str, str] = {}
        self.ttls: dict[str, int] = {}

    async def get(self, key: str) -> str | None:
        return self.values.get(key)

    async def setex(self, key: str, ttl: int, value: str) -> bool:
        self.values[key] = value
        self.ttls[key] = ttl
        return True

    async def ping(self) -> bool:
        return True


def _make_link(
    short_code: str = "abc123",
    destination_url: str = "https://example.com/landing",
    *,
    is_active: bool = True,
    click_count: int = 0,
    expires_at: datetime.datetime | None = None,
) -> ShortLink:
    return ShortLink(
        short_code=short_code,
        destination_url=destination_url,
        is_active=is_active,
        click_count=click_count,
        expires_at=expires_at,
    )


# ============================================================================
# COMPONENT FIXTURES
# ============================================================================


@pytest.fixture
def link_factory():
    return _make_link


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def breaker(clock: FakeClock) -> CircuitBreaker:
    return CircuitBreaker("test-store", failure_threshold=3, recovery_timeout_seconds=30.0, clock=clock)


@pytest.fixture
def fake_redis() -> FakeRedis:
    return FakeRedis()


@pytest.fixture
def cache(fake_redis: FakeRedis) -> LinkCache:
    return LinkCache(fake_redis, key_prefix="link")


@pytest.fixture
def store(breaker: CircuitBreaker) -> LinkStore:
    """Store whose ``fetch_active`` returns nothing until a test says otherwise."""
    link_store = LinkStore(MagicMock(), breaker, timeout_seconds=1.0)
    link_store.fetch_active = AsyncMock(return_value=None)
    return link_store


@pytest.fixture
def emitter() -> AsyncMock:
    mock_emitter = AsyncMock(spec=AnalyticsEmitter)
    mock_emitter.emit = AsyncMock(return_value=True)
    return mock_emitter


@pytest.fixture
def tasks() -> BackgroundTaskTracker:
    return BackgroundTaskTracker()


@pytest.fixture
def resolver(
    cache: LinkCache,
    store: LinkStore,
    emitter: AsyncMock,
    tasks: BackgroundTaskTracker,
) -> LinkResolver:
    return LinkResolver(cache, store, emitter, tasks, min_length=3, max_length=10)


# ============================================================================
# HTTP FIXTURES
# ============================================================================


@pytest.fixture
def service_manager(breaker: CircuitBreaker) -> MagicMock:
    manager = MagicMock()
    manager.store.ping = AsyncMock(return_value=True)
    manager.cache.ping = AsyncMock(return_value=True)
    manager.breaker = breaker
    return manager


@pytest_asyncio.fixture
async def client(resolver: LinkResolver, service_manager: MagicMock) -> AsyncGenerator[AsyncClient, None]:
    async def override_get_link_resolver() -> LinkResolver:
        return resolver

    async def override_get_service_manager() -> MagicMock:
        return service_manager

    app.dependency_overrides[get_link_resolver] = override_get_link_resolver
    app.dependency_overrides[get_service_manager] = override_get_service_manager

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac

    app.dependency_overrides.clear()
