"""Pytest configuration and shared fixtures."""

from collections.abc import AsyncGenerator

import pytest
from httpx import ASGITransport, AsyncClient

from tests.fakes import FakeClock, RecordingStore
from throttle.config import Settings
from throttle.core.rate_limit import RequestContext, ThrottleEngine
from throttle.main import create_app


@pytest.fixture
def clock() -> FakeClock:
    """Provide a fake clock starting mid-window."""
    return FakeClock()


@pytest.fixture
def store(clock: FakeClock) -> RecordingStore:
    """Provide an in-memory store that records expire calls."""
    return RecordingStore(clock)


@pytest.fixture
def engine(store: RecordingStore, clock: FakeClock) -> ThrottleEngine:
    """Provide an engine counting in the memory store."""
    return ThrottleEngine(store=store, clock=clock, prefix="test")


@pytest.fixture
def context() -> RequestContext:
    """Provide a typical anonymous browser request."""
    return RequestContext(
        remote_addr="203.0.113.7",
        user_agent="Mozilla/5.0 (X11; Linux x86_64)",
        path="/api/items",
    )


@pytest.fixture
def app_settings() -> Settings:
    """Provide settings with a small limit and no Redis."""
    return Settings(
        _env_file=None,
        redis_url=None,
        throttle_limit=2,
        throttle_period=60,
        throttle_prefix="test-app",
    )


@pytest.fixture
async def client(
    app_settings: Settings, store: RecordingStore, clock: FakeClock
) -> AsyncGenerator[AsyncClient, None]:
    """Provide an async HTTP client for an app throttled by the memory store."""
    app = create_app(app_settings, store=store)
    app.state.throttle_engine.clock = clock

    @app.get("/api/items")
    async def list_items() -> dict[str, list[str]]:
        return {"items": ["a", "b"]}

    async with AsyncClient(
        transport=ASGITransport(app=app),
        base_url="http://test",
    ) as client:
        yield client
