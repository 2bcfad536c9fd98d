"""Shared test fixtures for the CareAlert test suite.

Provides test settings, a throwaway SQLite database per test, an alert
service wired to a recording broadcaster, and a FastAPI test client.
"""

from __future__ import annotations

from collections.abc import AsyncGenerator
from pathlib import Path
from typing import Any

import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine

from carealert.alerting.broadcast import ConnectionRegistry
from carealert.alerting.service import AlertService
from carealert.core.config import Settings
from carealert.core.database import init_models


@pytest.fixture
def test_settings(tmp_path: Path) -> Settings:
    """Create test settings backed by a file SQLite database."""
    return Settings(
        app_env="testing",
        debug=False,
        database_url=f"sqlite+aiosqlite:///{tmp_path / 'carealert.db'}",
        cors_origins=["http://localhost:3000"],
        rate_limit_requests=10_000,
        notifications_simulate=True,
        notification_worker_count=0,
        ws_heartbeat_interval=1,
    )


@pytest.fixture
async def db_engine(test_settings: Settings) -> AsyncGenerator[AsyncEngine, None]:
    engine = create_async_engine(test_settings.database_url or "")
    await init_models(engine)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(db_engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(bind=db_engine, class_=AsyncSession, expire_on_commit=False)


@pytest.fixture
async def db_session(session_factory: async_sessionmaker[AsyncSession]) -> AsyncGenerator[AsyncSession, None]:
    async with session_factory() as session:
        yield session


class RecordingRegistry:
    """Broadcast registry that remembers every published event."""

    def __init__(self) -> None:
        self.events: list[tuple[str, Any]] = []
        self.observers: list[Any] = []

    def register(self, observer: Any, tenant_id: str | None = None) -> None:
        self.observers.append(observer)

    def unregister(self, observer: Any) -> None:
        self.observers.remove(observer)

    async def publish(self, event_type: str, payload: Any) -> int:
        self.events.append((event_type, payload))
        return len(self.observers)

    @property
    def event_types(self) -> list[str]:
        return [event_type for event_type, _ in self.events]


@pytest.fixture
def broadcaster() -> RecordingRegistry:
    return RecordingRegistry()


@pytest.fixture
def alert_service(db_session: AsyncSession, broadcaster: RecordingRegistry, test_settings: Settings) -> AlertService:
    return AlertService(db_session, broadcaster=broadcaster, settings=test_settings)


@pytest.fixture
async def test_app(
    test_settings: Settings,
    db_engine: AsyncEngine,
    session_factory: async_sessionmaker[AsyncSession],
) -> AsyncGenerator[Any, None]:
    """Create the application with its state wired to the test database.

    The lifespan is skipped; app.state is populated directly.
    """
    from carealert.api.main import create_app

    app = create_app(test_settings)
    app.state.db_engine = db_engine
    app.state.db_session_factory = session_factory
    app.state.broadcast_registry = ConnectionRegistry(send_timeout=1.0)
    app.state.notification_queue = None
    yield app


@pytest.fixture
async def client(test_app: Any) -> AsyncGenerator[AsyncClient, None]:
    """Create an async HTTP test client."""
    transport = ASGITransport(app=test_app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac
