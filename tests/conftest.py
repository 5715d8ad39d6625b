"""Pytest fixtures for gallery delivery integration tests."""

import asyncio
from collections.abc import AsyncGenerator
from unittest.mock import MagicMock

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy import create_engine
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

import src.models  # noqa: F401  registers every table on Base.metadata
from src.app import app
from src.database.base import Base
from src.database.session import get_db
from src.modules.archive.dispatcher import FinalizeJobDispatcher
from src.modules.delivery.router import get_finalize_dispatcher


@pytest.fixture(scope="session")
def event_loop():
    """Create a single event loop for the entire test session."""
    loop = asyncio.new_event_loop()
    yield loop
    loop.close()


@pytest.fixture
def database_path(tmp_path):
    """File-backed SQLite so async writers and the sync change-feed processor share data."""
    return tmp_path / "galleries.db"


@pytest_asyncio.fixture
async def async_test_engine(database_path):
    engine = create_async_engine(f"sqlite+aiosqlite:///{database_path}", echo=False)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def sync_test_engine(database_path):
    engine = create_engine(f"sqlite:///{database_path}")
    Base.metadata.create_all(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(async_test_engine):
    return async_sessionmaker(async_test_engine, class_=AsyncSession, expire_on_commit=False)


@pytest_asyncio.fixture
async def async_session(session_factory) -> AsyncGenerator[AsyncSession, None]:
    async with session_factory() as session:
        yield session


@pytest.fixture
def mock_dispatcher():
    """A dispatcher that records calls instead of publishing to the broker."""
    dispatcher = MagicMock(spec=FinalizeJobDispatcher)
    dispatcher.dispatch.side_effect = lambda gallery_id, order_id: f"job-{gallery_id}-{order_id}"
    return dispatcher


@pytest_asyncio.fixture
async def async_client(
    async_session: AsyncSession, mock_dispatcher
) -> AsyncGenerator[AsyncClient, None]:
    """Yield an httpx AsyncClient wired to the FastAPI app with a test DB session."""

    async def override_get_db() -> AsyncGenerator[AsyncSession, None]:
        yield async_session

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_finalize_dispatcher] = lambda: mock_dispatcher

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        yield client

    app.dependency_overrides.clear()

