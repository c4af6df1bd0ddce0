"""Shared test fixtures."""

import os

os.environ.setdefault("NPMSYNC_LOCAL_MODE", "1")
os.environ.setdefault("NPMSYNC_ADMIN_SECRET", "test-admin-secret")

import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from npmsync.db.base import Base
# Import all models to register with Base.metadata
import npmsync.db.models  # noqa: F401

from helpers import FakeRegistry


@pytest.fixture
async def db_engine():
    """Create an in-memory SQLite async engine for testing."""
    engine = create_async_engine("sqlite+aiosqlite:///", echo=False)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(db_engine):
    return async_sessionmaker(db_engine, class_=AsyncSession, expire_on_commit=False)


@pytest.fixture
async def db_session(session_factory):
    """Create a test database session."""
    async with session_factory() as session:
        yield session


@pytest.fixture
def fake_registry():
    return FakeRegistry()


@pytest.fixture
async def runtime(db_engine, fake_registry):
    """Runtime with in-memory queues and cache, talking to the fake registry."""
    from npmsync.config import Settings
    from npmsync.runtime import Runtime

    rt = Runtime(Settings(local_mode=True), db_engine, redis=None, transport=fake_registry.transport())
    yield rt
    await rt.http.aclose()
    await rt.registry_client.aclose()


@pytest.fixture
def app(db_engine, runtime):
    """Create a test application instance with in-memory DB."""
    from npmsync.main import create_app

    _app = create_app()
    _app.state.runtime = runtime
    _app.state.db_engine = db_engine
    _app.state.db_session_factory = runtime.session_factory
    _app.state.redis = None
    return _app


@pytest.fixture
async def client(app):
    """Async HTTP test client."""
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac


@pytest.fixture
def admin_headers():
    return {"X-Admin-Secret": "test-admin-secret"}


@pytest.fixture
async def registry_client(fake_registry):
    """RegistryClient wired to the fake registry."""
    from npmsync.config import Settings
    from npmsync.registry.client import RegistryClient

    client = RegistryClient.from_settings(Settings(local_mode=True), transport=fake_registry.transport())
    yield client
    await client.aclose()
