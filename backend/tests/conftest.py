"""Pytest configuration and fixtures for the billing-core tests.

Every test gets a fresh in-memory SQLite database (aiosqlite) built from
the declarative metadata.  pysqlite's own transaction handling is
switched off so that SAVEPOINTs (used by the event bus and the batch
passes) behave as they do on PostgreSQL.  The Redis-backed dashboard
cache is disabled; cache tests switch it on against ``FakeRedis``.
"""

from datetime import date, timedelta
from decimal import Decimal
from typing import AsyncGenerator
from unittest.mock import AsyncMock

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy import event
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from app.config import settings

settings.cache_enabled = False
settings.scheduler_enabled = False

from app.database import Base, get_db  # noqa: E402
from app.main import app  # noqa: E402
from app.models.client import Client  # noqa: E402
from app.models.project import Project  # noqa: E402
from app.services.invoices import create_invoice  # noqa: E402
from app.utils import cache as cache_module  # noqa: E402
from app.utils.cache import discard_pending_invalidations, run_pending_invalidations  # noqa: E402
from app.utils.clock import utc_today  # noqa: E402


# ── Test Database Setup ──────────────────────────────────────────

def sqlite_engine(url: str, **kwargs):
    """SQLite engine with working SAVEPOINT support."""
    engine = create_async_engine(url, **kwargs)

    @event.listens_for(engine.sync_engine, "connect")
    def _disable_pysqlite_transactions(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None

    @event.listens_for(engine.sync_engine, "begin")
    def _emit_begin(conn):
        conn.exec_driver_sql("BEGIN")

    return engine


@pytest_asyncio.fixture
async def test_engine():
    """In-memory database shared by every session of one test."""
    engine = sqlite_engine(
        "sqlite+aiosqlite://",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    await engine.dispose()


@pytest_asyncio.fixture
async def file_engine(tmp_path):
    """File-backed database; unlike the in-memory one, sessions get their
    own connections and do not see each other's uncommitted rows."""
    engine = sqlite_engine(f"sqlite+aiosqlite:///{tmp_path / 'billing.db'}")
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    await engine.dispose()


@pytest.fixture
def session_factory(test_engine):
    return async_sessionmaker(test_engine, class_=AsyncSession, expire_on_commit=False)


@pytest_asyncio.fixture
async def db_session(session_factory) -> AsyncGenerator[AsyncSession, None]:
    async with session_factory() as session:
        yield session
        await session.rollback()


@pytest_asyncio.fixture
async def client(session_factory) -> AsyncGenerator[AsyncClient, None]:
    """HTTP client; each request gets its own committed session, like get_db."""

    async def override_get_db():
        async with session_factory() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                discard_pending_invalidations(session)
                raise
            await run_pending_invalidations(session)

    app.dependency_overrides[get_db] = override_get_db

    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
        yield client

    app.dependency_overrides.clear()


# ── Cache ────────────────────────────────────────────────────────

class FakeRedis:
    """Dict-backed stand-in exposing the calls the cache helpers make."""

    def __init__(self):
        self.store = {}
        self.get = AsyncMock(side_effect=self._get)
        self.setex = AsyncMock(side_effect=self._setex)
        self.delete = AsyncMock(side_effect=self._delete)

    async def _get(self, key):
        return self.store.get(key)

    async def _setex(self, key, ttl, value):
        self.store[key] = value

    async def _delete(self, *keys):
        for key in keys:
            self.store.pop(key, None)
        return len(keys)

    async def scan_iter(self, match=None):
        prefix = (match or "*").rstrip("*")
        for key in list(self.store):
            if key.startswith(prefix):
                yield key


@pytest.fixture
def fake_redis(monkeypatch):
    fake = FakeRedis()
    monkeypatch.setattr(settings, "cache_enabled", True)
    monkeypatch.setattr(cache_module, "get_redis", AsyncMock(return_value=fake))
    return fake


# ── Test Data Fixtures ───────────────────────────────────────────

@pytest.fixture
def today() -> date:
    return utc_today()


@pytest.fixture
def make_client(db_session: AsyncSession):
    counter = {"n": 0}

    async def _make(**overrides) -> Client:
        counter["n"] += 1
        values = {
            "name": f"Client {counter['n']}",
            "company_name": f"Company {counter['n']}",
            "email": f"client{counter['n']}@example.com",
            "address": "12 Market Street",
        }
        values.update(overrides)
        client = Client(**values)
        db_session.add(client)
        await db_session.flush()
        return client

    return _make


@pytest.fixture
def make_project(db_session: AsyncSession, today: date):
    counter = {"n": 0}

    async def _make(client: Client, **overrides) -> Project:
        counter["n"] += 1
        values = {
            "project_code": f"PROJ-{counter['n']:03d}",
            "title": f"Project {counter['n']}",
            "client_id": client.id,
            "status": "in-progress",
            "start_date": today - timedelta(days=30),
            "deadline": today + timedelta(days=60),
            "milestones": [],
        }
        values.update(overrides)
        project = Project(**values)
        db_session.add(project)
        await db_session.flush()
        return project

    return _make


@pytest.fixture
def make_invoice(db_session: AsyncSession, today: date):
    """Create an invoice through the service with a single line item."""

    async def _make(client: Client, project: Project, amount="1000", **overrides):
        values = {
            "project_id": project.id,
            "client_id": client.id,
            "line_items": [{"description": "Development work", "quantity": 1, "rate": Decimal(amount)}],
            "discount": 0,
            "tax_rate": 0,
            "due_date": today + timedelta(days=30),
            "status": "sent",
            "today": today,
        }
        values.update(overrides)
        return await create_invoice(db_session, **values)

    return _make


# ── Test Markers ─────────────────────────────────────────────────

def pytest_configure(config):
    """Configure custom markers."""
    config.addinivalue_line("markers", "unit: Unit tests")
    config.addinivalue_line("markers", "integration: Integration tests")
    config.addinivalue_line("markers", "api: HTTP API tests")
    config.addinivalue_line("markers", "cache: Redis cache tests")
