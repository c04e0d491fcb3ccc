"""
Shared test fixtures.

Engine tests run against InMemoryDocumentStore. API tests use an
in-memory SQLite database; JSONB columns are compiled as JSON and UUID
columns as CHAR(36) for SQLite compatibility.
For integration tests against PostgreSQL, use docker compose.
"""

from typing import AsyncGenerator

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy.dialects.postgresql import JSONB, UUID
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.ext.compiler import compiles
from sqlalchemy.pool import StaticPool

from rostersync.core.database import Base, get_db
from rostersync.main import app
from rostersync.models import CommitAuditRecord, Document, ImportTransactionRecord  # noqa: F401
from rostersync.services.store import InMemoryDocumentStore, SqlDocumentStore


# ─── SQLite compatibility: JSONB → JSON, UUID → CHAR(36) ──────

@compiles(JSONB, "sqlite")
def compile_jsonb_sqlite(type_, compiler, **kw):
    return "JSON"


@compiles(UUID, "sqlite")
def compile_uuid_sqlite(type_, compiler, **kw):
    return "CHAR(36)"


# Use SQLite async for tests (aiosqlite); one shared connection per test
TEST_DATABASE_URL = "sqlite+aiosqlite:///:memory:"


@pytest_asyncio.fixture
async def engine():
    """Create all tables before each test, drop after."""
    test_engine = create_async_engine(
        TEST_DATABASE_URL,
        echo=False,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    async with test_engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield test_engine
    async with test_engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
    await test_engine.dispose()


@pytest_asyncio.fixture
async def db_session(engine) -> AsyncGenerator[AsyncSession, None]:
    """Provide a test database session."""
    session_factory = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
    async with session_factory() as session:
        yield session


@pytest_asyncio.fixture
async def client(db_session: AsyncSession) -> AsyncGenerator[AsyncClient, None]:
    """Provide a test HTTP client with database override."""

    async def override_get_db():
        try:
            yield db_session
            await db_session.commit()
        except Exception:
            await db_session.rollback()
            raise

    app.dependency_overrides[get_db] = override_get_db

    async with AsyncClient(
        transport=ASGITransport(app=app),
        base_url="http://test",
    ) as ac:
        yield ac

    app.dependency_overrides.clear()


@pytest_asyncio.fixture
async def sql_store(db_session: AsyncSession) -> SqlDocumentStore:
    return SqlDocumentStore(db_session)


@pytest.fixture
def store() -> InMemoryDocumentStore:
    return InMemoryDocumentStore()


# ─── Helper factories ─────────────────────────────────────────

@pytest.fixture
def make_store():
    """Factory fixture for an InMemoryDocumentStore seeded per collection."""
    def _make(people=(), rooms=(), schedules=(), terms=()) -> InMemoryDocumentStore:
        return InMemoryDocumentStore({
            "people": list(people),
            "rooms": list(rooms),
            "schedules": list(schedules),
            "terms": list(terms),
        })
    return _make
