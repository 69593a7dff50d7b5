"""
Shared test fixtures for pytest.

Provides common fixtures for all test modules:
- settings: Test environment configuration (loaded from a patched environment)
- engine / session_factory / db: Per-test SQLite database with all tables
- users: One admin, one CSR, one customer and one guardian, committed
- auth_headers: Valid JWT Bearer token headers for a named user
- app / client: FastAPI app wired to the test database, plus an async HTTP client
- worker_pool: The app's background worker pool (started, no-op sleeps)
"""

from __future__ import annotations

from collections.abc import AsyncGenerator, Callable, Generator
from pathlib import Path
from unittest.mock import AsyncMock

import httpx
import pytest
from fastapi import FastAPI
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import NullPool

import consenthub.models  # noqa: F401 - registers all models with Base.metadata
from consenthub.auth.tokens import create_access_token
from consenthub.compliance.processing import DSARProcessor
from consenthub.config import Settings, get_settings
from consenthub.database import Base, get_db_session
from consenthub.infra.background_worker import BackgroundWorkerPool
from consenthub.main import build_worker_pool, create_app
from consenthub.models.user import User, UserRole

TEST_JWT_SECRET = "test-only-jwt-secret"
TEST_DATABASE_URL = "sqlite+aiosqlite://"


# ------------------------------------------------------------------ #
# Settings
# ------------------------------------------------------------------ #

@pytest.fixture(autouse=True)
def settings(monkeypatch: pytest.MonkeyPatch) -> Generator[Settings, None, None]:
    """Test environment settings.

    Patched into the environment so that every get_settings() call,
    including the ones services make when no settings are passed, sees
    the same configuration.
    """
    monkeypatch.setenv("ENVIRONMENT", "test")
    monkeypatch.setenv("SECRET_KEY", "test-secret-key")
    monkeypatch.setenv("JWT_SECRET", TEST_JWT_SECRET)
    monkeypatch.setenv("DATABASE_URL", TEST_DATABASE_URL)
    monkeypatch.setenv("DSAR_SIMULATE_PROCESSING", "false")
    monkeypatch.setenv("PUBLIC_BASE_URL", "https://consenthub.test")
    get_settings.cache_clear()
    yield get_settings()
    get_settings.cache_clear()


# ------------------------------------------------------------------ #
# Database
# ------------------------------------------------------------------ #

@pytest.fixture
async def engine(tmp_path: Path) -> AsyncGenerator[AsyncEngine, None]:
    """SQLite file database, one per test.

    Every session gets its own connection, so a request session and a
    background worker session do not share a transaction.
    """
    eng = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'consenthub.db'}", poolclass=NullPool)
    async with eng.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield eng
    await eng.dispose()


@pytest.fixture
def session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


@pytest.fixture
async def db(session_factory: async_sessionmaker[AsyncSession]) -> AsyncGenerator[AsyncSession, None]:
    async with session_factory() as session:
        yield session


# ------------------------------------------------------------------ #
# Users
# ------------------------------------------------------------------ #

@pytest.fixture
async def users(db: AsyncSession) -> dict[str, User]:
    """One user per role plus a guardian of minor_001."""
    people = {
        "admin": User(email="admin@example.com", name="Alice Admin", role=UserRole.ADMIN),
        "csr": User(email="csr@example.com", name="Carl Csr", role=UserRole.CSR),
        "customer": User(
            email="customer@example.com",
            name="Cora Customer",
            role=UserRole.CUSTOMER,
            phone="+15550100",
        ),
        "guardian": User(
            email="guardian@example.com",
            name="Gil Guardian",
            role=UserRole.CUSTOMER,
            minor_dependents=[
                {"id": "minor_001", "name": "Mia Minor", "age": 12, "relationship": "child"},
            ],
        ),
    }
    db.add_all(people.values())
    await db.commit()
    return people


@pytest.fixture
def auth_headers(users: dict[str, User], settings: Settings) -> Callable[[str], dict[str, str]]:
    """Return Authorization headers for one of the users fixture entries."""

    def _headers(name: str) -> dict[str, str]:
        user = users[name]
        token = create_access_token(
            user_id=user.id,
            role=user.role,
            email=user.email,
            settings=settings,
        )
        return {"Authorization": f"Bearer {token}"}

    return _headers


# ------------------------------------------------------------------ #
# Application
# ------------------------------------------------------------------ #

@pytest.fixture
def processor(session_factory: async_sessionmaker[AsyncSession], settings: Settings) -> DSARProcessor:
    return DSARProcessor(session_factory, settings, sleep=AsyncMock())


@pytest.fixture
async def worker_pool(
    settings: Settings,
    session_factory: async_sessionmaker[AsyncSession],
    processor: DSARProcessor,
) -> AsyncGenerator[BackgroundWorkerPool, None]:
    pool = build_worker_pool(settings, session_factory, processor)
    await pool.start()
    yield pool
    await pool.shutdown(drain=True)


@pytest.fixture
def app(
    settings: Settings,
    session_factory: async_sessionmaker[AsyncSession],
    worker_pool: BackgroundWorkerPool,
) -> FastAPI:
    """FastAPI app bound to the test database.

    The lifespan is not run by the ASGI transport, so the worker pool is
    attached to app.state directly.
    """
    application = create_app(settings)

    async def _test_db_session() -> AsyncGenerator[AsyncSession, None]:
        async with session_factory() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    application.dependency_overrides[get_db_session] = _test_db_session
    application.dependency_overrides[get_settings] = lambda: settings
    application.state.worker_pool = worker_pool
    return application


@pytest.fixture
async def client(app: FastAPI) -> AsyncGenerator[httpx.AsyncClient, None]:
    """Async HTTP client for testing the FastAPI application.

    Uses httpx.AsyncClient with ASGITransport to test the app without
    spinning up a real HTTP server.
    """
    transport = httpx.ASGITransport(app=app)  # type: ignore[arg-type]
    async with httpx.AsyncClient(transport=transport, base_url="http://testserver") as ac:
        yield ac
