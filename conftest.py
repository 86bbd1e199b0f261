import os
from typing import AsyncGenerator

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

# Load .env.test when present; settings are read at import time below
from dotenv import load_dotenv

env_test_path = os.path.join(os.path.dirname(__file__), ".env.test")
if os.path.exists(env_test_path):
    load_dotenv(env_test_path, override=True)

# Tests run against a throwaway SQLite file per test, never a real database
os.environ["ENVIRONMENT"] = "test"
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite://")
os.environ.setdefault("STRIPE_WEBHOOK_SECRET", "whsec_test_secret")

from libs.common.config import get_settings  # noqa: E402

get_settings.cache_clear()

from libs.common.rate_limit import limiter  # noqa: E402
from libs.db.base import Base  # noqa: E402
from services.commerce_service import models as _commerce_models  # noqa: E402,F401
from services.commerce_service.app.main import app  # noqa: E402

limiter.enabled = False


@pytest_asyncio.fixture
async def test_engine(tmp_path):
    """
    Fresh SQLite database file per test.

    A file (rather than ``:memory:``) lets several sessions, and so several
    connections, see the same data, which the concurrency tests rely on.
    """
    db_url = os.environ.get("TEST_DATABASE_URL") or (
        f"sqlite+aiosqlite:///{tmp_path / 'commerce.db'}"
    )
    engine = create_async_engine(db_url)

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)

    await engine.dispose()


@pytest_asyncio.fixture
async def session_factory(test_engine) -> async_sessionmaker:
    """Session factory configured like the application's."""
    return async_sessionmaker(
        bind=test_engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
    )


@pytest_asyncio.fixture
async def db_session(session_factory) -> AsyncGenerator[AsyncSession, None]:
    """Yield a database session for direct service-level calls."""
    session = session_factory()
    try:
        yield session
    finally:
        await session.close()


@pytest_asyncio.fixture
async def client(session_factory) -> AsyncGenerator[AsyncClient, None]:
    """
    Yield an AsyncClient for the commerce app.

    Every request gets its own session, as in production, so tests observe
    only what a request actually committed.
    """
    from libs.db.session import get_async_db

    async def _override_get_db():
        async with session_factory() as session:
            try:
                yield session
            except Exception:
                await session.rollback()
                raise

    app.dependency_overrides[get_async_db] = _override_get_db

    async with AsyncClient(
        transport=ASGITransport(app=app), base_url="http://test"
    ) as ac:
        yield ac

    app.dependency_overrides.clear()


@pytest.fixture
def auth_headers() -> dict:
    """
    Placeholder bearer header. Identity comes from dependency overrides
    (see ``tests.factories.override_auth``), not from decoding this token.
    """
    return {"Authorization": "Bearer mock-token"}
