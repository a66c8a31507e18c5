"""Shared pytest fixtures for the Veritas scraper tests.

Fixture summary
---------------
engine            — Async SQLite engine on a per-test file with all tables created.
session_factory   — async_sessionmaker bound to ``engine``.
repository        — ScrapingRepository over ``session_factory``.
test_settings     — Settings copy with fast feed retries and a small pool.
make_source       — Coroutine factory inserting a Source row.
client            — httpx.AsyncClient against the FastAPI app with DB override.

Every test gets its own database file, so no cleanup is needed between
tests.  No external infrastructure (PostgreSQL, Redis) is required.
"""

from __future__ import annotations

import os
from collections.abc import AsyncGenerator, Awaitable, Callable
from typing import Any

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker

# ---------------------------------------------------------------------------
# Test environment bootstrap
# ---------------------------------------------------------------------------
# Set required env vars before any application modules are imported so that
# Settings() does not raise a ValidationError during collection.

_TEST_ENV_DEFAULTS: dict[str, str] = {
    "DATABASE_URL": "sqlite+aiosqlite:///:memory:",
    "CELERY_BROKER_URL": "memory://",
    "CELERY_RESULT_BACKEND": "cache+memory://",
    "LOG_LEVEL": "WARNING",
}

for _key, _default in _TEST_ENV_DEFAULTS.items():
    os.environ.setdefault(_key, _default)

# ---------------------------------------------------------------------------
# Application imports (after env bootstrap)
# ---------------------------------------------------------------------------

from veritas_scraper.config.settings import Settings, get_settings  # noqa: E402
from veritas_scraper.core.database import (  # noqa: E402
    Base,
    build_engine,
    build_session_factory,
)
from veritas_scraper.core.models import Source  # noqa: E402
from veritas_scraper.scraper.repository import ScrapingRepository  # noqa: E402
from tests.factories.sources import SourceFactory  # noqa: E402

# Clear the lru_cache so Settings() re-reads from the patched environment.
get_settings.cache_clear()


# ---------------------------------------------------------------------------
# Database
# ---------------------------------------------------------------------------


@pytest.fixture
def database_url(tmp_path) -> str:
    """Return a SQLite DSN on a file unique to the current test."""
    return f"sqlite+aiosqlite:///{tmp_path / 'veritas_test.db'}"


@pytest_asyncio.fixture
async def engine(database_url: str) -> AsyncGenerator[AsyncEngine, None]:
    """Create an async engine with every table created.

    The engine is built on the test's own event loop to avoid
    'Future attached to a different loop' errors.
    """
    test_engine = build_engine(database_url)
    async with test_engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield test_engine
    await test_engine.dispose()


@pytest.fixture
def session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return build_session_factory(engine)


@pytest.fixture
def repository(session_factory: async_sessionmaker[AsyncSession]) -> ScrapingRepository:
    return ScrapingRepository(session_factory)


@pytest.fixture
def test_settings() -> Settings:
    """Settings tuned for tests: no backoff waits, two feed attempts."""
    return get_settings().model_copy(
        update={
            "scraper_feed_max_attempts": 2,
            "scraper_feed_backoff_seconds": 0.0,
            "scraper_worker_pool_size": 2,
            "scraper_quality_threshold": 50,
        }
    )


@pytest.fixture
def make_source(
    repository: ScrapingRepository,
) -> Callable[..., Awaitable[Source]]:
    """Return a coroutine that inserts a Source built by SourceFactory.

    Usage::

        source = await make_source(name="Example News", rss_url="https://...")
    """

    async def _make(**overrides: Any) -> Source:
        return await repository.create_source(**SourceFactory.build(**overrides))

    return _make


# ---------------------------------------------------------------------------
# FastAPI test client with DB override
# ---------------------------------------------------------------------------


@pytest_asyncio.fixture
async def client(
    session_factory: async_sessionmaker[AsyncSession],
) -> AsyncGenerator[AsyncClient, None]:
    """Yield an httpx.AsyncClient against the FastAPI app.

    The app's ``get_db`` dependency is overridden to open sessions on the
    per-test database so that rows created through ``repository`` are
    visible inside route handlers.
    """
    from veritas_scraper.api.main import app  # noqa: PLC0415
    from veritas_scraper.core.database import get_db  # noqa: PLC0415

    async def _override_get_db() -> AsyncGenerator[AsyncSession, None]:
        async with session_factory() as session:
            yield session

    app.dependency_overrides[get_db] = _override_get_db

    transport = ASGITransport(app=app)
    async with AsyncClient(
        transport=transport,
        base_url="http://test",
        follow_redirects=True,
    ) as ac:
        yield ac

    app.dependency_overrides.clear()
