"""Shared test fixtures for manga suggestions tests."""

import os

import pytest
from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine

# Override settings before any app imports
os.environ["DATABASE_URL"] = "sqlite+aiosqlite://"
os.environ["SUGGESTIONS_ENABLED"] = "false"
os.environ["SUGGESTIONS_NOTIFICATIONS"] = "false"
os.environ.setdefault("NOTIFY_WEBHOOK_URL", "")
os.environ["OTLP_ENDPOINT"] = ""

from app.models.manga import Base, ContentSourceRecord  # noqa: E402
from app.services.library import FavouritesRepository, HistoryRepository  # noqa: E402
from tests.factories import make_manga  # noqa: E402


@pytest.fixture
async def engine():
    """Create an in-memory SQLite engine for testing."""
    eng = create_async_engine("sqlite+aiosqlite://", echo=False)
    async with eng.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield eng
    await eng.dispose()


@pytest.fixture
async def session_factory(engine):
    """Create a session factory bound to the test engine."""
    return async_sessionmaker(engine, expire_on_commit=False)


@pytest.fixture
async def session(session_factory):
    """Create a database session for testing."""
    async with session_factory() as sess:
        yield sess


@pytest.fixture
async def populated_library(session_factory):
    """A library with two read manga, one favourite and two sources."""
    from datetime import datetime, timedelta

    now = datetime(2026, 3, 1, 12, 0)
    history = HistoryRepository(session_factory)
    favourites = FavouritesRepository(session_factory)

    await history.record(
        make_manga(id="seed-1", title="Blade Runner Kid", tags=("Action", "Comedy")),
        read_at=now - timedelta(days=1),
    )
    await history.record(
        make_manga(id="seed-2", title="Quiet Sorrow", tags=("Action", "Drama")),
        read_at=now,
    )
    await favourites.add(
        make_manga(id="seed-3", title="Garden Days", tags=("Comedy",)),
        added_at=now,
    )

    async with session_factory() as sess:
        sess.add(ContentSourceRecord(name="src-a", base_url="http://src-a.test", sort_key=0))
        sess.add(
            ContentSourceRecord(
                name="src-b", base_url="http://src-b.test", enabled=False, sort_key=1
            )
        )
        await sess.commit()
    return session_factory
