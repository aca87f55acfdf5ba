"""Integration tests for the suggestions and sources API."""

from datetime import datetime
from unittest.mock import AsyncMock, MagicMock, patch

import httpx
import pytest

from app.services.library import SuggestionRepository
from app.services.suggestions import ScoredSuggestion
from app.services.worker import WorkerStatus
from tests.factories import make_manga

# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def mock_worker():
    """A stand-in for the suggestions worker singleton."""
    worker = MagicMock()
    worker.status = WorkerStatus(
        last_run_at=datetime(2026, 3, 1, 12, 0),
        last_count=2,
        failed_sources=["src-b"],
    )
    worker.is_scheduled = MagicMock(return_value=True)
    worker.start_now = MagicMock(return_value=True)
    worker.cancel_running = MagicMock(return_value=True)
    return worker


@pytest.fixture
async def patched_app(engine, populated_library, mock_worker):
    """Patch the app module globals so all routes use the test DB.

    Sets _engine and _session_factory in app.models.manga so every
    repository resolves to the in-memory test database, and replaces the
    worker singleton with a mock.
    """
    import app.models.manga as manga_mod

    original_engine = manga_mod._engine
    original_factory = manga_mod._session_factory

    manga_mod._engine = engine
    manga_mod._session_factory = populated_library

    with (
        # Tables already exist on the test engine
        patch("app.main.init_db", new_callable=AsyncMock),
        patch("app.main.get_suggestions_worker", return_value=mock_worker),
        patch("app.routers.api.get_suggestions_worker", return_value=mock_worker),
    ):
        from app.main import app

        yield app

    manga_mod._engine = original_engine
    manga_mod._session_factory = original_factory


@pytest.fixture
async def client(patched_app):
    """Async HTTP test client using ASGI transport."""
    transport = httpx.ASGITransport(app=patched_app)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as c:
        yield c


async def _store_suggestions(session_factory, count: int) -> None:
    await SuggestionRepository(session_factory).replace_all(
        [
            ScoredSuggestion(
                manga=make_manga(id=f"s-{i}", title=f"Suggested {i}", tags=("Action", "Drama")),
                relevance=round(1 - i / 10, 2),
            )
            for i in range(count)
        ]
    )


# ---------------------------------------------------------------------------
# 1. App startup
# ---------------------------------------------------------------------------


class TestAppStartup:
    async def test_app_responds(self, client: httpx.AsyncClient):
        resp = await client.get("/openapi.json")
        assert resp.status_code == 200
        assert resp.json()["info"]["title"] == "Manga Suggestions"


# ---------------------------------------------------------------------------
# 2. Suggestions
# ---------------------------------------------------------------------------


class TestSuggestions:
    async def test_empty(self, client: httpx.AsyncClient):
        resp = await client.get("/api/suggestions")
        assert resp.status_code == 200
        assert resp.json() == []

    async def test_lists_in_rank_order(self, client: httpx.AsyncClient, populated_library):
        await _store_suggestions(populated_library, 3)

        resp = await client.get("/api/suggestions")

        assert resp.status_code == 200
        data = resp.json()
        assert [s["id"] for s in data] == ["s-0", "s-1", "s-2"]
        assert data[0]["relevance"] == 1.0
        assert data[0]["tags"] == ["Action", "Drama"]
        assert data[0]["source"] == "src-a"

    async def test_limit(self, client: httpx.AsyncClient, populated_library):
        await _store_suggestions(populated_library, 5)
        resp = await client.get("/api/suggestions", params={"limit": 2})
        assert [s["id"] for s in resp.json()] == ["s-0", "s-1"]

    async def test_invalid_limit(self, client: httpx.AsyncClient):
        resp = await client.get("/api/suggestions", params={"limit": 0})
        assert resp.status_code == 422

    async def test_refresh_starts_run(self, client: httpx.AsyncClient, mock_worker):
        resp = await client.post("/api/suggestions/refresh")
        assert resp.status_code == 200
        assert resp.json() == {"started": True}
        mock_worker.start_now.assert_called_once()

    async def test_refresh_while_running(self, client: httpx.AsyncClient, mock_worker):
        mock_worker.start_now.return_value = False
        resp = await client.post("/api/suggestions/refresh")
        assert resp.json() == {"started": False}

    async def test_cancel_run(self, client: httpx.AsyncClient, mock_worker):
        resp = await client.delete("/api/suggestions/run")
        assert resp.status_code == 200
        mock_worker.cancel_running.assert_called_once()

    async def test_cancel_when_idle(self, client: httpx.AsyncClient, mock_worker):
        mock_worker.cancel_running.return_value = False
        resp = await client.delete("/api/suggestions/run")
        assert resp.status_code == 404

    async def test_status(self, client: httpx.AsyncClient, populated_library):
        await _store_suggestions(populated_library, 2)

        resp = await client.get("/api/suggestions/status")

        assert resp.status_code == 200
        data = resp.json()
        assert data["is_running"] is False
        assert data["is_scheduled"] is True
        assert data["last_count"] == 2
        assert data["failed_sources"] == ["src-b"]
        assert data["stored_count"] == 2
        assert data["last_error"] is None


# ---------------------------------------------------------------------------
# 3. Sources
# ---------------------------------------------------------------------------


class TestSources:
    async def test_list(self, client: httpx.AsyncClient):
        resp = await client.get("/api/sources")
        assert resp.status_code == 200
        assert resp.json() == [
            {"name": "src-a", "base_url": "http://src-a.test", "enabled": True},
            {"name": "src-b", "base_url": "http://src-b.test", "enabled": False},
        ]

    async def test_enable_existing(self, client: httpx.AsyncClient):
        resp = await client.put("/api/sources/src-b", json={"enabled": True})
        assert resp.status_code == 200
        assert resp.json() == {"name": "src-b", "base_url": "http://src-b.test", "enabled": True}

    async def test_create(self, client: httpx.AsyncClient):
        resp = await client.put("/api/sources/src-c", json={"base_url": "http://src-c.test"})
        assert resp.status_code == 200
        assert resp.json()["enabled"] is True

        names = [s["name"] for s in (await client.get("/api/sources")).json()]
        assert names == ["src-a", "src-b", "src-c"]

    async def test_create_requires_base_url(self, client: httpx.AsyncClient):
        resp = await client.put("/api/sources/src-c", json={"enabled": True})
        assert resp.status_code == 422

        names = [s["name"] for s in (await client.get("/api/sources")).json()]
        assert "src-c" not in names
