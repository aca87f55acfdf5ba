"""End-to-end suggestions run against the database and an HTTP catalog."""

import random

import httpx

from app.services.library import (
    FavouritesRepository,
    HistoryRepository,
    SourcesRepository,
    SuggestionRepository,
)
from app.services.notifications import LogNotificationSink
from app.services.sources import HttpSourceFactory
from app.services.suggestions import SuggestionEngine, SuggestionsConfig


def _manga_json(id: str, *tags: str, **extra) -> dict:
    return {
        "id": id,
        "title": f"Title {id}",
        "url": f"http://src-a.test/read/{id}",
        "tags": [{"title": t, "key": t.lower()} for t in tags],
        **extra,
    }


CATALOG = [
    _manga_json("c-drama", "Drama"),
    _manga_json("seed-1", "Action", "Comedy"),
    _manga_json("c-best", "Action", "Comedy"),
    _manga_json("c-horror", "Horror"),
]


class CatalogServer:
    """A fake source catalog for httpx.MockTransport."""

    def __init__(self):
        self.list_params: list[httpx.QueryParams] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        path = request.url.path
        if path == "/sort-orders":
            return httpx.Response(200, json=["popularity", "updated"])
        if path == "/tags":
            return httpx.Response(
                200, json=[{"title": t, "key": t.lower()} for t in ("Drama", "Action", "Horror")]
            )
        if path == "/manga":
            self.list_params.append(request.url.params)
            return httpx.Response(200, json=CATALOG)
        if path.startswith("/manga/"):
            manga_id = path.rsplit("/", 1)[-1]
            [item] = [m for m in CATALOG if m["id"] == manga_id]
            return httpx.Response(200, json={**item, "chapters": [{"id": "ch-1"}], "rating": 0.9})
        return httpx.Response(404)


class TestSuggestionsEndToEnd:
    async def test_run_stores_ranked_suggestions(self, populated_library):
        server = CatalogServer()
        client = httpx.AsyncClient(transport=httpx.MockTransport(server))
        store = SuggestionRepository(populated_library)
        sink = LogNotificationSink()

        async with HttpSourceFactory(client=client) as repositories:
            engine = SuggestionEngine(
                history=HistoryRepository(populated_library),
                favourites=FavouritesRepository(populated_library),
                sources=SourcesRepository(populated_library),
                repositories=repositories,
                store=store,
                config=SuggestionsConfig(notifications_enabled=True),
                notifier=sink,
                rng=random.Random(7),
            )
            run = await engine.run()

        # Only the enabled source is queried, sorted by update and filtered by the top tag
        assert len(server.list_params) == 1
        assert server.list_params[0]["sort"] == "updated"
        assert server.list_params[0]["tag"] == "action"

        assert run.failures == []
        assert [s.manga.id for s in run.suggestions] == ["c-best", "c-drama", "c-horror"]
        assert run.suggestions[-1].relevance == 0.0

        stored = await store.list_top()
        assert [(s.manga.id, s.relevance) for s in stored] == [
            (s.manga.id, s.relevance) for s in run.suggestions
        ]

        assert run.notification is not None
        assert run.notification.manga_id == "c-best"
        assert sink.sent == [run.notification]
