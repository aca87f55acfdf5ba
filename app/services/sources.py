"""Content source models and the HTTP catalog client used to query them."""

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Protocol
from urllib.parse import quote

import httpx

from app.config import get_settings

logger = logging.getLogger(__name__)

# Rating value used by sources that do not expose one
RATING_UNKNOWN = -1.0


class SortOrder(str, Enum):
    """Listing orders a source may support."""

    UPDATED = "updated"
    NEWEST = "newest"
    POPULARITY = "popularity"
    RATING = "rating"
    ALPHABETICAL = "alphabetical"


class SourceError(Exception):
    """A source could not be queried or returned an unusable payload."""


@dataclass(frozen=True)
class Tag:
    """A genre/tag as exposed by a source."""

    title: str
    key: str = ""
    source: str = ""


@dataclass(frozen=True)
class Chapter:
    """A chapter entry from a manga's details."""

    id: str
    name: str
    number: float = 0.0
    url: str = ""


@dataclass(frozen=True)
class MangaItem:
    """A manga entry, either from the local library or fetched from a source."""

    id: str
    title: str
    url: str
    source: str
    tags: tuple[Tag, ...] = ()
    is_nsfw: bool = False
    rating: float = RATING_UNKNOWN
    cover_url: str | None = None
    description: str | None = None
    chapters: tuple[Chapter, ...] | None = None  # None until details are loaded


@dataclass(frozen=True)
class ContentSource:
    """An enabled content source and the catalog endpoint serving it."""

    name: str
    base_url: str = ""


class SourceRepository(Protocol):
    """Read access to a single content source."""

    async def sort_orders(self) -> list[SortOrder]: ...

    async def get_tags(self) -> list[Tag]: ...

    async def get_list(
        self, offset: int, order: SortOrder, tag: Tag | None = None
    ) -> list[MangaItem]: ...

    async def get_details(self, manga: MangaItem) -> MangaItem: ...


class SourceRepositoryFactory(Protocol):
    """Builds a repository for a content source."""

    def create(self, source: ContentSource) -> SourceRepository: ...


def _parse_tag(data: dict, source: str) -> Tag:
    return Tag(title=str(data["title"]), key=str(data.get("key") or data["title"]), source=source)


def _parse_chapter(data: dict) -> Chapter:
    return Chapter(
        id=str(data["id"]),
        name=data.get("name") or "",
        number=float(data.get("number") or 0),
        url=data.get("url") or "",
    )


def parse_manga(data: dict, source: str) -> MangaItem:
    """Convert a catalog JSON object into a MangaItem."""
    try:
        chapters = data.get("chapters")
        rating = data.get("rating")
        return MangaItem(
            id=str(data["id"]),
            title=data.get("title") or "Untitled",
            url=data.get("url") or "",
            source=source,
            tags=tuple(dict.fromkeys(_parse_tag(t, source) for t in data.get("tags") or [])),
            is_nsfw=bool(data.get("nsfw", False)),
            rating=float(rating) if rating is not None else RATING_UNKNOWN,
            cover_url=data.get("cover_url"),
            description=data.get("description"),
            chapters=tuple(_parse_chapter(c) for c in chapters) if chapters is not None else None,
        )
    except (AttributeError, KeyError, TypeError, ValueError) as e:
        raise SourceError(f"Malformed manga payload from {source}: {e}") from e


class HttpSourceRepository:
    """Queries a source's JSON catalog API.

    Endpoints, relative to the source's base URL:
    - GET /sort-orders -> ["updated", "popularity", ...]
    - GET /tags -> [{"title": ..., "key": ...}, ...]
    - GET /manga?sort=&tag=&offset= -> [manga, ...]
    - GET /manga/{id} -> manga with "chapters"
    """

    def __init__(self, source: ContentSource, client: httpx.AsyncClient):
        self._source = source
        self._client = client
        self._base_url = source.base_url.rstrip("/")
        self._tags: list[Tag] | None = None

    @property
    def source(self) -> ContentSource:
        return self._source

    async def _get_json(self, path: str, params: dict | None = None):
        url = f"{self._base_url}{path}"
        try:
            response = await self._client.get(url, params=params, follow_redirects=True)
            response.raise_for_status()
            return response.json()
        except httpx.HTTPError as e:
            raise SourceError(f"{self._source.name}: request to {url} failed: {e}") from e
        except ValueError as e:
            raise SourceError(f"{self._source.name}: invalid JSON from {url}") from e

    async def sort_orders(self) -> list[SortOrder]:
        payload = await self._get_json("/sort-orders")
        orders: list[SortOrder] = []
        for value in payload or []:
            try:
                orders.append(SortOrder(value))
            except ValueError:
                logger.debug("Ignoring unknown sort order %r from %s", value, self._source.name)
        return orders

    async def get_tags(self) -> list[Tag]:
        """Available tags, fetched once per repository."""
        if self._tags is None:
            payload = await self._get_json("/tags")
            try:
                self._tags = [_parse_tag(t, self._source.name) for t in payload or []]
            except (AttributeError, KeyError, TypeError) as e:
                raise SourceError(f"{self._source.name}: malformed tag list") from e
        return self._tags

    async def get_list(
        self, offset: int, order: SortOrder, tag: Tag | None = None
    ) -> list[MangaItem]:
        params: dict[str, str | int] = {"sort": order.value, "offset": offset}
        if tag is not None:
            params["tag"] = tag.key
        payload = await self._get_json("/manga", params=params)
        return [parse_manga(item, self._source.name) for item in payload or []]

    async def get_details(self, manga: MangaItem) -> MangaItem:
        payload = await self._get_json(f"/manga/{quote(manga.id, safe='')}")
        return parse_manga(payload, self._source.name)


@dataclass
class HttpSourceFactory:
    """Creates HTTP repositories that share one client.

    Use as an async context manager so the client is closed after a run.
    """

    timeout: float = field(default_factory=lambda: get_settings().source_timeout_seconds)
    client: httpx.AsyncClient | None = None

    def create(self, source: ContentSource) -> HttpSourceRepository:
        if self.client is None:
            self.client = httpx.AsyncClient(timeout=self.timeout)
        return HttpSourceRepository(source, self.client)

    async def aclose(self) -> None:
        if self.client is not None:
            await self.client.aclose()
            self.client = None

    async def __aenter__(self) -> "HttpSourceFactory":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.aclose()
