"""Database-backed library: history, favourites, sources and suggestions."""

import logging
from collections.abc import Sequence
from datetime import datetime

from sqlalchemy import delete, func, select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from sqlalchemy.orm import selectinload

from app.models.manga import (
    ContentSourceRecord,
    Favourite,
    HistoryEntry,
    Manga,
    MangaTag,
    Suggestion,
    get_session_factory,
)
from app.services.sources import ContentSource, MangaItem, Tag
from app.services.suggestions import ScoredSuggestion

logger = logging.getLogger(__name__)


def to_manga_item(manga: Manga) -> MangaItem:
    """Convert a Manga row (with tags loaded) to a MangaItem."""
    return MangaItem(
        id=manga.id,
        title=manga.title,
        url=manga.url,
        source=manga.source,
        tags=tuple(Tag(title=t.title, key=t.key, source=t.source) for t in manga.tags),
        is_nsfw=manga.is_nsfw,
        rating=manga.rating,
        cover_url=manga.cover_url,
        description=manga.description,
    )


async def save_manga(session: AsyncSession, item: MangaItem) -> Manga:
    """Insert or update a Manga row and replace its tags."""
    manga = await session.get(
        Manga, (item.source, item.id), options=[selectinload(Manga.tags)]
    )
    if manga is None:
        manga = Manga(source=item.source, id=item.id, title=item.title, tags=[])
        session.add(manga)
    manga.title = item.title
    manga.url = item.url
    manga.cover_url = item.cover_url
    manga.description = item.description
    manga.rating = item.rating
    manga.is_nsfw = item.is_nsfw
    manga.tags = [
        MangaTag(title=tag.title, key=tag.key, source=tag.source, position=i)
        for i, tag in enumerate(item.tags)
    ]
    return manga


class _Repository:
    def __init__(self, session_factory: async_sessionmaker | None = None):
        self._session_factory = session_factory

    async def _factory(self) -> async_sessionmaker:
        if self._session_factory is None:
            self._session_factory = await get_session_factory()
        return self._session_factory


class HistoryRepository(_Repository):
    """Reading history, most recently read first."""

    async def get_recent(self, limit: int) -> list[MangaItem]:
        factory = await self._factory()
        async with factory() as session:
            result = await session.execute(
                select(HistoryEntry)
                .options(selectinload(HistoryEntry.manga).selectinload(Manga.tags))
                .order_by(HistoryEntry.updated_at.desc())
                .limit(limit)
            )
            return [to_manga_item(entry.manga) for entry in result.scalars()]

    async def record(
        self,
        item: MangaItem,
        chapter_id: str | None = None,
        page: int = 0,
        percent: float = 0.0,
        read_at: datetime | None = None,
    ) -> None:
        """Save the manga and mark it as read now (or at ``read_at``)."""
        read_at = read_at or datetime.now()
        factory = await self._factory()
        async with factory() as session:
            await save_manga(session, item)
            entry = await session.get(HistoryEntry, (item.source, item.id))
            if entry is None:
                entry = HistoryEntry(
                    manga_source=item.source, manga_id=item.id, created_at=read_at
                )
                session.add(entry)
            entry.chapter_id = chapter_id
            entry.page = page
            entry.percent = percent
            entry.updated_at = read_at
            await session.commit()


class FavouritesRepository(_Repository):
    """Favourite manga, most recently added first."""

    async def get_recent(self, limit: int) -> list[MangaItem]:
        factory = await self._factory()
        async with factory() as session:
            result = await session.execute(
                select(Favourite)
                .options(selectinload(Favourite.manga).selectinload(Manga.tags))
                .order_by(Favourite.created_at.desc())
                .limit(limit)
            )
            return [to_manga_item(fav.manga) for fav in result.scalars()]

    async def add(self, item: MangaItem, added_at: datetime | None = None) -> None:
        factory = await self._factory()
        async with factory() as session:
            await save_manga(session, item)
            if await session.get(Favourite, (item.source, item.id)) is None:
                session.add(
                    Favourite(
                        manga_source=item.source,
                        manga_id=item.id,
                        created_at=added_at or datetime.now(),
                    )
                )
            await session.commit()


class SourcesRepository(_Repository):
    """Configured content sources."""

    async def get_enabled_sources(self) -> list[ContentSource]:
        factory = await self._factory()
        async with factory() as session:
            result = await session.execute(
                select(ContentSourceRecord)
                .where(ContentSourceRecord.enabled.is_(True))
                .order_by(ContentSourceRecord.sort_key, ContentSourceRecord.name)
            )
            return [ContentSource(name=r.name, base_url=r.base_url) for r in result.scalars()]

    async def list_all(self) -> list[ContentSourceRecord]:
        factory = await self._factory()
        async with factory() as session:
            result = await session.execute(
                select(ContentSourceRecord).order_by(
                    ContentSourceRecord.sort_key, ContentSourceRecord.name
                )
            )
            return list(result.scalars())

    async def get(self, name: str) -> ContentSourceRecord | None:
        factory = await self._factory()
        async with factory() as session:
            return await session.get(ContentSourceRecord, name)

    async def upsert(
        self, name: str, base_url: str | None = None, enabled: bool | None = None
    ) -> ContentSourceRecord:
        """Create or update a source; None arguments leave fields unchanged."""
        factory = await self._factory()
        async with factory() as session:
            record = await session.get(ContentSourceRecord, name)
            if record is None:
                count = await session.scalar(select(func.count()).select_from(ContentSourceRecord))
                record = ContentSourceRecord(name=name, base_url="", enabled=True, sort_key=count)
                session.add(record)
                logger.info("Added source %s", name)
            if base_url is not None:
                record.base_url = base_url
            if enabled is not None:
                record.enabled = enabled
            await session.commit()
            return record

    async def set_enabled(self, name: str, enabled: bool) -> bool:
        """Enable or disable a source. Returns False if it does not exist."""
        factory = await self._factory()
        async with factory() as session:
            record = await session.get(ContentSourceRecord, name)
            if record is None:
                return False
            record.enabled = enabled
            await session.commit()
            return True


class SuggestionRepository(_Repository):
    """Stored result of the latest suggestions run."""

    async def replace_all(self, suggestions: Sequence[ScoredSuggestion]) -> None:
        """Atomically replace every stored suggestion with ``suggestions``."""
        factory = await self._factory()
        async with factory() as session:
            await session.execute(delete(Suggestion))
            stored: set[tuple[str, str]] = set()
            for position, suggestion in enumerate(suggestions):
                manga = suggestion.manga
                key = (manga.source, manga.id)
                if key in stored:
                    continue
                stored.add(key)
                await save_manga(session, manga)
                session.add(
                    Suggestion(
                        manga_source=manga.source,
                        manga_id=manga.id,
                        relevance=suggestion.relevance,
                        position=position,
                    )
                )
            await session.commit()
        logger.info("Replaced suggestions with %d entries", len(stored))

    async def list_top(self, limit: int = 80) -> list[ScoredSuggestion]:
        factory = await self._factory()
        async with factory() as session:
            result = await session.execute(
                select(Suggestion)
                .options(selectinload(Suggestion.manga).selectinload(Manga.tags))
                .order_by(Suggestion.position)
                .limit(limit)
            )
            return [
                ScoredSuggestion(manga=to_manga_item(s.manga), relevance=s.relevance)
                for s in result.scalars()
            ]

    async def count(self) -> int:
        factory = await self._factory()
        async with factory() as session:
            return await session.scalar(select(func.count()).select_from(Suggestion)) or 0
