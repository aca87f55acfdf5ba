"""SQLAlchemy models for the manga library, sources and suggestions."""

import logging
from datetime import datetime

from sqlalchemy import (
    Boolean,
    DateTime,
    Float,
    ForeignKeyConstraint,
    Index,
    Integer,
    String,
    Text,
    func,
    text,
)
from sqlalchemy.ext.asyncio import AsyncAttrs, async_sessionmaker, create_async_engine
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship

from app.config import get_settings

logger = logging.getLogger(__name__)


class Base(AsyncAttrs, DeclarativeBase):
    """Base class for all models."""

    pass


class Manga(Base):
    """A manga known to the library (read, favourited or suggested)."""

    __tablename__ = "manga"

    # Ids are only unique within a source
    source: Mapped[str] = mapped_column(String(100), primary_key=True)
    id: Mapped[str] = mapped_column(String(100), primary_key=True)  # Source-assigned ID
    title: Mapped[str] = mapped_column(String(500))
    url: Mapped[str] = mapped_column(String(2000), default="")
    cover_url: Mapped[str | None] = mapped_column(String(2000), nullable=True)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    rating: Mapped[float] = mapped_column(Float, default=-1.0)  # 0-1, -1 when unknown
    is_nsfw: Mapped[bool] = mapped_column(Boolean, default=False)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, server_default=func.now(), onupdate=func.now()
    )

    # Relationships
    tags: Mapped[list["MangaTag"]] = relationship(
        back_populates="manga",
        cascade="all, delete-orphan",
        order_by="MangaTag.position",
    )

    __table_args__ = (Index("idx_manga_source", "source"),)


def _manga_fk() -> ForeignKeyConstraint:
    return ForeignKeyConstraint(
        ["manga_source", "manga_id"], ["manga.source", "manga.id"], ondelete="CASCADE"
    )


class MangaTag(Base):
    """A tag attached to a manga, in source order."""

    __tablename__ = "manga_tags"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    manga_source: Mapped[str] = mapped_column(String(100))
    manga_id: Mapped[str] = mapped_column(String(100))
    title: Mapped[str] = mapped_column(String(200))
    key: Mapped[str] = mapped_column(String(200), default="")
    source: Mapped[str] = mapped_column(String(100), default="")
    position: Mapped[int] = mapped_column(Integer, default=0)

    # Relationships
    manga: Mapped["Manga"] = relationship(back_populates="tags")

    __table_args__ = (
        _manga_fk(),
        Index("idx_manga_tags_manga", "manga_source", "manga_id"),
    )


class HistoryEntry(Base):
    """Reading progress for a manga."""

    __tablename__ = "history"

    manga_source: Mapped[str] = mapped_column(String(100), primary_key=True)
    manga_id: Mapped[str] = mapped_column(String(100), primary_key=True)
    chapter_id: Mapped[str | None] = mapped_column(String(100), nullable=True)
    page: Mapped[int] = mapped_column(Integer, default=0)
    percent: Mapped[float] = mapped_column(Float, default=0.0)
    created_at: Mapped[datetime] = mapped_column(DateTime, server_default=func.now())
    updated_at: Mapped[datetime] = mapped_column(DateTime, server_default=func.now())

    manga: Mapped["Manga"] = relationship()

    __table_args__ = (_manga_fk(), Index("idx_history_updated", "updated_at"))


class Favourite(Base):
    """A manga saved to favourites."""

    __tablename__ = "favourites"

    manga_source: Mapped[str] = mapped_column(String(100), primary_key=True)
    manga_id: Mapped[str] = mapped_column(String(100), primary_key=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, server_default=func.now())

    manga: Mapped["Manga"] = relationship()

    __table_args__ = (_manga_fk(), Index("idx_favourites_created", "created_at"))


class Suggestion(Base):
    """A manga suggested by the latest suggestions run."""

    __tablename__ = "suggestions"

    manga_source: Mapped[str] = mapped_column(String(100), primary_key=True)
    manga_id: Mapped[str] = mapped_column(String(100), primary_key=True)
    relevance: Mapped[float] = mapped_column(Float, default=0.0)  # 0-1
    position: Mapped[int] = mapped_column(Integer, default=0)  # Rank within the run
    created_at: Mapped[datetime] = mapped_column(DateTime, server_default=func.now())

    manga: Mapped["Manga"] = relationship()

    __table_args__ = (_manga_fk(), Index("idx_suggestions_relevance", "relevance"))


class ContentSourceRecord(Base):
    """A content source and whether suggestions may query it."""

    __tablename__ = "sources"

    name: Mapped[str] = mapped_column(String(100), primary_key=True)
    base_url: Mapped[str] = mapped_column(String(2000), default="")
    enabled: Mapped[bool] = mapped_column(Boolean, default=True)
    sort_key: Mapped[int] = mapped_column(Integer, default=0)
    added_at: Mapped[datetime] = mapped_column(DateTime, server_default=func.now())

    def __repr__(self) -> str:
        return f"<ContentSourceRecord(name='{self.name}', enabled={self.enabled})>"


# Database engine and session factory
_engine = None
_session_factory = None


async def get_engine():
    """Get or create the async database engine."""
    global _engine
    if _engine is None:
        settings = get_settings()
        # Set busy timeout via connect_args so SQLite waits for locks
        # instead of immediately raising "database is locked".
        _engine = create_async_engine(
            settings.database_url, echo=False, connect_args={"timeout": 30}
        )

        # Instrument for OTel tracing
        try:
            from app.tracing import instrument_engine

            instrument_engine(_engine)
        except Exception:
            logger.debug("SQLAlchemy tracing not enabled", exc_info=True)
    return _engine


async def get_session_factory():
    """Get or create the async session factory."""
    global _session_factory
    if _session_factory is None:
        engine = await get_engine()
        _session_factory = async_sessionmaker(engine, expire_on_commit=False)
    return _session_factory


async def init_db():
    """Initialize the database, creating all tables."""
    engine = await get_engine()

    # Enable WAL mode for better concurrent read/write performance
    async with engine.begin() as conn:
        await conn.execute(text("PRAGMA journal_mode=WAL"))

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    logger.info("Database initialized")
