"""Database models."""

from app.models.manga import (
    Base,
    ContentSourceRecord,
    Favourite,
    HistoryEntry,
    Manga,
    MangaTag,
    Suggestion,
)

__all__ = [
    "Base",
    "ContentSourceRecord",
    "Favourite",
    "HistoryEntry",
    "Manga",
    "MangaTag",
    "Suggestion",
]
