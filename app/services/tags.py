"""Fuzzy tag matching, tag frequency and the tags blacklist."""

from collections import Counter
from collections.abc import Iterable
from dataclasses import dataclass

from rapidfuzz.distance import Levenshtein

from app.services.sources import MangaItem, Tag

# Normalized edit distance below which two tag titles are considered equal
TAG_EQ_THRESHOLD = 0.4


def almost_equals(a: str, b: str, threshold: float) -> bool:
    """Case-insensitive fuzzy equality of two tag titles.

    The Levenshtein distance is divided by the mean length of both strings;
    the titles are equal when that ratio is below ``threshold``. A threshold
    of zero means exact, case-insensitive equality.
    """
    a = a.lower()
    b = b.lower()
    if threshold == 0:
        return a == b
    mean_length = (len(a) + len(b)) / 2
    if mean_length == 0:
        return True
    return Levenshtein.distance(a, b) / mean_length < threshold


def inexact_index_of(titles: Iterable[str], title: str, threshold: float) -> int:
    """Index of the first title fuzzy-equal to ``title``, or -1."""
    for i, candidate in enumerate(titles):
        if almost_equals(candidate, title, threshold):
            return i
    return -1


def take_most_frequent(titles: Iterable[str], limit: int) -> list[str]:
    """Top ``limit`` titles by count; equal counts keep first-seen order."""
    counts = Counter(titles)
    # Counter preserves insertion order and sorted() is stable
    ranked = sorted(counts.items(), key=lambda item: item[1], reverse=True)
    return [title for title, _ in ranked[:limit]]


@dataclass(frozen=True)
class TagsBlacklist:
    """Tag titles excluded from suggestions, compared fuzzily."""

    titles: frozenset[str] = frozenset()
    threshold: float = TAG_EQ_THRESHOLD

    @classmethod
    def of(cls, titles: Iterable[str], threshold: float = TAG_EQ_THRESHOLD) -> "TagsBlacklist":
        return cls(frozenset(t for t in titles if t), threshold)

    def __bool__(self) -> bool:
        return bool(self.titles)

    def contains_tag(self, tag: Tag) -> bool:
        return any(almost_equals(title, tag.title, self.threshold) for title in self.titles)

    def __contains__(self, item: Tag | MangaItem) -> bool:
        if not self.titles:
            return False
        if isinstance(item, Tag):
            return self.contains_tag(item)
        return any(self.contains_tag(tag) for tag in item.tags)
