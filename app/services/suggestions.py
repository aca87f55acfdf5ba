"""Suggestion generation from the user's reading history.

The engine builds a tag profile from recent history and favourites, queries
every enabled source for matching titles (at most ``max_parallelism`` at a
time), scores the candidates against the profile and replaces the stored
suggestions with the best of them. Optionally one suggestion is picked for a
notification.
"""

import asyncio
import logging
import random
from collections.abc import Iterable, Sequence
from dataclasses import dataclass, field
from typing import Protocol

from opentelemetry import trace

from app.config import Settings, get_settings
from app.services.notifications import (
    NotificationSink,
    SuggestionNotification,
    build_notification,
)
from app.services.sources import (
    ContentSource,
    MangaItem,
    SortOrder,
    SourceError,
    SourceRepositoryFactory,
    Tag,
)
from app.services.tags import (
    TAG_EQ_THRESHOLD,
    TagsBlacklist,
    almost_equals,
    inexact_index_of,
    take_most_frequent,
)

logger = logging.getLogger(__name__)
tracer = trace.get_tracer(__name__)

# First supported order wins
PREFERRED_SORT_ORDERS = (
    SortOrder.UPDATED,
    SortOrder.NEWEST,
    SortOrder.POPULARITY,
    SortOrder.RATING,
)


@dataclass(frozen=True)
class SuggestionsConfig:
    """Settings and limits for one suggestions run."""

    exclude_nsfw: bool = False
    notifications_enabled: bool = False
    tags_blacklist: TagsBlacklist = field(default_factory=TagsBlacklist)
    seed_limit: int = 20
    top_tags: int = 10
    max_parallelism: int = 3
    max_source_results: int = 14
    max_raw_results: int = 200
    max_results: int = 80
    tag_threshold: float = TAG_EQ_THRESHOLD
    rating_min: float = 0.5
    notification_attempts: int = 4

    @classmethod
    def from_settings(cls, settings: Settings | None = None) -> "SuggestionsConfig":
        settings = settings or get_settings()
        return cls(
            exclude_nsfw=settings.suggestions_exclude_nsfw,
            notifications_enabled=settings.suggestions_notifications,
            tags_blacklist=TagsBlacklist.of(settings.suggestions_exclude_tags),
        )


@dataclass(frozen=True)
class ScoredSuggestion:
    """A candidate manga with its relevance (0-1)."""

    manga: MangaItem
    relevance: float


@dataclass(frozen=True)
class SourceSuccess:
    source: str
    items: tuple[MangaItem, ...]


@dataclass(frozen=True)
class SourceFailure:
    source: str
    reason: str


SourceResult = SourceSuccess | SourceFailure


@dataclass
class SuggestionRun:
    """Outcome of one engine run."""

    suggestions: list[ScoredSuggestion] = field(default_factory=list)
    failures: list[SourceFailure] = field(default_factory=list)
    notification: SuggestionNotification | None = None


class RecentMangaProvider(Protocol):
    """History or favourites, most recent first."""

    async def get_recent(self, limit: int) -> list[MangaItem]: ...


class SourceRegistry(Protocol):
    async def get_enabled_sources(self) -> list[ContentSource]: ...


class SuggestionStore(Protocol):
    async def replace_all(self, suggestions: Sequence[ScoredSuggestion]) -> None: ...


def distinct_by_id(items: Iterable[MangaItem]) -> list[MangaItem]:
    """Drop repeated ids, keeping the first occurrence and the order."""
    seen: set[str] = set()
    result: list[MangaItem] = []
    for item in items:
        if item.id not in seen:
            seen.add(item.id)
            result.append(item)
    return result


def compute_relevance(
    manga_tags: Sequence[Tag], all_tags: Sequence[str], threshold: float = TAG_EQ_THRESHOLD
) -> float:
    """Score how well a manga's tags match the frequent-tag profile.

    Each tag found in ``all_tags`` (most frequent first) weighs ``N - index``.
    The sum is normalized by the best possible sum for the same number of
    tags and squared, so a few strong matches outrank many weak ones.
    """
    size = len(all_tags)
    count = len(manga_tags)
    max_weight = (size + size + 1 - count) * count / 2.0
    if max_weight <= 0:
        return 0.0
    weight = 0
    for tag in manga_tags:
        index = inexact_index_of(all_tags, tag.title, threshold)
        if index >= 0:
            weight += size - index
    return min(1.0, (weight / max_weight) ** 2)


def select_sort_order(available: Iterable[SortOrder]) -> SortOrder:
    available = set(available)
    for order in PREFERRED_SORT_ORDERS:
        if order in available:
            return order
    raise SourceError("Source supports none of the preferred sort orders")


def select_tag(
    frequent: Sequence[str],
    available: Sequence[Tag],
    blacklist: TagsBlacklist,
    threshold: float = TAG_EQ_THRESHOLD,
) -> Tag | None:
    """First source tag matching the most frequent title that has a match."""
    for title in frequent:
        for tag in available:
            if tag not in blacklist and almost_equals(tag.title, title, threshold):
                return tag
    return None


def rank_candidates(
    candidates: Sequence[MangaItem],
    all_tags: Sequence[str],
    limit: int,
    threshold: float = TAG_EQ_THRESHOLD,
) -> list[ScoredSuggestion]:
    """Score candidates and keep the ``limit`` best, highest first."""
    scored = [
        ScoredSuggestion(manga=m, relevance=compute_relevance(m.tags, all_tags, threshold))
        for m in candidates
    ]
    # Stable sort: equal scores keep merge order
    scored.sort(key=lambda s: s.relevance, reverse=True)
    return scored[:limit]


class SuggestionEngine:
    """Generates, stores and optionally announces manga suggestions."""

    def __init__(
        self,
        *,
        history: RecentMangaProvider,
        favourites: RecentMangaProvider,
        sources: SourceRegistry,
        repositories: SourceRepositoryFactory,
        store: SuggestionStore,
        config: SuggestionsConfig | None = None,
        notifier: NotificationSink | None = None,
        rng: random.Random | None = None,
    ):
        self._history = history
        self._favourites = favourites
        self._sources = sources
        self._repositories = repositories
        self._store = store
        self._config = config or SuggestionsConfig()
        self._notifier = notifier
        self._rng = rng or random.Random()

    @property
    def config(self) -> SuggestionsConfig:
        return self._config

    async def run(self) -> SuggestionRun:
        """Run the whole pipeline once.

        Returns an empty run without touching the store when there is no
        history/favourites or no enabled source.
        """
        config = self._config
        with tracer.start_as_current_span("suggestions.run") as span:
            seed = distinct_by_id(
                [
                    *await self._history.get_recent(config.seed_limit),
                    *await self._favourites.get_recent(config.seed_limit),
                ]
            )
            sources = await self._sources.get_enabled_sources()
            span.set_attribute("suggestions.seed_count", len(seed))
            span.set_attribute("suggestions.source_count", len(sources))
            if not seed or not sources:
                logger.info(
                    "Skipping suggestions: %d seed manga, %d enabled sources",
                    len(seed),
                    len(sources),
                )
                return SuggestionRun()

            tags = take_most_frequent(
                (tag.title for manga in seed for tag in manga.tags), config.top_tags
            )
            logger.info("Generating suggestions for tags %s", tags)

            run = SuggestionRun()
            candidates = await self._collect_candidates(sources, tags, seed, run)
            run.suggestions = rank_candidates(
                candidates, tags, config.max_results, config.tag_threshold
            )
            await self._store.replace_all(run.suggestions)
            span.set_attribute("suggestions.count", len(run.suggestions))
            logger.info(
                "Stored %d suggestions (%d candidates, %d failed sources)",
                len(run.suggestions),
                len(candidates),
                len(run.failures),
            )

            if config.notifications_enabled and self._notifier is not None and run.suggestions:
                by_name = {s.name: s for s in sources}
                run.notification = await self._notify_one(run.suggestions, by_name)
            return run

    async def _collect_candidates(
        self,
        sources: Sequence[ContentSource],
        tags: list[str],
        seed: Sequence[MangaItem],
        run: SuggestionRun,
    ) -> list[MangaItem]:
        """Query sources concurrently and merge results in completion order."""
        config = self._config
        semaphore = asyncio.Semaphore(config.max_parallelism)
        shuffled = list(sources)
        self._rng.shuffle(shuffled)

        async def query(source: ContentSource) -> SourceResult:
            async with semaphore:
                return await self._query_source(source, tags)

        tasks = [asyncio.create_task(query(s), name=f"suggestions:{s.name}") for s in shuffled]
        seen: set[tuple[str, str]] = {(m.source, m.id) for m in seed}
        candidates: list[MangaItem] = []
        try:
            for next_result in asyncio.as_completed(tasks):
                result = await next_result
                if isinstance(result, SourceFailure):
                    run.failures.append(result)
                    continue
                for manga in result.items:
                    key = (manga.source, manga.id)
                    if key in seen:
                        continue
                    seen.add(key)
                    candidates.append(manga)
                    if len(candidates) >= config.max_raw_results:
                        return candidates
        finally:
            # Stops queries still running once the cap is hit or the run is cancelled
            for task in tasks:
                task.cancel()
            await asyncio.gather(*tasks, return_exceptions=True)
        return candidates

    async def _query_source(self, source: ContentSource, tags: list[str]) -> SourceResult:
        config = self._config
        with tracer.start_as_current_span("suggestions.source_query") as span:
            span.set_attribute("suggestions.source", source.name)
            try:
                repository = self._repositories.create(source)
                order = select_sort_order(await repository.sort_orders())
                tag = select_tag(
                    tags, await repository.get_tags(), config.tags_blacklist, config.tag_threshold
                )
                items = await repository.get_list(offset=0, order=order, tag=tag)
            except Exception as e:
                span.record_exception(e)
                logger.warning("Suggestions query failed for %s: %s", source.name, e, exc_info=True)
                return SourceFailure(source=source.name, reason=str(e) or type(e).__name__)

        if config.exclude_nsfw:
            items = [m for m in items if not m.is_nsfw]
        if config.tags_blacklist:
            items = [m for m in items if m not in config.tags_blacklist]
        items = list(items)
        self._rng.shuffle(items)
        return SourceSuccess(source=source.name, items=tuple(items[: config.max_source_results]))

    def _rejection_reason(self, details: MangaItem) -> str | None:
        config = self._config
        if not details.chapters:
            return "no chapters"
        if 0 < details.rating < config.rating_min:
            return f"rating {details.rating:.2f}"
        if details.is_nsfw and config.exclude_nsfw:
            return "nsfw"
        if details in config.tags_blacklist:
            return "blacklisted tag"
        return None

    async def _notify_one(
        self,
        suggestions: Sequence[ScoredSuggestion],
        sources: dict[str, ContentSource],
    ) -> SuggestionNotification | None:
        """Pick a well-ranked suggestion worth a notification and send it."""
        assert self._notifier is not None
        config = self._config
        pool = suggestions[: max(1, len(suggestions) // 3)]
        for attempt in range(1, config.notification_attempts + 1):
            try:
                candidate = self._rng.choice(pool).manga
                source = sources.get(candidate.source, ContentSource(candidate.source))
                details = await self._repositories.create(source).get_details(candidate)
                reason = self._rejection_reason(details)
                if reason is not None:
                    logger.debug(
                        "Attempt %d: not notifying about %s (%s)", attempt, details.id, reason
                    )
                    continue
                payload = build_notification(details)
                await self._notifier.notify(payload)
                return payload
            except Exception:
                logger.exception("Attempt %d: failed to prepare suggestion notification", attempt)
        logger.info("No suggestion suitable for a notification")
        return None
