"""Background worker that periodically regenerates suggestions."""

import asyncio
import logging
import random
from dataclasses import dataclass, field
from datetime import datetime

from app.config import get_settings
from app.services.library import (
    FavouritesRepository,
    HistoryRepository,
    SourcesRepository,
    SuggestionRepository,
)
from app.services.notifications import get_notification_sink
from app.services.sources import HttpSourceFactory
from app.services.suggestions import SuggestionEngine, SuggestionRun, SuggestionsConfig

logger = logging.getLogger(__name__)

# Linear backoff after a failed periodic run, per consecutive failure
BACKOFF_SECONDS = 60 * 60


@dataclass
class WorkerStatus:
    """Tracks the state of suggestion runs."""

    is_running: bool = False
    last_run_at: datetime | None = None
    last_count: int = 0
    last_error: str | None = None
    failed_sources: list[str] = field(default_factory=list)
    notified_manga_id: str | None = None


class SuggestionsWorker:
    """Runs the suggestion engine on demand and on a periodic schedule."""

    def __init__(self, rng: random.Random | None = None):
        self._status = WorkerStatus()
        self._lock = asyncio.Lock()
        self._rng = rng
        self._periodic_task: asyncio.Task | None = None
        self._run_task: asyncio.Task | None = None
        self._consecutive_failures = 0

    @property
    def status(self) -> WorkerStatus:
        """Get current worker status."""
        return self._status

    @property
    def interval_seconds(self) -> float:
        return get_settings().suggestions_interval_hours * 60 * 60

    def build_engine(self, repositories: HttpSourceFactory) -> SuggestionEngine:
        """Wire the engine to the database and the HTTP sources."""
        return SuggestionEngine(
            history=HistoryRepository(),
            favourites=FavouritesRepository(),
            sources=SourcesRepository(),
            repositories=repositories,
            store=SuggestionRepository(),
            config=SuggestionsConfig.from_settings(),
            notifier=get_notification_sink(),
            rng=self._rng,
        )

    async def run_once(self) -> int:
        """Run the engine once. Returns the number of stored suggestions.

        Concurrent calls are skipped and return -1. Errors are recorded in
        the status and re-raised; cancellation propagates.
        """
        if self._lock.locked():
            logger.info("Suggestions run already in progress, skipping")
            return -1

        async with self._lock:
            self._status.is_running = True
            self._status.last_error = None
            try:
                async with HttpSourceFactory() as repositories:
                    run: SuggestionRun = await self.build_engine(repositories).run()
                self._status.last_count = len(run.suggestions)
                self._status.failed_sources = [f.source for f in run.failures]
                self._status.notified_manga_id = (
                    run.notification.manga_id if run.notification else None
                )
                self._status.last_run_at = datetime.now()
                return len(run.suggestions)
            except asyncio.CancelledError:
                logger.info("Suggestions run cancelled")
                raise
            except Exception as e:
                self._status.last_error = str(e)
                logger.exception("Suggestions run failed: %s", e)
                raise
            finally:
                self._status.is_running = False

    def next_delay(self) -> float:
        """Seconds until the next periodic run."""
        interval = self.interval_seconds
        if self._consecutive_failures == 0:
            return interval
        return min(interval, BACKOFF_SECONDS * self._consecutive_failures)

    async def _periodic_loop(self) -> None:
        """Run suggestions on a slow schedule."""
        while True:
            try:
                await self.run_once()
                self._consecutive_failures = 0
            except Exception:
                self._consecutive_failures += 1
            await asyncio.sleep(self.next_delay())

    def schedule(self) -> None:
        """Start the periodic loop."""
        if self._periodic_task is None or self._periodic_task.done():
            self._periodic_task = asyncio.create_task(self._periodic_loop())
            logger.info(
                "Scheduled suggestions (interval=%.1fh)",
                get_settings().suggestions_interval_hours,
            )

    def unschedule(self) -> None:
        """Stop the periodic loop."""
        if self._periodic_task is not None and not self._periodic_task.done():
            self._periodic_task.cancel()
            logger.info("Unscheduled suggestions")
        self._periodic_task = None

    def is_scheduled(self) -> bool:
        return self._periodic_task is not None and not self._periodic_task.done()

    def start_now(self) -> bool:
        """Trigger an immediate (non-blocking) run.

        Returns False if a run is already in progress.
        """
        if self._lock.locked() or (self._run_task is not None and not self._run_task.done()):
            logger.info("Suggestions run already in progress, trigger ignored")
            return False
        self._run_task = asyncio.create_task(self._run_in_background())
        return True

    async def _run_in_background(self) -> None:
        try:
            await self.run_once()
        except Exception:
            # Already logged and recorded in the status
            pass

    def cancel_running(self) -> bool:
        """Cancel a one-shot run started with start_now()."""
        if self._run_task is not None and not self._run_task.done():
            self._run_task.cancel()
            return True
        return False


# Singleton instance
_worker: SuggestionsWorker | None = None


def get_suggestions_worker() -> SuggestionsWorker:
    """Get or create the suggestions worker singleton."""
    global _worker
    if _worker is None:
        _worker = SuggestionsWorker()
    return _worker
