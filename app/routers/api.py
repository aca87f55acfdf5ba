"""REST API endpoints for suggestions and sources."""

from datetime import datetime

from fastapi import APIRouter, HTTPException, Query
from pydantic import BaseModel

from app.services.library import SourcesRepository, SuggestionRepository
from app.services.suggestions import ScoredSuggestion
from app.services.worker import get_suggestions_worker

router = APIRouter(prefix="/api", tags=["api"])


class SuggestionResponse(BaseModel):
    """API response for a stored suggestion."""

    id: str
    title: str
    url: str
    source: str
    cover_url: str | None
    description: str | None
    rating: float
    is_nsfw: bool
    tags: list[str] = []
    relevance: float


class WorkerStatusResponse(BaseModel):
    """Response for suggestion worker status."""

    is_running: bool
    is_scheduled: bool
    last_run_at: datetime | None
    last_count: int
    last_error: str | None
    failed_sources: list[str]
    notified_manga_id: str | None
    stored_count: int


class RefreshResponse(BaseModel):
    started: bool


class SourceResponse(BaseModel):
    name: str
    base_url: str
    enabled: bool


class SourceUpdate(BaseModel):
    """Fields to change on a source; omitted fields are left as they are."""

    base_url: str | None = None
    enabled: bool | None = None


def _suggestion_to_response(suggestion: ScoredSuggestion) -> SuggestionResponse:
    manga = suggestion.manga
    return SuggestionResponse(
        id=manga.id,
        title=manga.title,
        url=manga.url,
        source=manga.source,
        cover_url=manga.cover_url,
        description=manga.description,
        rating=manga.rating,
        is_nsfw=manga.is_nsfw,
        tags=[tag.title for tag in manga.tags],
        relevance=suggestion.relevance,
    )


@router.get("/suggestions", response_model=list[SuggestionResponse])
async def list_suggestions(limit: int = Query(default=80, ge=1, le=200)):
    """Suggestions from the latest run, most relevant first."""
    suggestions = await SuggestionRepository().list_top(limit)
    return [_suggestion_to_response(s) for s in suggestions]


@router.post("/suggestions/refresh", response_model=RefreshResponse)
async def refresh_suggestions():
    """Start a suggestions run in the background."""
    return RefreshResponse(started=get_suggestions_worker().start_now())


@router.delete("/suggestions/run", response_model=RefreshResponse)
async def cancel_suggestions():
    """Cancel a suggestions run started via refresh."""
    if not get_suggestions_worker().cancel_running():
        raise HTTPException(status_code=404, detail="No suggestions run in progress")
    return RefreshResponse(started=False)


@router.get("/suggestions/status", response_model=WorkerStatusResponse)
async def suggestions_status():
    worker = get_suggestions_worker()
    status = worker.status
    return WorkerStatusResponse(
        is_running=status.is_running,
        is_scheduled=worker.is_scheduled(),
        last_run_at=status.last_run_at,
        last_count=status.last_count,
        last_error=status.last_error,
        failed_sources=status.failed_sources,
        notified_manga_id=status.notified_manga_id,
        stored_count=await SuggestionRepository().count(),
    )


@router.get("/sources", response_model=list[SourceResponse])
async def list_sources():
    records = await SourcesRepository().list_all()
    return [SourceResponse(name=r.name, base_url=r.base_url, enabled=r.enabled) for r in records]


@router.put("/sources/{name}", response_model=SourceResponse)
async def update_source(name: str, update: SourceUpdate):
    """Create or update a content source."""
    repository = SourcesRepository()
    if await repository.get(name) is None and not update.base_url:
        raise HTTPException(status_code=422, detail="base_url is required for a new source")
    record = await repository.upsert(name, base_url=update.base_url, enabled=update.enabled)
    return SourceResponse(name=record.name, base_url=record.base_url, enabled=record.enabled)
