"""FastAPI application for Manga Suggestions."""

import logging
import os
from contextlib import asynccontextmanager

logging.basicConfig(level=logging.INFO, format="%(name)s %(levelname)s: %(message)s")

from fastapi import FastAPI

from app.config import get_settings
from app.models.manga import init_db
from app.routers import api
from app.services.worker import get_suggestions_worker
from app.tracing import setup_tracing

logger = logging.getLogger(__name__)

_tracer_provider = None


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Initialize database and schedule suggestion runs on startup."""
    await init_db()

    worker = get_suggestions_worker()
    if get_settings().suggestions_enabled:
        worker.schedule()
    else:
        logger.info("Periodic suggestions disabled")

    yield

    worker.unschedule()
    worker.cancel_running()

    # Flush remaining traces
    if _tracer_provider:
        _tracer_provider.shutdown()


app = FastAPI(
    title="Manga Suggestions",
    description="Suggest new manga from reading history and favourites",
    version="0.1.0",
    lifespan=lifespan,
    root_path=os.environ.get("ROOT_PATH", ""),
)

app.include_router(api.router)

# Set up OpenTelemetry tracing
_tracer_provider = setup_tracing(app)
