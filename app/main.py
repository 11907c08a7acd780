"""DetectReview FastAPI application entry point."""

import asyncio
import contextlib
import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from app.config import get_settings
from app.repositories.duckdb_repo import DuckDBRepo
from app.repositories.storage import StorageBackend
from app.services.errors import ReviewError
from app.services.image_catalog import ImageCatalog
from app.services.persistence import DuckDBAnnotationPersistence
from app.services.session import SessionRegistry

logger = logging.getLogger(__name__)


async def autosave_loop(sessions: SessionRegistry, interval: float) -> None:
    """Poll every session and fire debounced saves whose window has passed."""
    while True:
        await asyncio.sleep(interval)
        fired = await sessions.flush_due_saves()
        if fired:
            logger.debug("Auto-saved %d session(s)", fired)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Manage application startup and shutdown.

    On startup:
    - Create DuckDB connection and initialize schema.
    - Create StorageBackend, ImageCatalog, annotation persistence and
      the SessionRegistry.
    - Start the auto-save polling task.
    - Store all services on app.state for dependency injection.

    On shutdown:
    - Stop the auto-save task and flush every session.
    - Close DuckDB connection.
    """
    settings = get_settings()

    # Database
    db = DuckDBRepo(settings.db_path)
    db.initialize_schema()
    app.state.db = db

    # Storage and image source
    storage = StorageBackend()
    app.state.storage = storage
    app.state.catalog = ImageCatalog(db=db, storage=storage)

    # Persistence and sessions
    persistence = DuckDBAnnotationPersistence(db)
    app.state.persistence = persistence
    sessions = SessionRegistry(settings.engine_config(), persistence)
    app.state.sessions = sessions

    autosave_task = asyncio.create_task(autosave_loop(sessions, settings.auto_save_poll_interval))

    yield

    # Shutdown
    autosave_task.cancel()
    with contextlib.suppress(asyncio.CancelledError):
        await autosave_task
    sessions.close_all()
    db.connection.execute("CHECKPOINT")  # Flush WAL to disk before container stops
    db.close()


app = FastAPI(
    title="DetectReview",
    description="Review and correct machine-suggested object detections",
    version="0.1.0",
    lifespan=lifespan,
)

# In Docker behind a reverse proxy (same origin): no CORS needed.
# In local dev: allow the frontend dev server origin.
settings = get_settings()
if not settings.behind_proxy:
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["http://localhost:3000"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

# Router includes
from app.routers import annotations, export, images, predictions, roi, sessions  # noqa: E402

app.include_router(images.router)
app.include_router(sessions.router)
app.include_router(annotations.router)
app.include_router(roi.router)
app.include_router(export.router)
app.include_router(predictions.router)


@app.exception_handler(ReviewError)
async def review_error_handler(request: Request, exc: ReviewError) -> JSONResponse:
    """Translate engine failure values raised at the HTTP boundary."""
    return JSONResponse(status_code=exc.status_code, content={"detail": str(exc)})


@app.get("/health")
async def health_check() -> dict[str, str]:
    """Simple health check endpoint."""
    return {"status": "ok"}
