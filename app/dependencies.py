"""FastAPI dependency injection for DuckDB and review services."""

from collections.abc import AsyncIterator

from fastapi import Depends, HTTPException, Request

from app.repositories.duckdb_repo import DuckDBRepo
from app.repositories.storage import StorageBackend
from app.services.image_catalog import ImageCatalog
from app.services.persistence import DuckDBAnnotationPersistence
from app.services.session import ReviewSession, SessionRegistry


def get_db(request: Request) -> DuckDBRepo:
    """Return the application-wide DuckDBRepo stored on app.state."""
    return request.app.state.db


def get_storage(request: Request) -> StorageBackend:
    """Return the application-wide StorageBackend stored on app.state."""
    return request.app.state.storage


def get_catalog(request: Request) -> ImageCatalog:
    """Return the application-wide ImageCatalog stored on app.state."""
    return request.app.state.catalog


def get_persistence(request: Request) -> DuckDBAnnotationPersistence:
    """Return the application-wide annotation persistence stored on app.state."""
    return request.app.state.persistence


def get_sessions(request: Request) -> SessionRegistry:
    """Return the application-wide SessionRegistry stored on app.state."""
    return request.app.state.sessions


async def get_session(
    session_id: str,
    sessions: SessionRegistry = Depends(get_sessions),
) -> AsyncIterator[ReviewSession]:
    """Resolve the ``{session_id}`` path parameter, 404 if unknown.

    The session's guard is held until the request finishes, so requests
    against one session and its auto-save never interleave.
    """
    session = sessions.get(session_id)
    if session is None:
        raise HTTPException(status_code=404, detail="Session not found")
    async with session.guard:
        yield session


def get_open_session(session: ReviewSession = Depends(get_session)) -> ReviewSession:
    """Like :func:`get_session`, but 409 unless an image is open."""
    if session.store.current_image_id is None:
        raise HTTPException(status_code=409, detail="No image open in this session")
    return session
