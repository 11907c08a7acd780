"""Review sessions router.

Endpoints:
- POST   /sessions                     -- open a new review session
- GET    /sessions/{session_id}        -- session state and current mapping
- DELETE /sessions/{session_id}        -- flush pending saves and close
- PUT    /sessions/{session_id}/image     -- switch to an image
- PUT    /sessions/{session_id}/viewport  -- resize the display surface
- POST   /sessions/{session_id}/save      -- persist the current image now
- GET    /sessions/{session_id}/history   -- edit history
"""

from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, Query

from app.dependencies import get_catalog, get_open_session, get_session, get_sessions
from app.models.annotation import HistoryEntry
from app.models.export import ImageMetadata
from app.models.session import OpenImageRequest, SaveResponse, SessionResponse, ViewportRequest
from app.services.errors import AnnotationValidationError, NotFoundError
from app.services.image_catalog import ImageCatalog
from app.services.session import ReviewSession, SessionRegistry

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/sessions", tags=["sessions"])


def _response(session: ReviewSession) -> SessionResponse:
    image_id = session.store.current_image_id
    return SessionResponse(
        session_id=session.session_id,
        image_id=image_id,
        mapping=session.mapper.mapping if image_id else None,
    )


@router.post("", response_model=SessionResponse, status_code=201)
def create_session(sessions: SessionRegistry = Depends(get_sessions)) -> SessionResponse:
    return _response(sessions.create())


@router.get("/{session_id}", response_model=SessionResponse)
def get_session_state(session: ReviewSession = Depends(get_session)) -> SessionResponse:
    return _response(session)


@router.delete("/{session_id}", status_code=204)
def close_session(
    session: ReviewSession = Depends(get_session),
    sessions: SessionRegistry = Depends(get_sessions),
) -> None:
    """Flush pending saves and drop the session; 404 if unknown."""
    if not sessions.close(session.session_id):
        raise NotFoundError("Session not found")


@router.put("/{session_id}/image", response_model=SessionResponse)
def open_image(
    request: OpenImageRequest,
    session: ReviewSession = Depends(get_session),
    catalog: ImageCatalog = Depends(get_catalog),
) -> SessionResponse:
    """Open an image by id.

    Dimensions given in the body win; otherwise the image must be
    registered in the catalog.  Any pending auto-save for the previous
    image is flushed and its ROI cleared.
    """
    if request.width is not None and request.height is not None:
        if request.width <= 0 or request.height <= 0:
            raise AnnotationValidationError("width and height must be positive")
        image = ImageMetadata(
            id=request.image_id,
            filename=request.filename,
            width=request.width,
            height=request.height,
        )
    else:
        image = catalog.metadata(request.image_id)
        if image is None:
            raise NotFoundError(f"Image not found: {request.image_id}")

    session.open_image(image)
    return _response(session)


@router.put("/{session_id}/viewport", response_model=SessionResponse)
def set_viewport(
    request: ViewportRequest,
    session: ReviewSession = Depends(get_session),
) -> SessionResponse:
    session.set_viewport(request.surface_width, request.surface_height)
    return _response(session)


@router.post("/{session_id}/save", response_model=SaveResponse)
def save_session(session: ReviewSession = Depends(get_open_session)) -> SaveResponse:
    """Persist the current image's annotations immediately."""
    result = session.save_now()
    assert result is not None
    errors = [f"{ann_id}: {message}" for ann_id, message in result.errors.items()]
    if result.success:
        message = f"Saved {len(result.saved)} annotations"
    else:
        message = f"Saved {len(result.saved)} annotations, {len(errors)} failed"
    return SaveResponse(
        success=result.success,
        saved_count=len(result.saved),
        error_count=len(errors),
        errors=errors,
        message=message,
    )


@router.get("/{session_id}/history", response_model=list[HistoryEntry])
def get_history(
    image_id: str | None = Query(default=None, description="Restrict to one image"),
    session: ReviewSession = Depends(get_session),
) -> list[HistoryEntry]:
    return session.store.history(image_id)
