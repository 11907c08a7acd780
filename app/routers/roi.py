"""Region-of-interest router.

Endpoints (all under /sessions/{session_id}/roi):
- GET    ""            -- current ROI, its stats and the filtering flag
- POST   ""            -- create from a finished polygon
- DELETE ""            -- clear
- PUT    /filtering    -- enable/disable ROI filtering
- POST   /contains     -- point membership (image space)
- GET    /export       -- portable ROI dump
- POST   /import       -- restore a dump
- PATCH  /{roi_id}     -- replace polygon / name / active flag
"""

from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Body, Depends

from app.dependencies import get_open_session
from app.models.geometry import Point
from app.models.roi import ROI, ROICreate, ROIFilteringRequest, ROIRejection, ROIUpdate
from app.services.errors import AnnotationValidationError, InsufficientGeometryError, NotFoundError
from app.services.session import ReviewSession

router = APIRouter(prefix="/sessions/{session_id}/roi", tags=["roi"])


def _state(session: ReviewSession) -> dict[str, Any]:
    stats = session.roi.stats()
    roi = session.roi.current
    return {
        "roi": roi.model_dump(mode="json") if roi else None,
        "stats": stats.model_dump(mode="json") if stats else None,
        "filtering_active": session.roi.is_filtering_active(),
    }


@router.get("")
def get_roi(session: ReviewSession = Depends(get_open_session)) -> dict[str, Any]:
    return _state(session)


@router.post("", response_model=ROI, status_code=201)
def create_roi(
    body: ROICreate,
    session: ReviewSession = Depends(get_open_session),
) -> ROI:
    result = session.roi.create(body.points, session.store.current_image_id)
    if isinstance(result, ROIRejection):
        raise InsufficientGeometryError(result.message)
    return result


@router.delete("", status_code=204)
def clear_roi(session: ReviewSession = Depends(get_open_session)) -> None:
    if not session.roi.clear():
        raise NotFoundError("No ROI to clear")


@router.put("/filtering")
def set_filtering(
    body: ROIFilteringRequest,
    session: ReviewSession = Depends(get_open_session),
) -> dict[str, bool]:
    session.roi.set_filtering(body.enabled)
    return {"filtering_active": session.roi.is_filtering_active()}


@router.post("/contains")
def contains_point(
    point: Point,
    session: ReviewSession = Depends(get_open_session),
) -> dict[str, bool]:
    return {"inside": session.roi.is_point_in_roi(point)}


@router.get("/export")
def export_roi(session: ReviewSession = Depends(get_open_session)) -> dict[str, Any]:
    data = session.roi.export_roi()
    if data is None:
        raise NotFoundError("No active ROI")
    return data


@router.post("/import", response_model=ROI)
def import_roi(
    data: dict[str, Any] = Body(...),
    session: ReviewSession = Depends(get_open_session),
) -> ROI:
    data = {**data, "image_id": session.store.current_image_id}
    if not session.roi.import_roi(data):
        raise AnnotationValidationError("Invalid ROI data")
    assert session.roi.current is not None
    return session.roi.current


@router.patch("/{roi_id}", response_model=ROI)
def update_roi(
    roi_id: str,
    body: ROIUpdate,
    session: ReviewSession = Depends(get_open_session),
) -> ROI:
    current = session.roi.current
    if current is None or current.id != roi_id:
        raise NotFoundError(f"ROI not found: {roi_id}")
    if not session.roi.update(roi_id, body):
        raise AnnotationValidationError("Invalid ROI polygon")
    assert session.roi.current is not None
    return session.roi.current
