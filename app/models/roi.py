"""Pydantic models for region-of-interest polygons."""

from datetime import datetime
from enum import Enum

from pydantic import BaseModel

from app.models.geometry import BBox, Point


class ROI(BaseModel):
    """Snapshot of the active region of interest on one image."""

    id: str
    image_id: str | None
    polygon: list[Point]
    name: str
    active: bool = True
    created_at: datetime
    modified_at: datetime

    model_config = {"frozen": True}


class ROIRejectionReason(str, Enum):
    INSUFFICIENT_POINTS = "insufficient_points"
    INVALID_POLYGON = "invalid_polygon"


class ROIRejection(BaseModel):
    """Returned instead of an :class:`ROI` when creation is refused."""

    reason: ROIRejectionReason
    message: str
    point_count: int

    model_config = {"frozen": True}


class ROIStats(BaseModel):
    """Derived measurements of the active ROI polygon."""

    point_count: int
    bounds: BBox
    area: float
    perimeter: float


class PolygonValidation(BaseModel):
    """Outcome of :func:`app.services.roi_engine.validate_polygon`."""

    valid: bool
    error: str | None = None


# ---------------------------------------------------------------------------
# Request bodies for the ROI router
# ---------------------------------------------------------------------------


class ROICreate(BaseModel):
    """Request body for POST /sessions/{id}/roi."""

    points: list[Point]


class ROIUpdate(BaseModel):
    """Request body for PATCH /sessions/{id}/roi/{roi_id} -- wholesale replacement fields."""

    polygon: list[Point] | None = None
    name: str | None = None
    active: bool | None = None


class ROIFilteringRequest(BaseModel):
    """Request body for PUT /sessions/{id}/roi/filtering."""

    enabled: bool
