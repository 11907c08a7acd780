"""Pydantic models for review sessions."""

from pydantic import BaseModel

from app.models.geometry import Mapping


class SessionResponse(BaseModel):
    """A review session and the image it is currently looking at."""

    session_id: str
    image_id: str | None = None
    mapping: Mapping | None = None


class OpenImageRequest(BaseModel):
    """Request body for PUT /sessions/{id}/image.

    Either reference a registered image by ``image_id`` alone, or supply the
    dimensions directly for an image the catalog does not know about.
    """

    image_id: str
    width: int | None = None
    height: int | None = None
    filename: str | None = None


class ViewportRequest(BaseModel):
    """Request body for PUT /sessions/{id}/viewport."""

    surface_width: float
    surface_height: float


class SaveResponse(BaseModel):
    """Outcome of a persistence attempt for the current image."""

    success: bool
    saved_count: int
    error_count: int
    errors: list[str]
    message: str
