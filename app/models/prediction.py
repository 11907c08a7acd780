"""Pydantic models for suggestion import requests and responses."""

from pydantic import BaseModel


class PredictionImportRequest(BaseModel):
    """Request body for importing machine suggestions.

    ``prediction_path`` points at a COCO detection results JSON file (flat
    array of ``{image_id, category_id, bbox, score}`` dicts).  Category ids
    are resolved through ``categories`` (``{category_id: class_name}``);
    when omitted, ids are treated as 1-based indices into the configured
    class list.  ``image_ids`` maps COCO image ids to registered image ids
    and defaults to ``str(image_id)``.
    """

    prediction_path: str
    categories: dict[int, str] | None = None
    image_ids: dict[int, str] | None = None


class PredictionImportResponse(BaseModel):
    """Response after importing suggestions."""

    prediction_count: int
    skipped_count: int
    message: str
