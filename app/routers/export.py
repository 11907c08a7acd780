"""Export router.

Endpoints:
- GET /sessions/{session_id}/export?format=yolo&scope=current
      -- download annotations as YOLO, Pascal VOC, COCO or JSON
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, Query
from fastapi.responses import Response

from app.dependencies import get_open_session
from app.models.export import ExportFormat, ExportScope
from app.services.errors import AnnotationValidationError
from app.services.session import ReviewSession

router = APIRouter(prefix="/sessions/{session_id}", tags=["export"])


@router.get("/export")
def export_annotations(
    format: ExportFormat = Query(default=ExportFormat.JSON),
    scope: ExportScope = Query(default=ExportScope.CURRENT),
    include_history: bool = Query(default=False, description="JSON only: append the edit history"),
    session: ReviewSession = Depends(get_open_session),
) -> Response:
    """Encode and return the export as an attachment.

    ``scope=all`` covers every image this session has opened; YOLO and
    Pascal VOC then come back as a zip archive.
    """
    result = session.export(format, scope, include_history=include_history and format == ExportFormat.JSON)
    if not result.success:
        raise AnnotationValidationError(result.error or "Export failed")

    return Response(
        content=result.data,
        media_type=result.mime_type,
        headers={
            "Content-Disposition": f'attachment; filename="{result.filename}"',
            "X-Annotation-Count": str(result.annotation_count),
            "X-Image-Count": str(result.image_count),
        },
    )
