"""Suggestion import router.

Endpoints:
- POST /predictions/import -- bulk-load machine suggestions from a COCO results JSON
"""

from __future__ import annotations

import logging
from pathlib import Path

from fastapi import APIRouter, Depends, HTTPException

from app.dependencies import get_persistence, get_sessions
from app.ingestion.prediction_parser import PredictionParser
from app.models.prediction import PredictionImportRequest, PredictionImportResponse
from app.services.persistence import DuckDBAnnotationPersistence
from app.services.session import SessionRegistry

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/predictions", tags=["predictions"])


@router.post("/import", response_model=PredictionImportResponse)
def import_predictions(
    request: PredictionImportRequest,
    persistence: DuckDBAnnotationPersistence = Depends(get_persistence),
    sessions: SessionRegistry = Depends(get_sessions),
) -> PredictionImportResponse:
    """Stream a COCO detection results file into the annotations table.

    Every prediction lands as a ``Suggested`` annotation.  Images already
    open in a session keep their in-memory list until reopened in a new
    session.
    """
    prediction_path = Path(request.prediction_path)
    if not prediction_path.exists():
        raise HTTPException(
            status_code=400,
            detail=f"Prediction file not found: {request.prediction_path}",
        )

    category_map = request.categories or {
        i + 1: name for i, name in enumerate(sessions.config.classes)
    }

    parser = PredictionParser()
    total_inserted = 0
    for batch_df in parser.parse_streaming(
        file_path=prediction_path,
        category_map=category_map,
        image_map=request.image_ids,
    ):
        total_inserted += persistence.insert_batch(batch_df)

    message = f"Imported {total_inserted} suggestions"
    if parser.skipped > 0:
        message += f" ({parser.skipped} skipped: unmapped categories, images or empty boxes)"
    logger.info(message)

    return PredictionImportResponse(
        prediction_count=total_inserted,
        skipped_count=parser.skipped,
        message=message,
    )
