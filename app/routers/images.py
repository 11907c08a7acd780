"""Images API router.

Endpoints:
- GET  /images              -- list registered images
- POST /images              -- register an image with known dimensions
- POST /images/scan         -- register every image file in a directory
- GET  /images/{image_id}       -- image record
- GET  /images/{image_id}/file  -- serve the original file
"""

from __future__ import annotations

import mimetypes

from fastapi import APIRouter, Depends, HTTPException
from fastapi.responses import FileResponse, Response

from app.config import get_settings
from app.dependencies import get_catalog, get_storage
from app.models.image import ImageListResponse, ImageRecord, ScanRequest, ScanResponse
from app.repositories.storage import StorageBackend
from app.services.image_catalog import ImageCatalog

router = APIRouter(prefix="/images", tags=["images"])


@router.get("", response_model=ImageListResponse)
def list_images(catalog: ImageCatalog = Depends(get_catalog)) -> ImageListResponse:
    return ImageListResponse(images=catalog.list_images())


@router.post("", response_model=ImageRecord, status_code=201)
def register_image(
    record: ImageRecord,
    catalog: ImageCatalog = Depends(get_catalog),
) -> ImageRecord:
    """Register an image whose dimensions the caller already knows."""
    if record.width <= 0 or record.height <= 0:
        raise HTTPException(status_code=400, detail="width and height must be positive")
    if not catalog.add(record):
        raise HTTPException(status_code=409, detail=f"Image already registered: {record.id}")
    return record


@router.post("/scan", response_model=ScanResponse)
def scan_images(
    request: ScanRequest,
    catalog: ImageCatalog = Depends(get_catalog),
) -> ScanResponse:
    """Register every image directly under ``image_dir`` (local or ``gs://``)."""
    image_dir = request.image_dir or str(get_settings().image_root)
    try:
        registered, skipped = catalog.register_directory(image_dir)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    return ScanResponse(registered=registered, skipped=skipped)


@router.get("/{image_id}", response_model=ImageRecord)
def get_image(image_id: str, catalog: ImageCatalog = Depends(get_catalog)) -> ImageRecord:
    record = catalog.get(image_id)
    if record is None:
        raise HTTPException(status_code=404, detail="Image not found")
    return record


@router.get("/{image_id}/file")
def get_image_file(
    image_id: str,
    catalog: ImageCatalog = Depends(get_catalog),
    storage: StorageBackend = Depends(get_storage),
) -> Response:
    """Serve the original image bytes."""
    record = catalog.get(image_id)
    if record is None:
        raise HTTPException(status_code=404, detail="Image not found")
    if not storage.exists(record.path):
        raise HTTPException(status_code=404, detail="Image file missing")

    media_type = mimetypes.guess_type(record.file_name)[0] or "application/octet-stream"
    if record.path.startswith("gs://"):
        return Response(content=storage.read_bytes(record.path), media_type=media_type)
    return FileResponse(record.path, media_type=media_type)
