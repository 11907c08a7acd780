"""Pydantic models for image records and the images router."""

from pydantic import BaseModel


class ImageRecord(BaseModel):
    """Image supplied by the image source collaborator."""

    id: str
    file_name: str
    path: str
    width: int
    height: int


class ImageListResponse(BaseModel):
    """List of registered images."""

    images: list[ImageRecord]


class ScanRequest(BaseModel):
    """Request body for POST /images/scan; defaults to the configured image root."""

    image_dir: str | None = None


class ScanResponse(BaseModel):
    """Result of registering a directory of images."""

    registered: int
    skipped: int
