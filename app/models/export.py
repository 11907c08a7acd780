"""Pydantic models for export requests and results."""

from enum import Enum

from pydantic import BaseModel


class ExportFormat(str, Enum):
    YOLO = "yolo"
    PASCAL_VOC = "pascal_voc"
    COCO = "coco"
    JSON = "json"


class ExportScope(str, Enum):
    CURRENT = "current"
    ALL = "all"


class ImageMetadata(BaseModel):
    """Geometry-relevant fields of an image record supplied by the image source."""

    id: str
    filename: str | None = None
    width: int | None = None
    height: int | None = None
    path: str | None = None

    @property
    def has_dimensions(self) -> bool:
        return bool(self.width and self.height)


class ExportResult(BaseModel):
    """Outcome of :func:`app.services.exporters.export`.

    ``data`` is ``str`` for text formats and ``bytes`` for zip archives.
    """

    success: bool
    format: ExportFormat
    scope: ExportScope = ExportScope.CURRENT
    data: str | bytes | None = None
    filename: str | None = None
    mime_type: str | None = None
    annotation_count: int = 0
    image_count: int = 0
    error: str | None = None
