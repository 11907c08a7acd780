"""Image source collaborator backed by DuckDB.

Registers image files (local or ``gs://``) with their natural size so
sessions can compute display mappings and exports can normalize boxes.
Dimensions are read with Pillow from the file header only.
"""

from __future__ import annotations

import logging
from pathlib import PurePosixPath

from PIL import Image, UnidentifiedImageError

from app.models.export import ImageMetadata
from app.models.image import ImageRecord
from app.repositories.duckdb_repo import DuckDBRepo
from app.repositories.storage import StorageBackend

logger = logging.getLogger(__name__)

IMAGE_EXTENSIONS = {".jpg", ".jpeg", ".png", ".bmp", ".tiff", ".webp"}


def _basename(path: str) -> str:
    return PurePosixPath(path.rstrip("/")).name


class ImageCatalog:
    """Registry of reviewable images.

    Image ids default to the file stem; registering a second file with the
    same id is skipped.
    """

    def __init__(self, db: DuckDBRepo, storage: StorageBackend | None = None) -> None:
        self.db = db
        self.storage = storage or StorageBackend()

    def read_dimensions(self, path: str) -> tuple[int, int] | None:
        """``(width, height)`` of the image at *path*, or ``None`` if unreadable."""
        try:
            with self.storage.open(path, "rb") as f, Image.open(f) as img:
                return img.size
        except (OSError, UnidentifiedImageError) as exc:
            logger.warning("Could not read image dimensions for %s: %s", path, exc)
            return None

    def add(self, record: ImageRecord) -> bool:
        """Insert a record with known dimensions; ``False`` if the id exists."""
        if self.get(record.id) is not None:
            return False
        cursor = self.db.connection.cursor()
        try:
            cursor.execute(
                "INSERT INTO images (id, file_name, path, width, height) VALUES (?, ?, ?, ?, ?)",
                [record.id, record.file_name, record.path, record.width, record.height],
            )
        finally:
            cursor.close()
        logger.info("Registered image %s (%dx%d)", record.id, record.width, record.height)
        return True

    def register(self, path: str, image_id: str | None = None) -> ImageRecord | None:
        """Register one image file, reading its size from disk."""
        size = self.read_dimensions(path)
        if size is None:
            return None
        file_name = _basename(path)
        record = ImageRecord(
            id=image_id or PurePosixPath(file_name).stem,
            file_name=file_name,
            path=path,
            width=size[0],
            height=size[1],
        )
        return record if self.add(record) else None

    def register_directory(self, image_dir: str) -> tuple[int, int]:
        """Register every image directly under *image_dir*.

        Returns ``(registered, skipped)``.  Raises :class:`ValueError` if the
        path is not a directory.
        """
        if not self.storage.isdir(image_dir):
            raise ValueError(f"Path is not a directory: {image_dir}")

        registered = skipped = 0
        for path in self.storage.list_files(image_dir, IMAGE_EXTENSIONS):
            if self.register(path) is None:
                skipped += 1
            else:
                registered += 1
        logger.info("Scanned %s: %d registered, %d skipped", image_dir, registered, skipped)
        return registered, skipped

    def get(self, image_id: str) -> ImageRecord | None:
        cursor = self.db.connection.cursor()
        try:
            row = cursor.execute(
                "SELECT id, file_name, path, width, height FROM images WHERE id = ?",
                [image_id],
            ).fetchone()
        finally:
            cursor.close()
        if row is None:
            return None
        return ImageRecord(id=row[0], file_name=row[1], path=row[2], width=row[3], height=row[4])

    def list_images(self) -> list[ImageRecord]:
        cursor = self.db.connection.cursor()
        try:
            rows = cursor.execute(
                "SELECT id, file_name, path, width, height FROM images ORDER BY file_name, id"
            ).fetchall()
        finally:
            cursor.close()
        return [
            ImageRecord(id=r[0], file_name=r[1], path=r[2], width=r[3], height=r[4]) for r in rows
        ]

    def metadata(self, image_id: str) -> ImageMetadata | None:
        """The export-facing view of a registered image."""
        record = self.get(image_id)
        if record is None:
            return None
        return ImageMetadata(
            id=record.id,
            filename=record.file_name,
            width=record.width,
            height=record.height,
            path=record.path,
        )
