"""Persistence collaborator for per-image annotation lists.

The annotation store never talks to storage directly; a session hands
its current list to an :class:`AnnotationPersistence` implementation,
which reports success per item.  There is no retry here -- a failed
item simply stays dirty until the next save.
"""

from __future__ import annotations

import json
import logging
from collections.abc import Sequence
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Protocol

import duckdb
import pandas as pd

from app.models.annotation import Annotation
from app.repositories.duckdb_repo import DuckDBRepo

logger = logging.getLogger(__name__)

ANNOTATION_COLUMNS: list[str] = [
    "id",
    "image_id",
    "class_name",
    "bbox_x",
    "bbox_y",
    "bbox_w",
    "bbox_h",
    "confidence",
    "state",
    "source",
    "segmentation",
    "created_at",
    "modified_at",
    "metadata",
]


@dataclass
class SaveResult:
    """Per-item outcome of saving one image's annotation list."""

    image_id: str
    saved: list[str] = field(default_factory=list)
    errors: dict[str, str] = field(default_factory=dict)
    removed: int = 0

    @property
    def success(self) -> bool:
        return not self.errors


class AnnotationPersistence(Protocol):
    """What a session needs from a storage backend."""

    def save(self, image_id: str, annotations: Sequence[Annotation]) -> SaveResult: ...

    def load(self, image_id: str) -> list[dict[str, Any]]: ...


def _naive_utc(value: datetime) -> datetime:
    if value.tzinfo is not None:
        value = value.astimezone(timezone.utc).replace(tzinfo=None)
    return value


def annotation_to_row(annotation: Annotation, source: str = "review") -> dict[str, Any]:
    """Flatten an annotation into the ``annotations`` table layout."""
    mask = annotation.segmentation_mask
    return {
        "id": annotation.id,
        "image_id": annotation.image_id,
        "class_name": annotation.class_name,
        "bbox_x": annotation.bbox.x,
        "bbox_y": annotation.bbox.y,
        "bbox_w": annotation.bbox.width,
        "bbox_h": annotation.bbox.height,
        "confidence": annotation.confidence,
        "state": annotation.state.value,
        "source": source,
        "segmentation": json.dumps([p.model_dump() for p in mask]) if mask is not None else None,
        "created_at": _naive_utc(annotation.created_at),
        "modified_at": _naive_utc(annotation.modified_at),
        "metadata": json.dumps(annotation.metadata) if annotation.metadata else None,
    }


def row_to_record(row: dict[str, Any]) -> dict[str, Any]:
    """Turn a table row back into a record accepted by ``load_annotations``."""
    segmentation = row.get("segmentation")
    metadata = row.get("metadata")
    created_at = row.get("created_at")
    modified_at = row.get("modified_at")
    return {
        "id": row["id"],
        "bbox": {
            "x": row["bbox_x"],
            "y": row["bbox_y"],
            "width": row["bbox_w"],
            "height": row["bbox_h"],
        },
        "class_name": row["class_name"],
        "confidence": row.get("confidence"),
        "state": row.get("state"),
        "segmentation_mask": json.loads(segmentation) if segmentation else None,
        "created_at": created_at.replace(tzinfo=timezone.utc) if created_at else None,
        "modified_at": modified_at.replace(tzinfo=timezone.utc) if modified_at else None,
        "metadata": json.loads(metadata) if metadata else {},
    }


class DuckDBAnnotationPersistence:
    """Stores annotation lists in the ``annotations`` table.

    A save replaces the image's rows: ids no longer present are deleted,
    then each annotation is deleted and re-inserted on its own so one bad
    row does not sink the rest.
    """

    def __init__(self, db: DuckDBRepo) -> None:
        self.db = db

    def save(self, image_id: str, annotations: Sequence[Annotation]) -> SaveResult:
        result = SaveResult(image_id=image_id)
        cursor = self.db.connection.cursor()
        try:
            keep = [a.id for a in annotations]
            before = cursor.execute(
                "SELECT count(*) FROM annotations WHERE image_id = ?", [image_id]
            ).fetchone()[0]
            if keep:
                cursor.execute(
                    "DELETE FROM annotations WHERE image_id = ? AND NOT list_contains(?, id)",
                    [image_id, keep],
                )
            else:
                cursor.execute("DELETE FROM annotations WHERE image_id = ?", [image_id])
            after = cursor.execute(
                "SELECT count(*) FROM annotations WHERE image_id = ?", [image_id]
            ).fetchone()[0]
            result.removed = before - after

            for annotation in annotations:
                row = annotation_to_row(annotation)
                try:
                    cursor.execute("DELETE FROM annotations WHERE id = ?", [annotation.id])
                    cursor.execute(
                        f"INSERT INTO annotations ({', '.join(ANNOTATION_COLUMNS)}) "
                        f"VALUES ({', '.join('?' for _ in ANNOTATION_COLUMNS)})",
                        [row[col] for col in ANNOTATION_COLUMNS],
                    )
                    result.saved.append(annotation.id)
                except duckdb.Error as exc:
                    logger.warning("Failed to save annotation %s: %s", annotation.id, exc)
                    result.errors[annotation.id] = str(exc)
        finally:
            cursor.close()

        logger.info(
            "Saved %d/%d annotations for image %s (%d removed)",
            len(result.saved),
            len(annotations),
            image_id,
            result.removed,
        )
        return result

    def load(self, image_id: str) -> list[dict[str, Any]]:
        cursor = self.db.connection.cursor()
        try:
            df = cursor.execute(
                f"SELECT {', '.join(ANNOTATION_COLUMNS)} FROM annotations "
                "WHERE image_id = ? ORDER BY created_at, id",
                [image_id],
            ).fetch_df()
        finally:
            cursor.close()

        df = df.astype(object).where(pd.notna(df), None)
        return [row_to_record(row) for row in df.to_dict(orient="records")]

    def insert_batch(self, batch_df: pd.DataFrame) -> int:
        """Bulk-append prepared rows (used by the suggestion importer)."""
        cursor = self.db.connection.cursor()
        try:
            cursor.register("batch_df", batch_df)
            cursor.execute(
                f"INSERT INTO annotations ({', '.join(ANNOTATION_COLUMNS)}) "
                f"SELECT {', '.join(ANNOTATION_COLUMNS)} FROM batch_df"
            )
            cursor.unregister("batch_df")
        finally:
            cursor.close()
        return len(batch_df)


class InMemoryAnnotationPersistence:
    """Dictionary-backed persistence for tests and ephemeral sessions.

    ``fail_ids`` makes individual saves fail, to exercise per-item error
    reporting.
    """

    def __init__(self, fail_ids: set[str] | None = None) -> None:
        self.rows: dict[str, list[dict[str, Any]]] = {}
        self.fail_ids = set(fail_ids or ())
        self.save_calls = 0

    def save(self, image_id: str, annotations: Sequence[Annotation]) -> SaveResult:
        self.save_calls += 1
        result = SaveResult(image_id=image_id)
        previous = {row["id"] for row in self.rows.get(image_id, [])}
        stored: list[dict[str, Any]] = []
        for annotation in annotations:
            if annotation.id in self.fail_ids:
                result.errors[annotation.id] = "simulated failure"
                continue
            stored.append(annotation.model_dump(mode="json"))
            result.saved.append(annotation.id)
        result.removed = len(previous - {a.id for a in annotations})
        self.rows[image_id] = stored
        return result

    def load(self, image_id: str) -> list[dict[str, Any]]:
        return [dict(row) for row in self.rows.get(image_id, [])]
