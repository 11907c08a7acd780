"""Streaming COCO detection results parser for suggestion import.

Parses a flat COCO results JSON array (list of prediction dicts) using
ijson in binary mode.  Yields DataFrame batches laid out like the
``annotations`` table, every row a machine suggestion in the
``Suggested`` state.
"""

from __future__ import annotations

import json
import logging
import uuid
from collections.abc import Iterator
from datetime import datetime, timezone
from pathlib import Path

import ijson
import pandas as pd

from app.models.annotation import AnnotationState
from app.services.persistence import ANNOTATION_COLUMNS

logger = logging.getLogger(__name__)


class PredictionParser:
    """Stream-parse COCO detection results and yield annotation DataFrames.

    Each prediction dict is expected to have:
    ``image_id``, ``category_id``, ``bbox`` (4-element list), ``score``.
    Predictions whose category or image cannot be resolved, or whose box
    is not strictly positive, are skipped and counted in :attr:`skipped`.
    """

    def __init__(self, batch_size: int = 5000) -> None:
        self.batch_size = batch_size
        self.skipped = 0

    def parse_streaming(
        self,
        file_path: Path,
        category_map: dict[int, str],
        image_map: dict[int, str] | None = None,
        batch_size: int | None = None,
        source: str = "prediction",
    ) -> Iterator[pd.DataFrame]:
        """Yield DataFrames of suggestion rows.

        Parameters
        ----------
        file_path:
            Path to a COCO detection results JSON file (flat array).
        category_map:
            ``category_id`` -> class name.
        image_map:
            COCO ``image_id`` -> registered image id.  When ``None`` the
            COCO id is used as-is (stringified).
        batch_size:
            Override instance batch_size if provided.
        """
        effective_batch_size = batch_size or self.batch_size
        batch: list[dict] = []
        self.skipped = 0
        now = datetime.now(timezone.utc).replace(tzinfo=None)

        with open(file_path, "rb") as f:
            for pred in ijson.items(f, "item", use_float=True):
                cat_id = pred.get("category_id")
                class_name = category_map.get(cat_id) if cat_id is not None else None
                if class_name is None:
                    self._skip("unmapped category_id=%s (image_id=%s)", cat_id, pred.get("image_id"))
                    continue

                raw_image_id = pred.get("image_id")
                if image_map is not None:
                    image_id = image_map.get(raw_image_id)
                else:
                    image_id = str(raw_image_id) if raw_image_id is not None else None
                if image_id is None:
                    self._skip("unmapped image_id=%s", raw_image_id)
                    continue

                bbox = pred.get("bbox") or []
                try:
                    x, y, w, h = (float(v) for v in bbox[:4])
                    score = float(pred.get("score", 1.0))
                except (TypeError, ValueError):
                    self._skip("malformed bbox %s or score (image_id=%s)", bbox, raw_image_id)
                    continue
                if w <= 0 or h <= 0:
                    self._skip("non-positive bbox %s (image_id=%s)", bbox, raw_image_id)
                    continue

                batch.append(
                    {
                        "id": f"ann_{uuid.uuid4().hex[:12]}",
                        "image_id": image_id,
                        "class_name": class_name,
                        "bbox_x": x,
                        "bbox_y": y,
                        "bbox_w": w,
                        "bbox_h": h,
                        "confidence": score,
                        "state": AnnotationState.SUGGESTED.value,
                        "source": source,
                        "segmentation": None,
                        "created_at": now,
                        "modified_at": now,
                        "metadata": json.dumps({"category_id": cat_id}),
                    }
                )

                if len(batch) >= effective_batch_size:
                    yield pd.DataFrame(batch, columns=ANNOTATION_COLUMNS)
                    batch = []

        if batch:
            yield pd.DataFrame(batch, columns=ANNOTATION_COLUMNS)

        if self.skipped > 0:
            logger.info("Suggestion import: skipped %d predictions", self.skipped)

    def _skip(self, message: str, *args: object) -> None:
        self.skipped += 1
        if self.skipped <= 10:
            logger.warning("Skipping prediction with " + message, *args)
        elif self.skipped == 11:
            logger.warning("Suppressing further skipped-prediction warnings...")
