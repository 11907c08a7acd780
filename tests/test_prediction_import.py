"""Tests for streaming suggestion import from COCO detection results.

Covers the PredictionParser batches and the POST /predictions/import
endpoint, including how imported suggestions surface in a review session.
"""

from __future__ import annotations

import json
from pathlib import Path

import httpx
import pytest

from app.ingestion.prediction_parser import PredictionParser
from app.repositories.duckdb_repo import DuckDBRepo
from app.services.persistence import ANNOTATION_COLUMNS, DuckDBAnnotationPersistence

FIXTURES_DIR = Path(__file__).parent / "fixtures"
COCO_PREDICTIONS = FIXTURES_DIR / "coco_predictions.json"

CATEGORIES = {1: "Car", 2: "Truck", 6: "Person"}


@pytest.fixture()
def predictions_file() -> Path:
    """Five predictions: three importable, one unmapped category, one empty box."""
    return COCO_PREDICTIONS


# ------------------------------------------------------------------
# Parser
# ------------------------------------------------------------------


class TestPredictionParser:
    def test_yields_suggestion_rows(self, predictions_file: Path) -> None:
        parser = PredictionParser()
        batches = list(parser.parse_streaming(predictions_file, CATEGORIES))
        assert len(batches) == 1

        df = batches[0]
        assert list(df.columns) == ANNOTATION_COLUMNS
        assert len(df) == 3
        assert set(df["state"]) == {"Suggested"}
        assert list(df["image_id"]) == ["1", "1", "2"]
        assert list(df["class_name"]) == ["Car", "Truck", "Person"]
        assert df["confidence"].tolist() == [0.92, 0.55, 0.81]
        assert json.loads(df["metadata"].iloc[0]) == {"category_id": 1}
        assert all(i.startswith("ann_") for i in df["id"])

    def test_skips_unmapped_and_empty(self, predictions_file: Path) -> None:
        parser = PredictionParser()
        list(parser.parse_streaming(predictions_file, CATEGORIES))
        assert parser.skipped == 2

    def test_skips_non_numeric_boxes(self, tmp_path: Path) -> None:
        path = tmp_path / "broken.json"
        path.write_text(
            json.dumps(
                [
                    {"image_id": 1, "category_id": 1, "bbox": [10, 10, "wide", 20], "score": 0.9},
                    {"image_id": 1, "category_id": 1, "bbox": 42, "score": 0.9},
                    {"image_id": 1, "category_id": 1, "bbox": [1, 2], "score": 0.9},
                    {"image_id": 1, "category_id": 1, "bbox": [10, 10, 30, 20], "score": "high"},
                    {"image_id": 1, "category_id": 2, "bbox": [10, 10, 30, 20], "score": 0.4},
                ]
            )
        )
        parser = PredictionParser()
        batches = list(parser.parse_streaming(path, CATEGORIES))
        assert parser.skipped == 4
        assert len(batches) == 1
        assert batches[0]["class_name"].tolist() == ["Truck"]
        assert batches[0]["bbox_w"].tolist() == [30.0]

    def test_image_map_resolves_ids(self, predictions_file: Path) -> None:
        parser = PredictionParser()
        batches = list(
            parser.parse_streaming(predictions_file, CATEGORIES, image_map={1: "street_001"})
        )
        assert list(batches[0]["image_id"]) == ["street_001", "street_001"]
        assert parser.skipped == 3

    def test_batches(self, predictions_file: Path) -> None:
        parser = PredictionParser(batch_size=2)
        sizes = [len(df) for df in parser.parse_streaming(predictions_file, CATEGORIES)]
        assert sizes == [2, 1]

    def test_batches_load_into_duckdb(self, predictions_file: Path, db: DuckDBRepo) -> None:
        persistence = DuckDBAnnotationPersistence(db)
        for batch in PredictionParser().parse_streaming(predictions_file, CATEGORIES):
            persistence.insert_batch(batch)
        records = persistence.load("1")
        assert sorted(r["class_name"] for r in records) == ["Car", "Truck"]
        assert {r["state"] for r in records} == {"Suggested"}
        assert {r["metadata"]["category_id"] for r in records} == {1, 2}


# ------------------------------------------------------------------
# Endpoint
# ------------------------------------------------------------------


class TestPredictionImportApi:
    async def test_import_and_review(self, app_client: httpx.AsyncClient, predictions_file: Path) -> None:
        resp = await app_client.post(
            "/predictions/import",
            json={
                "prediction_path": str(predictions_file),
                "categories": {str(k): v for k, v in CATEGORIES.items()},
                "image_ids": {"1": "street_001", "2": "street_002"},
            },
        )
        assert resp.status_code == 200
        body = resp.json()
        assert body["prediction_count"] == 3
        assert body["skipped_count"] == 2
        assert "Imported 3 suggestions" in body["message"]

        session_id = (await app_client.post("/sessions")).json()["session_id"]
        await app_client.put(
            f"/sessions/{session_id}/image",
            json={"image_id": "street_001", "width": 640, "height": 480},
        )
        annotations = (await app_client.get(f"/sessions/{session_id}/annotations")).json()["annotations"]
        assert len(annotations) == 2
        assert {a["state"] for a in annotations} == {"Suggested"}

        # Adjusting a suggestion turns it into a user modification.
        target = annotations[0]["id"]
        resp = await app_client.patch(
            f"/sessions/{session_id}/annotations/{target}",
            json={"bbox": {"x": 12, "y": 22, "width": 100, "height": 50}},
        )
        assert resp.json()["state"] == "Modified"

    async def test_default_category_map_uses_class_list(
        self, app_client: httpx.AsyncClient, predictions_file: Path
    ) -> None:
        resp = await app_client.post("/predictions/import", json={"prediction_path": str(predictions_file)})
        body = resp.json()
        # ids 1, 2 and 6 are Car, Truck and Person in the default class list; 99 is unmapped.
        assert body["prediction_count"] == 3
        assert body["skipped_count"] == 2

    async def test_missing_file(self, app_client: httpx.AsyncClient, tmp_path: Path) -> None:
        resp = await app_client.post(
            "/predictions/import", json={"prediction_path": str(tmp_path / "nope.json")}
        )
        assert resp.status_code == 400
