"""Integration tests for the session, annotation, ROI and export endpoints."""

from __future__ import annotations

import io
import zipfile

import httpx


async def _open_session(client: httpx.AsyncClient, width: int = 1000, height: int = 800) -> str:
    """Create a session and open an ad-hoc image on a 500x500 surface."""
    resp = await client.post("/sessions")
    assert resp.status_code == 201
    session_id = resp.json()["session_id"]

    resp = await client.put(f"/sessions/{session_id}/viewport", json={"surface_width": 500, "surface_height": 500})
    assert resp.status_code == 200
    resp = await client.put(
        f"/sessions/{session_id}/image",
        json={"image_id": "img_001", "width": width, "height": height, "filename": "street_001.jpg"},
    )
    assert resp.status_code == 200
    return session_id


async def _create(client: httpx.AsyncClient, session_id: str, **body) -> dict:
    payload = {"bbox": {"x": 100, "y": 100, "width": 200, "height": 100}, "class_name": "Car"}
    payload.update(body)
    resp = await client.post(f"/sessions/{session_id}/annotations", json=payload)
    assert resp.status_code == 201, resp.text
    return resp.json()


# ------------------------------------------------------------------
# Sessions
# ------------------------------------------------------------------


class TestSessions:
    async def test_open_image_returns_mapping(self, app_client: httpx.AsyncClient) -> None:
        session_id = await _open_session(app_client)
        resp = await app_client.get(f"/sessions/{session_id}")
        body = resp.json()
        assert body["image_id"] == "img_001"
        assert body["mapping"]["scale"] == 0.5
        assert body["mapping"]["offset_y"] == 50

    async def test_unknown_session_is_404(self, app_client: httpx.AsyncClient) -> None:
        resp = await app_client.get("/sessions/nope")
        assert resp.status_code == 404
        resp = await app_client.get("/sessions/nope/annotations")
        assert resp.status_code == 404

    async def test_no_image_open_is_409(self, app_client: httpx.AsyncClient) -> None:
        session_id = (await app_client.post("/sessions")).json()["session_id"]
        resp = await app_client.get(f"/sessions/{session_id}/annotations")
        assert resp.status_code == 409

    async def test_unregistered_image_without_dimensions(self, app_client: httpx.AsyncClient) -> None:
        session_id = (await app_client.post("/sessions")).json()["session_id"]
        resp = await app_client.put(f"/sessions/{session_id}/image", json={"image_id": "ghost"})
        assert resp.status_code == 404

    async def test_non_positive_dimensions(self, app_client: httpx.AsyncClient) -> None:
        session_id = (await app_client.post("/sessions")).json()["session_id"]
        resp = await app_client.put(
            f"/sessions/{session_id}/image", json={"image_id": "img", "width": 0, "height": 10}
        )
        assert resp.status_code == 400

    async def test_close_session(self, app_client: httpx.AsyncClient) -> None:
        session_id = await _open_session(app_client)
        assert (await app_client.delete(f"/sessions/{session_id}")).status_code == 204
        assert (await app_client.delete(f"/sessions/{session_id}")).status_code == 404

    async def test_save_and_reload_in_new_session(self, app_client: httpx.AsyncClient) -> None:
        session_id = await _open_session(app_client)
        ann = await _create(app_client, session_id)
        resp = await app_client.post(f"/sessions/{session_id}/save")
        assert resp.json()["success"] is True
        assert resp.json()["saved_count"] == 1

        other = await _open_session(app_client)
        resp = await app_client.get(f"/sessions/{other}/annotations")
        assert [a["id"] for a in resp.json()["annotations"]] == [ann["id"]]

    async def test_history(self, app_client: httpx.AsyncClient) -> None:
        session_id = await _open_session(app_client)
        ann = await _create(app_client, session_id)
        await app_client.patch(f"/sessions/{session_id}/annotations/{ann['id']}", json={"class_name": "Bus"})
        resp = await app_client.get(f"/sessions/{session_id}/history", params={"image_id": "img_001"})
        assert [e["action"] for e in resp.json()] == ["create", "update"]


# ------------------------------------------------------------------
# Annotations
# ------------------------------------------------------------------


class TestAnnotations:
    async def test_create_and_list(self, app_client: httpx.AsyncClient) -> None:
        session_id = await _open_session(app_client)
        ann = await _create(app_client, session_id, class_name="Hovercraft")
        assert ann["state"] == "Modified"
        assert ann["class_name"] == "Other"

        resp = await app_client.get(f"/sessions/{session_id}/annotations")
        assert resp.json()["image_id"] == "img_001"
        assert len(resp.json()["annotations"]) == 1

    async def test_invalid_bbox_is_400(self, app_client: httpx.AsyncClient) -> None:
        session_id = await _open_session(app_client)
        resp = await app_client.post(
            f"/sessions/{session_id}/annotations",
            json={"bbox": {"x": 0, "y": 0, "width": 0, "height": 10}},
        )
        assert resp.status_code == 400

    async def test_draw(self, app_client: httpx.AsyncClient) -> None:
        session_id = await _open_session(app_client)
        resp = await app_client.post(
            f"/sessions/{session_id}/annotations/draw",
            json={"start": {"x": 50, "y": 100}, "end": {"x": 150, "y": 200}, "class_name": "Bus"},
        )
        assert resp.status_code == 201
        assert resp.json()["bbox"] == {"x": 100, "y": 100, "width": 200, "height": 200}

        resp = await app_client.post(
            f"/sessions/{session_id}/annotations/draw",
            json={"start": {"x": 50, "y": 100}, "end": {"x": 52, "y": 102}},
        )
        assert resp.status_code == 400

    async def test_state_filter_and_counts(self, app_client: httpx.AsyncClient) -> None:
        session_id = await _open_session(app_client)
        await _create(app_client, session_id, state="Suggested")
        ann = await _create(app_client, session_id)
        resp = await app_client.post(
            f"/sessions/{session_id}/annotations/{ann['id']}/state", json={"state": "Verified"}
        )
        assert resp.json()["state"] == "Verified"

        resp = await app_client.get(f"/sessions/{session_id}/annotations", params={"state": "Verified"})
        assert [a["id"] for a in resp.json()["annotations"]] == [ann["id"]]
        counts = (await app_client.get(f"/sessions/{session_id}/annotations/counts")).json()
        assert counts == {"Suggested": 1, "Modified": 0, "Verified": 1, "Rejected": 0, "total": 2}

        resp = await app_client.get(f"/sessions/{session_id}/annotations", params={"state": "Meh"})
        assert resp.status_code == 400

    async def test_unknown_state_change_is_400(self, app_client: httpx.AsyncClient) -> None:
        session_id = await _open_session(app_client)
        ann = await _create(app_client, session_id)
        resp = await app_client.post(
            f"/sessions/{session_id}/annotations/{ann['id']}/state", json={"state": "Approved"}
        )
        assert resp.status_code == 400

    async def test_patch_promotes_suggestion(self, app_client: httpx.AsyncClient) -> None:
        session_id = await _open_session(app_client)
        ann = await _create(app_client, session_id, state="Suggested")
        resp = await app_client.patch(
            f"/sessions/{session_id}/annotations/{ann['id']}", json={"confidence": 0.3}
        )
        assert resp.status_code == 200
        assert resp.json()["state"] == "Modified"
        assert resp.json()["confidence"] == 0.3

    async def test_select_hit_test_and_resize(self, app_client: httpx.AsyncClient) -> None:
        session_id = await _open_session(app_client)
        ann = await _create(app_client, session_id)
        base = f"/sessions/{session_id}/annotations"

        resp = await app_client.post(f"{base}/hit-test", json={"x": 100, "y": 100})
        assert resp.json() == {"annotation_id": ann["id"], "handle": None}

        resp = await app_client.post(f"{base}/{ann['id']}/select")
        assert resp.json()["selected"] is True

        # SE corner of the selected box is at surface (150, 150).
        resp = await app_client.post(f"{base}/hit-test", json={"x": 150, "y": 150})
        assert resp.json()["handle"] == "se"

        resp = await app_client.post(
            f"{base}/{ann['id']}/resize", json={"handle": "se", "pointer": {"x": 200, "y": 200}}
        )
        assert resp.json()["bbox"] == {"x": 100, "y": 100, "width": 300, "height": 200}

        resp = await app_client.post(
            f"{base}/{ann['id']}/resize", json={"handle": "zz", "pointer": {"x": 0, "y": 0}}
        )
        assert resp.status_code == 400

        assert (await app_client.delete(f"{base}/selection")).status_code == 204
        assert (await app_client.get(f"{base}/{ann['id']}")).json()["selected"] is False

    async def test_move(self, app_client: httpx.AsyncClient) -> None:
        session_id = await _open_session(app_client)
        ann = await _create(app_client, session_id)
        resp = await app_client.post(
            f"/sessions/{session_id}/annotations/{ann['id']}/move", json={"dx": 10000, "dy": 5}
        )
        assert resp.json()["bbox"] == {"x": 800, "y": 105, "width": 200, "height": 100}

    async def test_delete(self, app_client: httpx.AsyncClient) -> None:
        session_id = await _open_session(app_client)
        ann = await _create(app_client, session_id)
        url = f"/sessions/{session_id}/annotations/{ann['id']}"
        assert (await app_client.delete(url)).status_code == 204
        assert (await app_client.get(url)).status_code == 404
        assert (await app_client.delete(url)).status_code == 404


# ------------------------------------------------------------------
# ROI
# ------------------------------------------------------------------


class TestRoi:
    async def test_roi_lifecycle_and_visibility(self, app_client: httpx.AsyncClient) -> None:
        session_id = await _open_session(app_client)
        base = f"/sessions/{session_id}"
        inside = await _create(app_client, session_id)
        outside = await _create(
            app_client, session_id, bbox={"x": 700, "y": 600, "width": 50, "height": 50}
        )

        square = [{"x": 0, "y": 0}, {"x": 400, "y": 0}, {"x": 400, "y": 400}, {"x": 0, "y": 400}]
        resp = await app_client.post(f"{base}/roi", json={"points": square})
        assert resp.status_code == 201
        roi_id = resp.json()["id"]

        state = (await app_client.get(f"{base}/roi")).json()
        assert state["stats"]["area"] == 160000
        assert state["filtering_active"] is False

        resp = await app_client.put(f"{base}/roi/filtering", json={"enabled": True})
        assert resp.json() == {"filtering_active": True}

        visible = (await app_client.get(f"{base}/annotations/visible")).json()
        assert [a["id"] for a in visible["inside"]] == [inside["id"]]
        assert [a["id"] for a in visible["outside"]] == [outside["id"]]

        resp = await app_client.post(f"{base}/roi/contains", json={"x": 900, "y": 10})
        assert resp.json() == {"inside": False}

        resp = await app_client.patch(f"{base}/roi/{roi_id}", json={"name": "lane"})
        assert resp.json()["name"] == "lane"
        assert (await app_client.patch(f"{base}/roi/other", json={"name": "x"})).status_code == 404

        exported = (await app_client.get(f"{base}/roi/export")).json()
        assert (await app_client.delete(f"{base}/roi")).status_code == 204
        assert (await app_client.get(f"{base}/roi/export")).status_code == 404

        resp = await app_client.post(f"{base}/roi/import", json=exported)
        assert resp.status_code == 200
        assert resp.json()["id"] == roi_id

    async def test_too_few_points(self, app_client: httpx.AsyncClient) -> None:
        session_id = await _open_session(app_client)
        resp = await app_client.post(
            f"/sessions/{session_id}/roi", json={"points": [{"x": 0, "y": 0}, {"x": 10, "y": 10}]}
        )
        assert resp.status_code == 400
        assert "at least 3" in resp.json()["detail"]

    async def test_clear_without_roi(self, app_client: httpx.AsyncClient) -> None:
        session_id = await _open_session(app_client)
        assert (await app_client.delete(f"/sessions/{session_id}/roi")).status_code == 404


# ------------------------------------------------------------------
# Export
# ------------------------------------------------------------------


class TestExport:
    async def test_yolo_download(self, app_client: httpx.AsyncClient) -> None:
        session_id = await _open_session(app_client)
        await _create(app_client, session_id)
        rejected = await _create(app_client, session_id)
        await app_client.post(
            f"/sessions/{session_id}/annotations/{rejected['id']}/state", json={"state": "Rejected"}
        )

        resp = await app_client.get(f"/sessions/{session_id}/export", params={"format": "yolo"})
        assert resp.status_code == 200
        assert resp.headers["content-type"].startswith("text/plain")
        assert 'filename="street_001.txt"' in resp.headers["content-disposition"]
        assert resp.headers["x-annotation-count"] == "1"
        assert resp.text == "0 0.200000 0.187500 0.200000 0.125000"

    async def test_json_with_history(self, app_client: httpx.AsyncClient) -> None:
        session_id = await _open_session(app_client)
        await _create(app_client, session_id)
        resp = await app_client.get(
            f"/sessions/{session_id}/export", params={"format": "json", "include_history": "true"}
        )
        body = resp.json()
        assert body["summary"]["total"] == 1
        assert len(body["history"]) == 1

    async def test_all_scope_voc_zip(self, app_client: httpx.AsyncClient) -> None:
        session_id = await _open_session(app_client)
        await _create(app_client, session_id)
        await app_client.put(
            f"/sessions/{session_id}/image",
            json={"image_id": "img_002", "width": 640, "height": 480, "filename": "street_002.jpg"},
        )
        await _create(app_client, session_id)

        resp = await app_client.get(
            f"/sessions/{session_id}/export", params={"format": "pascal_voc", "scope": "all"}
        )
        assert resp.headers["content-type"] == "application/zip"
        assert resp.headers["x-image-count"] == "2"
        with zipfile.ZipFile(io.BytesIO(resp.content)) as zf:
            assert sorted(zf.namelist()) == ["street_001.xml", "street_002.xml"]

    async def test_bad_format_is_422(self, app_client: httpx.AsyncClient) -> None:
        session_id = await _open_session(app_client)
        resp = await app_client.get(f"/sessions/{session_id}/export", params={"format": "csv"})
        assert resp.status_code == 422
