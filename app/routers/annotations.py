"""Annotations router for the image open in a review session.

Endpoints (all under /sessions/{session_id}/annotations):
- GET    ""                      -- list, optionally by state
- GET    /counts                 -- per-state counts
- GET    /visible                -- partition by ROI membership
- POST   ""                      -- create from an image-space bbox
- POST   /draw                   -- create from a finished surface-space drag
- POST   /hit-test               -- what a surface point lands on
- DELETE /selection              -- clear the selection
- GET    /{annotation_id}        -- one annotation
- PATCH  /{annotation_id}        -- partial update
- DELETE /{annotation_id}        -- delete
- POST   /{annotation_id}/state  -- verification state change
- POST   /{annotation_id}/select -- select
- POST   /{annotation_id}/resize -- drag a resize handle
- POST   /{annotation_id}/move   -- translate
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, Query

from app.dependencies import get_open_session
from app.models.annotation import (
    Annotation,
    AnnotationCounts,
    AnnotationCreate,
    AnnotationListResponse,
    AnnotationPatch,
    DrawRequest,
    HitTestResponse,
    MoveRequest,
    ResizeRequest,
    StateChangeRequest,
)
from app.models.geometry import Point
from app.services.errors import AnnotationValidationError, NotFoundError, TransitionRefusedError
from app.services.geometry import parse_handle
from app.services.session import ReviewSession
from app.services.state_machine import parse_state

router = APIRouter(prefix="/sessions/{session_id}/annotations", tags=["annotations"])


def _require(session: ReviewSession, annotation_id: str) -> Annotation:
    annotation = session.store.find(annotation_id)
    if annotation is None:
        raise NotFoundError(f"Annotation not found: {annotation_id}")
    return annotation


@router.get("", response_model=AnnotationListResponse)
def list_annotations(
    state: str | None = Query(default=None, description="Filter by verification state"),
    session: ReviewSession = Depends(get_open_session),
) -> AnnotationListResponse:
    store = session.store
    if state is not None:
        if parse_state(state) is None:
            raise AnnotationValidationError(f"Unknown state: {state}")
        annotations = store.list_by_state(state)
    else:
        annotations = store.get_current_annotations()
    return AnnotationListResponse(image_id=store.current_image_id, annotations=annotations)


@router.get("/counts", response_model=AnnotationCounts)
def get_counts(session: ReviewSession = Depends(get_open_session)) -> AnnotationCounts:
    return session.store.counts()


@router.get("/visible")
def get_visible(session: ReviewSession = Depends(get_open_session)) -> dict:
    """Annotations inside / outside the active ROI, plus whether filtering applies."""
    inside, outside = session.roi.visible_annotations(session.store.get_current_annotations())
    return {
        "filtering_active": session.roi.is_filtering_active(),
        "inside": [a.model_dump(mode="json") for a in inside],
        "outside": [a.model_dump(mode="json") for a in outside],
    }


@router.post("", response_model=Annotation, status_code=201)
def create_annotation(
    body: AnnotationCreate,
    session: ReviewSession = Depends(get_open_session),
) -> Annotation:
    annotation = session.store.create(
        body.bbox,
        body.class_name,
        body.confidence,
        state=body.state,
        segmentation_mask=body.segmentation_mask,
        metadata=body.metadata,
    )
    if annotation is None:
        raise AnnotationValidationError("Invalid bounding box: width and height must be positive")
    return annotation


@router.post("/draw", response_model=Annotation, status_code=201)
def draw_annotation(
    body: DrawRequest,
    session: ReviewSession = Depends(get_open_session),
) -> Annotation:
    annotation = session.draw(body.start, body.end, body.class_name)
    if annotation is None:
        raise AnnotationValidationError("Annotation too small")
    return annotation


@router.post("/hit-test", response_model=HitTestResponse)
def hit_test(
    pointer: Point,
    session: ReviewSession = Depends(get_open_session),
) -> HitTestResponse:
    annotation, handle = session.hit_test(pointer)
    return HitTestResponse(
        annotation_id=annotation.id if annotation else None,
        handle=handle.value if handle else None,
    )


@router.delete("/selection", status_code=204)
def clear_selection(session: ReviewSession = Depends(get_open_session)) -> None:
    session.store.clear_selection()


@router.get("/{annotation_id}", response_model=Annotation)
def get_annotation(
    annotation_id: str,
    session: ReviewSession = Depends(get_open_session),
) -> Annotation:
    return _require(session, annotation_id)


@router.patch("/{annotation_id}", response_model=Annotation)
def update_annotation(
    annotation_id: str,
    patch: AnnotationPatch,
    session: ReviewSession = Depends(get_open_session),
) -> Annotation:
    """Apply the fields present in the body; invalid values are coerced or ignored."""
    _require(session, annotation_id)
    if not session.store.update(annotation_id, patch):
        raise AnnotationValidationError("Update rejected")
    return _require(session, annotation_id)


@router.delete("/{annotation_id}", status_code=204)
def delete_annotation(
    annotation_id: str,
    session: ReviewSession = Depends(get_open_session),
) -> None:
    if not session.store.delete(annotation_id):
        raise NotFoundError(f"Annotation not found: {annotation_id}")


@router.post("/{annotation_id}/state", response_model=Annotation)
def change_state(
    annotation_id: str,
    body: StateChangeRequest,
    session: ReviewSession = Depends(get_open_session),
) -> Annotation:
    current = _require(session, annotation_id)
    target = parse_state(body.state)
    if target is None:
        raise AnnotationValidationError(f"Unknown state: {body.state}")
    if not session.store.set_state(annotation_id, target):
        raise TransitionRefusedError(f"Transition {current.state.value} -> {target.value} refused")
    return _require(session, annotation_id)


@router.post("/{annotation_id}/select", response_model=Annotation)
def select_annotation(
    annotation_id: str,
    session: ReviewSession = Depends(get_open_session),
) -> Annotation:
    if not session.store.select(annotation_id):
        raise NotFoundError(f"Annotation not found: {annotation_id}")
    return _require(session, annotation_id)


@router.post("/{annotation_id}/resize", response_model=Annotation)
def resize_annotation(
    annotation_id: str,
    body: ResizeRequest,
    session: ReviewSession = Depends(get_open_session),
) -> Annotation:
    _require(session, annotation_id)
    if parse_handle(body.handle) is None:
        raise AnnotationValidationError(f"Unknown handle: {body.handle}")
    annotation = session.resize_annotation(annotation_id, body.handle, body.pointer)
    if annotation is None:
        raise AnnotationValidationError("Resize rejected")
    return annotation


@router.post("/{annotation_id}/move", response_model=Annotation)
def move_annotation(
    annotation_id: str,
    body: MoveRequest,
    session: ReviewSession = Depends(get_open_session),
) -> Annotation:
    _require(session, annotation_id)
    annotation = session.move_annotation(annotation_id, body.dx, body.dy)
    if annotation is None:
        raise AnnotationValidationError("Move rejected")
    return annotation
