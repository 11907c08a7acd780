"""Pydantic models for annotation records, patches, and history."""

from datetime import datetime
from enum import Enum
from typing import Any, ClassVar

from pydantic import BaseModel, Field

from app.models.geometry import BBox, Point


class AnnotationState(str, Enum):
    """Verification workflow state of a single annotation."""

    SUGGESTED = "Suggested"
    MODIFIED = "Modified"
    VERIFIED = "Verified"
    REJECTED = "Rejected"


class Annotation(BaseModel):
    """Immutable snapshot of one labeled box on one image.

    Callers only ever see snapshots; the store swaps in a new record on
    every mutation.
    """

    id: str
    image_id: str
    bbox: BBox
    class_name: str
    confidence: float = 1.0
    state: AnnotationState = AnnotationState.SUGGESTED
    segmentation_mask: tuple[Point, ...] | None = None
    selected: bool = False
    created_at: datetime
    modified_at: datetime
    metadata: dict[str, Any] = Field(default_factory=dict)

    model_config = {"frozen": True}


class AnnotationPatch(BaseModel):
    """Partial update; only fields explicitly set are applied."""

    bbox: BBox | None = None
    class_name: str | None = None
    confidence: float | None = None
    state: str | None = None
    segmentation_mask: list[Point] | None = None
    metadata: dict[str, Any] | None = None

    CONTENT_FIELDS: ClassVar[frozenset[str]] = frozenset(
        {"bbox", "class_name", "confidence", "segmentation_mask"}
    )

    def provided(self) -> set[str]:
        """Names of the fields the caller actually set."""
        return set(self.model_fields_set)

    def touches_content(self) -> bool:
        """True when any content field (not state/metadata) is being changed."""
        return bool(self.provided() & self.CONTENT_FIELDS)


class HistoryAction(str, Enum):
    CREATE = "create"
    UPDATE = "update"
    DELETE = "delete"


class HistoryEntry(BaseModel):
    """Immutable edit-history record."""

    timestamp: datetime
    action: HistoryAction
    snapshot: Annotation
    prior_snapshot: Annotation | None = None
    image_id: str
    session_id: str

    model_config = {"frozen": True}


class AnnotationCounts(BaseModel):
    """Per-state counts for the current image."""

    Suggested: int = 0
    Modified: int = 0
    Verified: int = 0
    Rejected: int = 0
    total: int = 0


# ---------------------------------------------------------------------------
# Request bodies for the annotations router
# ---------------------------------------------------------------------------


class AnnotationCreate(BaseModel):
    """Request body for POST /sessions/{id}/annotations."""

    bbox: BBox
    class_name: str = "Other"
    confidence: float = 1.0
    state: AnnotationState | None = None
    segmentation_mask: list[Point] | None = None
    metadata: dict[str, Any] = Field(default_factory=dict)


class DrawRequest(BaseModel):
    """Request body for POST /sessions/{id}/annotations/draw -- a finished drag in surface space."""

    start: Point
    end: Point
    class_name: str = "Other"


class StateChangeRequest(BaseModel):
    """Request body for POST /sessions/{id}/annotations/{ann_id}/state."""

    state: str


class ResizeRequest(BaseModel):
    """Request body for a handle drag; the pointer is in surface space."""

    handle: str
    pointer: Point


class MoveRequest(BaseModel):
    """Request body for a move; deltas are in image space."""

    dx: float
    dy: float


class AnnotationListResponse(BaseModel):
    """Annotations of the current image."""

    image_id: str | None
    annotations: list[Annotation]


class HitTestResponse(BaseModel):
    """Result of a pointer hit test on the current image."""

    annotation_id: str | None = None
    handle: str | None = None
