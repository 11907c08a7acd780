"""Region-of-interest lifecycle and membership queries.

At most one ROI exists per engine; it belongs to the image it was drawn
on and is dropped when the engine is pointed at another image.  When no
active ROI exists every point and box is considered in scope.
"""

from __future__ import annotations

import logging
import math
import uuid
from collections.abc import Callable, Iterable, Mapping, Sequence
from datetime import datetime
from typing import Any

from pydantic import ValidationError

from app.config import EngineConfig
from app.models.annotation import Annotation
from app.models.geometry import BBox, Point
from app.models.roi import (
    ROI,
    PolygonValidation,
    ROIRejection,
    ROIRejectionReason,
    ROIStats,
    ROIUpdate,
)
from app.services import events
from app.services.annotation_store import utc_now
from app.services.events import EventEmitter
from app.services.geometry import (
    point_in_polygon,
    point_in_rect,
    polygon_area,
    polygon_bounds,
    polygon_perimeter,
)

logger = logging.getLogger(__name__)


def generate_roi_id() -> str:
    return f"roi_{uuid.uuid4().hex[:12]}"


def _coincide(a: Point, b: Point, tolerance: float) -> bool:
    return abs(a.x - b.x) < tolerance and abs(a.y - b.y) < tolerance


def dedupe_vertices(points: Sequence[Point], tolerance: float) -> list[Point]:
    """Drop vertices that coincide with their predecessor, including across the wrap."""
    result: list[Point] = []
    for point in points:
        if result and _coincide(result[-1], point, tolerance):
            continue
        result.append(point)
    while len(result) > 1 and _coincide(result[-1], result[0], tolerance):
        result.pop()
    return result


def validate_polygon(
    points: Sequence[Point | Mapping[str, Any]] | None,
    min_points: int = 3,
    tolerance: float = 1.0,
) -> PolygonValidation:
    """Check vertex count, numeric coordinates and distinct consecutive vertices."""
    if points is None:
        return PolygonValidation(valid=False, error="Points must be a list")
    if len(points) < min_points:
        return PolygonValidation(valid=False, error=f"ROI requires at least {min_points} points")

    parsed: list[Point] = []
    for i, raw in enumerate(points):
        try:
            point = raw if isinstance(raw, Point) else Point.model_validate(raw)
        except ValidationError:
            return PolygonValidation(valid=False, error=f"Point {i} must have numeric x and y coordinates")
        if not (math.isfinite(point.x) and math.isfinite(point.y)):
            return PolygonValidation(valid=False, error=f"Point {i} must have numeric x and y coordinates")
        parsed.append(point)

    n = len(parsed)
    for i in range(n):
        j = (i + 1) % n
        if _coincide(parsed[i], parsed[j], tolerance):
            return PolygonValidation(valid=False, error=f"Consecutive points {i} and {j} are too close")
    return PolygonValidation(valid=True)


class ROIEngine:
    """One image's region of interest plus the filtering toggle.

    Args:
        config: Supplies ``roi_min_points``, ``roi_vertex_tolerance`` and
            ``roi_close_tolerance``.
        emitter: Receives ``roi_changed`` / ``roi_filtering_changed``.
        clock: Timestamp source.
    """

    def __init__(
        self,
        config: EngineConfig | None = None,
        emitter: EventEmitter | None = None,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self.config = config or EngineConfig()
        self.events = emitter or EventEmitter()
        self._clock = clock
        self._roi: ROI | None = None
        self._image_id: str | None = None
        self._filtering = False

    # ------------------------------------------------------------------
    # State
    # ------------------------------------------------------------------

    @property
    def current(self) -> ROI | None:
        return self._roi

    def has_active_roi(self) -> bool:
        return self._roi is not None and self._roi.active

    def set_image(self, image_id: str) -> None:
        """Point the engine at *image_id*, dropping an ROI drawn on another image."""
        if image_id != self._image_id and self._roi is not None:
            logger.debug("Image changed to %s; clearing ROI %s", image_id, self._roi.id)
            self.clear()
        self._image_id = image_id

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def create(self, points: Sequence[Point], image_id: str | None = None) -> ROI | ROIRejection:
        """Make *points* the active ROI, replacing any previous one."""
        polygon = dedupe_vertices(list(points or []), self.config.roi_vertex_tolerance)
        if len(polygon) < self.config.roi_min_points:
            logger.warning(
                "ROI rejected: %d distinct points, at least %d required",
                len(polygon),
                self.config.roi_min_points,
            )
            return ROIRejection(
                reason=ROIRejectionReason.INSUFFICIENT_POINTS,
                message=f"ROI requires at least {self.config.roi_min_points} points",
                point_count=len(polygon),
            )

        if image_id is not None:
            self._image_id = image_id
        now = self._clock()
        self._roi = ROI(
            id=generate_roi_id(),
            image_id=self._image_id,
            polygon=polygon,
            name=f"ROI_{now.strftime('%Y%m%d%H%M%S')}",
            created_at=now,
            modified_at=now,
        )
        logger.info("Created ROI %s with %d points for image %s", self._roi.id, len(polygon), self._image_id)
        self._notify_changed()
        return self._roi

    def update(self, roi_id: str, patch: ROIUpdate | Mapping[str, Any]) -> bool:
        """Replace fields of the active ROI; fails unless *roi_id* is the active one.

        Once deactivated, an ROI is out of play like a cleared one; draw or
        import a new one instead.
        """
        if not self.has_active_roi() or self._roi.id != roi_id:
            logger.warning("Cannot update ROI %s: not the active ROI", roi_id)
            return False

        if not isinstance(patch, ROIUpdate):
            try:
                patch = ROIUpdate.model_validate(patch)
            except ValidationError as exc:
                logger.warning("Rejected malformed ROI patch for %s: %s", roi_id, exc)
                return False

        changes: dict[str, Any] = {}
        provided = patch.model_fields_set
        if "polygon" in provided and patch.polygon is not None:
            validation = validate_polygon(
                patch.polygon, self.config.roi_min_points, self.config.roi_vertex_tolerance
            )
            if not validation.valid:
                logger.warning("Cannot update ROI %s: %s", roi_id, validation.error)
                return False
            changes["polygon"] = list(patch.polygon)
        if "name" in provided and patch.name:
            changes["name"] = patch.name
        if "active" in provided and patch.active is not None:
            changes["active"] = patch.active

        changes["modified_at"] = self._clock()
        self._roi = self._roi.model_copy(update=changes)
        logger.info("Updated ROI %s", roi_id)
        self._notify_changed()
        return True

    def clear(self) -> bool:
        if self._roi is None:
            logger.debug("No ROI to clear")
            return False
        cleared = self._roi
        self._roi = None
        logger.info("Cleared ROI %s", cleared.id)
        self._notify_changed()
        return True

    def export_roi(self) -> dict[str, Any] | None:
        """JSON-ready dump of the active ROI, or ``None``."""
        if not self.has_active_roi():
            return None
        assert self._roi is not None
        return self._roi.model_dump(mode="json")

    def import_roi(self, data: Mapping[str, Any] | None) -> bool:
        """Restore an ROI previously produced by :meth:`export_roi`."""
        if not data or not data.get("polygon"):
            logger.warning("Invalid ROI data for import")
            return False

        validation = validate_polygon(
            data["polygon"], self.config.roi_min_points, self.config.roi_vertex_tolerance
        )
        if not validation.valid:
            logger.warning("ROI validation failed: %s", validation.error)
            return False

        now = self._clock()
        try:
            self._roi = ROI(
                id=data.get("id") or generate_roi_id(),
                image_id=data.get("image_id", self._image_id),
                polygon=data["polygon"],
                name=data.get("name") or f"ROI_{now.strftime('%Y%m%d%H%M%S')}",
                active=data.get("active") is not False,
                created_at=data.get("created_at") or now,
                modified_at=now,
            )
        except ValidationError as exc:
            logger.warning("ROI import failed: %s", exc)
            return False

        if self._roi.image_id is not None:
            self._image_id = self._roi.image_id
        logger.info("Imported ROI %s", self._roi.id)
        self._notify_changed()
        return True

    # ------------------------------------------------------------------
    # Filtering
    # ------------------------------------------------------------------

    def set_filtering(self, enabled: bool) -> None:
        self._filtering = bool(enabled)
        logger.info("ROI filtering %s", "enabled" if self._filtering else "disabled")
        self.events.emit(events.EVENT_ROI_FILTERING_CHANGED, active=self.is_filtering_active())

    def is_filtering_active(self) -> bool:
        """Filtering only takes effect while an active ROI exists."""
        return self._filtering and self.has_active_roi()

    def visible_annotations(self, annotations: Iterable[Annotation]) -> tuple[list[Annotation], list[Annotation]]:
        """Partition *annotations* into (in scope, out of scope), preserving order."""
        inside: list[Annotation] = []
        outside: list[Annotation] = []
        for annotation in annotations:
            (inside if self.is_box_in_roi(annotation.bbox) else outside).append(annotation)
        return inside, outside

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def is_point_in_roi(self, point: Point) -> bool:
        if not self.has_active_roi():
            return True
        assert self._roi is not None
        return point_in_polygon(point, self._roi.polygon)

    def is_box_in_roi(self, box: BBox) -> bool:
        """Coarse intersection: a box corner inside the polygon or a vertex inside the box.

        An ROI edge that slices through the box without either condition
        holding is reported as outside.
        """
        if not self.has_active_roi():
            return True
        assert self._roi is not None
        if any(point_in_polygon(corner, self._roi.polygon) for corner in box.corners()):
            return True
        return any(point_in_rect(vertex, box) for vertex in self._roi.polygon)

    def bounds(self) -> BBox | None:
        if not self.has_active_roi():
            return None
        assert self._roi is not None
        return polygon_bounds(self._roi.polygon)

    def stats(self) -> ROIStats | None:
        if not self.has_active_roi():
            return None
        assert self._roi is not None
        polygon = self._roi.polygon
        return ROIStats(
            point_count=len(polygon),
            bounds=polygon_bounds(polygon),
            area=polygon_area(polygon),
            perimeter=polygon_perimeter(polygon),
        )

    def should_close(self, pending: Sequence[Point], point: Point) -> bool:
        """True when a click at *point* should close an in-progress polygon.

        Requires enough vertices already placed and *point* within the close
        tolerance of the first vertex.
        """
        if len(pending) < self.config.roi_min_points:
            return False
        first = pending[0]
        return math.hypot(point.x - first.x, point.y - first.y) < self.config.roi_close_tolerance

    def _notify_changed(self) -> None:
        self.events.emit(events.EVENT_ROI_CHANGED, roi=self._roi)
