"""Pure geometry for interactive box editing and polygon queries.

Every function is total over finite inputs: malformed polygons (fewer
than three vertices) degrade to "no containment" / zero measurements
instead of raising.
"""

from __future__ import annotations

import math
from collections.abc import Sequence

from app.models.geometry import BBox, Handle, Mapping, Point
from app.services.coordinate_mapper import CoordinateMapper, to_image_space

DEFAULT_MIN_BOX_SIZE: float = 10.0

HANDLE_ORDER: list[Handle] = [
    Handle.NW,
    Handle.N,
    Handle.NE,
    Handle.E,
    Handle.SE,
    Handle.S,
    Handle.SW,
    Handle.W,
]


def parse_handle(value: str | Handle | None) -> Handle | None:
    """Return the :class:`Handle` named by *value*, or ``None`` if unknown."""
    if isinstance(value, Handle):
        return value
    try:
        return Handle(str(value).lower())
    except ValueError:
        return None


# ------------------------------------------------------------------
# Boxes
# ------------------------------------------------------------------


def image_bounds(width: float, height: float) -> BBox:
    """The full extent of an image as a box at the origin."""
    return BBox(x=0.0, y=0.0, width=width, height=height)


def clamp_min_size(box: BBox, min_width: float, min_height: float | None = None) -> BBox:
    """Widen *box* to at least ``min_width`` x ``min_height``, anchored at (x, y)."""
    if min_height is None:
        min_height = min_width
    return BBox(
        x=box.x,
        y=box.y,
        width=max(box.width, min_width),
        height=max(box.height, min_height),
    )


def box_from_drag(start: Point, end: Point) -> BBox:
    """Normalize two drag corners (in any order) into a box."""
    return BBox(
        x=min(start.x, end.x),
        y=min(start.y, end.y),
        width=abs(end.x - start.x),
        height=abs(end.y - start.y),
    )


def resize(
    box: BBox,
    handle: Handle | str,
    pointer: Point,
    mapper: CoordinateMapper | Mapping,
    min_size: float = DEFAULT_MIN_BOX_SIZE,
) -> BBox:
    """Drag *handle* of an image-space *box* to a surface-space *pointer*.

    Only the edges under the handle move; the opposite edges stay fixed.
    When the pointer crosses past the fixed edge the box does not invert:
    the moving edge stops ``min_size`` away from it.
    """
    handle = parse_handle(handle)
    if handle is None:
        return box

    if isinstance(mapper, Mapping):
        p = to_image_space(mapper, pointer.x, pointer.y)
    else:
        p = mapper.to_image_space(pointer.x, pointer.y)

    left, top, right, bottom = box.x, box.y, box.right, box.bottom
    name = handle.value

    if "w" in name:
        left = min(p.x, right - min_size)
    if "e" in name:
        right = max(p.x, left + min_size)
    if "n" in name:
        top = min(p.y, bottom - min_size)
    if "s" in name:
        bottom = max(p.y, top + min_size)

    left = max(0.0, left)
    top = max(0.0, top)
    return clamp_min_size(
        BBox(x=left, y=top, width=right - left, height=bottom - top),
        min_size,
    )


def move(box: BBox, dx: float, dy: float, bounds: BBox) -> BBox:
    """Translate *box* and clamp it fully inside *bounds* (size unchanged)."""
    x = max(bounds.x, min(box.x + dx, bounds.right - box.width))
    y = max(bounds.y, min(box.y + dy, bounds.bottom - box.height))
    return BBox(x=x, y=y, width=box.width, height=box.height)


def handle_positions(box: BBox) -> dict[Handle, Point]:
    """Centers of the eight resize handles, in :data:`HANDLE_ORDER`."""
    cx = box.x + box.width / 2
    cy = box.y + box.height / 2
    return {
        Handle.NW: Point(x=box.x, y=box.y),
        Handle.N: Point(x=cx, y=box.y),
        Handle.NE: Point(x=box.right, y=box.y),
        Handle.E: Point(x=box.right, y=cy),
        Handle.SE: Point(x=box.right, y=box.bottom),
        Handle.S: Point(x=cx, y=box.bottom),
        Handle.SW: Point(x=box.x, y=box.bottom),
        Handle.W: Point(x=box.x, y=cy),
    }


def hit_test_handle(
    box: BBox,
    point: Point,
    handle_size: float,
    tolerance: float,
) -> Handle | None:
    """Return the nearest handle within ``handle_size / 2 + tolerance`` of *point*.

    Equal distances resolve to the handle listed first in :data:`HANDLE_ORDER`.
    """
    reach = handle_size / 2 + tolerance
    best: Handle | None = None
    best_distance = math.inf
    for handle, center in handle_positions(box).items():
        distance = math.hypot(point.x - center.x, point.y - center.y)
        if distance <= reach and distance < best_distance:
            best = handle
            best_distance = distance
    return best


def point_in_rect(point: Point, box: BBox) -> bool:
    """Inclusive containment test."""
    return box.x <= point.x <= box.right and box.y <= point.y <= box.bottom


# ------------------------------------------------------------------
# Polygons
# ------------------------------------------------------------------


def point_in_polygon(point: Point, polygon: Sequence[Point]) -> bool:
    """Even-odd ray casting along the horizontal line through *point*."""
    n = len(polygon)
    if n < 3:
        return False

    inside = False
    j = n - 1
    for i in range(n):
        xi, yi = polygon[i].x, polygon[i].y
        xj, yj = polygon[j].x, polygon[j].y
        if (yi > point.y) != (yj > point.y) and point.x < (xj - xi) * (point.y - yi) / (yj - yi) + xi:
            inside = not inside
        j = i
    return inside


def polygon_area(polygon: Sequence[Point]) -> float:
    """Shoelace area (absolute, halved)."""
    n = len(polygon)
    if n < 3:
        return 0.0
    total = 0.0
    for i in range(n):
        j = (i + 1) % n
        total += polygon[i].x * polygon[j].y
        total -= polygon[j].x * polygon[i].y
    return abs(total) / 2


def polygon_perimeter(polygon: Sequence[Point]) -> float:
    """Sum of edge lengths, closing the last vertex back to the first."""
    n = len(polygon)
    if n < 2:
        return 0.0
    total = 0.0
    for i in range(n):
        j = (i + 1) % n
        total += math.hypot(polygon[j].x - polygon[i].x, polygon[j].y - polygon[i].y)
    return total


def polygon_bounds(polygon: Sequence[Point]) -> BBox | None:
    """Bounding rectangle of the vertices, or ``None`` for an empty polygon."""
    if not polygon:
        return None
    xs = [p.x for p in polygon]
    ys = [p.y for p in polygon]
    return BBox(x=min(xs), y=min(ys), width=max(xs) - min(xs), height=max(ys) - min(ys))
