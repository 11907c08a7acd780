"""Tests for box editing and polygon geometry helpers."""

from __future__ import annotations

import pytest

from app.models.geometry import BBox, Handle, Point
from app.services.coordinate_mapper import compute_mapping
from app.services.geometry import (
    HANDLE_ORDER,
    box_from_drag,
    clamp_min_size,
    handle_positions,
    hit_test_handle,
    move,
    parse_handle,
    point_in_polygon,
    point_in_rect,
    polygon_area,
    polygon_bounds,
    polygon_perimeter,
    resize,
)

IDENTITY = compute_mapping(1000, 1000, 1000, 1000)

UNIT_SQUARE = [Point(x=0, y=0), Point(x=1, y=0), Point(x=1, y=1), Point(x=0, y=1)]


def _square(size: float) -> list[Point]:
    return [Point(x=0, y=0), Point(x=size, y=0), Point(x=size, y=size), Point(x=0, y=size)]


# ------------------------------------------------------------------
# Boxes
# ------------------------------------------------------------------


class TestBoxes:
    def test_clamp_min_size_widens_from_top_left(self) -> None:
        box = clamp_min_size(BBox(x=5, y=5, width=3, height=20), 10)
        assert box == BBox(x=5, y=5, width=10, height=20)

    def test_clamp_min_size_separate_height(self) -> None:
        box = clamp_min_size(BBox(x=0, y=0, width=1, height=1), 4, 2)
        assert (box.width, box.height) == (4, 2)

    def test_box_from_drag_normalizes_corners(self) -> None:
        box = box_from_drag(Point(x=50, y=80), Point(x=10, y=20))
        assert box == BBox(x=10, y=20, width=40, height=60)

    def test_parse_handle(self) -> None:
        assert parse_handle("SE") is Handle.SE
        assert parse_handle(Handle.N) is Handle.N
        assert parse_handle("middle") is None
        assert parse_handle(None) is None


class TestResize:
    def test_se_handle_moves_only_right_and_bottom(self) -> None:
        box = BBox(x=100, y=100, width=50, height=50)
        out = resize(box, Handle.SE, Point(x=200, y=180), IDENTITY)
        assert out == BBox(x=100, y=100, width=100, height=80)

    def test_dragging_past_anchor_stops_at_min_size(self) -> None:
        box = BBox(x=100, y=100, width=50, height=50)
        out = resize(box, "se", Point(x=0, y=0), IDENTITY, min_size=10)
        assert out == BBox(x=100, y=100, width=10, height=10)

    def test_nw_handle_keeps_bottom_right_fixed(self) -> None:
        box = BBox(x=100, y=100, width=50, height=50)
        out = resize(box, Handle.NW, Point(x=80, y=90), IDENTITY)
        assert out.right == pytest.approx(150)
        assert out.bottom == pytest.approx(150)
        assert (out.x, out.y) == (80, 90)

    def test_edge_handle_moves_one_axis(self) -> None:
        box = BBox(x=100, y=100, width=50, height=50)
        out = resize(box, Handle.E, Point(x=300, y=999), IDENTITY)
        assert out == BBox(x=100, y=100, width=200, height=50)

    def test_pointer_is_mapped_through_scale(self) -> None:
        mapping = compute_mapping(2000, 2000, 1000, 1000)
        box = BBox(x=100, y=100, width=100, height=100)
        out = resize(box, Handle.SE, Point(x=150, y=150), mapping)
        assert out == BBox(x=100, y=100, width=200, height=200)

    def test_unknown_handle_returns_box_unchanged(self) -> None:
        box = BBox(x=1, y=2, width=30, height=40)
        assert resize(box, "center", Point(x=0, y=0), IDENTITY) == box


class TestMove:
    def test_translates_inside_bounds(self) -> None:
        bounds = BBox(x=0, y=0, width=100, height=100)
        out = move(BBox(x=10, y=10, width=20, height=20), 5, 7, bounds)
        assert out == BBox(x=15, y=17, width=20, height=20)

    def test_clamps_to_bounds_and_keeps_size(self) -> None:
        bounds = BBox(x=0, y=0, width=100, height=100)
        out = move(BBox(x=10, y=10, width=20, height=20), 500, -500, bounds)
        assert out == BBox(x=80, y=0, width=20, height=20)


class TestHandles:
    def test_positions_in_compass_order(self) -> None:
        positions = handle_positions(BBox(x=0, y=0, width=10, height=20))
        assert list(positions) == HANDLE_ORDER == [
            Handle.NW, Handle.N, Handle.NE, Handle.E, Handle.SE, Handle.S, Handle.SW, Handle.W,
        ]
        assert positions[Handle.S] == Point(x=5, y=20)

    def test_hit_nearest_handle(self) -> None:
        box = BBox(x=0, y=0, width=100, height=100)
        assert hit_test_handle(box, Point(x=101, y=99), 8, 5) is Handle.SE

    def test_miss_outside_reach(self) -> None:
        box = BBox(x=0, y=0, width=100, height=100)
        assert hit_test_handle(box, Point(x=50, y=50), 8, 5) is None

    def test_tie_resolves_to_first_in_order(self) -> None:
        # In a 4x4 box the point (1, 0) is 1 from NW and 1 from N.
        box = BBox(x=0, y=0, width=4, height=4)
        assert hit_test_handle(box, Point(x=1, y=0), 8, 5) is Handle.NW

    def test_point_in_rect_is_inclusive(self) -> None:
        box = BBox(x=0, y=0, width=10, height=10)
        assert point_in_rect(Point(x=10, y=10), box)
        assert not point_in_rect(Point(x=10.1, y=5), box)


# ------------------------------------------------------------------
# Polygons
# ------------------------------------------------------------------


class TestPolygons:
    def test_point_in_square(self) -> None:
        square = _square(10)
        assert point_in_polygon(Point(x=5, y=5), square)
        assert not point_in_polygon(Point(x=15, y=5), square)

    def test_point_in_concave_polygon(self) -> None:
        # U shape open at the top between x=3 and x=7.
        u_shape = [
            Point(x=0, y=0), Point(x=3, y=0), Point(x=3, y=7), Point(x=7, y=7),
            Point(x=7, y=0), Point(x=10, y=0), Point(x=10, y=10), Point(x=0, y=10),
        ]
        assert point_in_polygon(Point(x=1, y=5), u_shape)
        assert not point_in_polygon(Point(x=5, y=3), u_shape)

    def test_degenerate_polygon_contains_nothing(self) -> None:
        assert not point_in_polygon(Point(x=0, y=0), [Point(x=0, y=0), Point(x=1, y=1)])
        assert polygon_area([Point(x=0, y=0), Point(x=1, y=1)]) == 0.0

    def test_unit_square_measurements(self) -> None:
        assert polygon_area(UNIT_SQUARE) == pytest.approx(1.0)
        assert polygon_perimeter(UNIT_SQUARE) == pytest.approx(4.0)

    def test_area_ignores_winding(self) -> None:
        assert polygon_area(list(reversed(UNIT_SQUARE))) == pytest.approx(1.0)

    def test_bounds(self) -> None:
        triangle = [Point(x=2, y=3), Point(x=8, y=1), Point(x=5, y=9)]
        assert polygon_bounds(triangle) == BBox(x=2, y=1, width=6, height=8)
        assert polygon_bounds([]) is None
