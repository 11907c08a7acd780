"""Pydantic value models for image-space geometry."""

from enum import Enum

from pydantic import BaseModel


class Point(BaseModel):
    """2D point (image or surface space, depending on the caller)."""

    x: float
    y: float

    model_config = {"frozen": True}


class BBox(BaseModel):
    """Axis-aligned box anchored at its top-left corner (x, y, width, height)."""

    x: float
    y: float
    width: float
    height: float

    model_config = {"frozen": True}

    @property
    def right(self) -> float:
        return self.x + self.width

    @property
    def bottom(self) -> float:
        return self.y + self.height

    @property
    def area(self) -> float:
        return self.width * self.height

    def corners(self) -> list[Point]:
        """Return the four corners clockwise from the top-left."""
        return [
            Point(x=self.x, y=self.y),
            Point(x=self.right, y=self.y),
            Point(x=self.right, y=self.bottom),
            Point(x=self.x, y=self.bottom),
        ]


class Handle(str, Enum):
    """Compass resize handles, in hit-test priority order."""

    NW = "nw"
    N = "n"
    NE = "ne"
    E = "e"
    SE = "se"
    S = "s"
    SW = "sw"
    W = "w"


class Mapping(BaseModel):
    """Derived image -> surface transform.

    ``offset_x``/``offset_y`` locate the image's top-left corner inside the
    display surface; ``image_width``/``image_height`` are the natural size.
    """

    scale: float = 1.0
    offset_x: float = 0.0
    offset_y: float = 0.0
    image_width: float = 0.0
    image_height: float = 0.0
    surface_width: float = 0.0
    surface_height: float = 0.0

    model_config = {"frozen": True}

    @property
    def scaled_width(self) -> float:
        return self.image_width * self.scale

    @property
    def scaled_height(self) -> float:
        return self.image_height * self.scale
