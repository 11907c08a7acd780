"""Affine mapping between original image pixels and the display surface.

The image is fitted into the surface preserving aspect ratio, never
upscaled past native resolution, and centered in the leftover space.
"""

from __future__ import annotations

import logging

from app.models.geometry import BBox, Mapping, Point

logger = logging.getLogger(__name__)


def compute_mapping(
    image_width: float,
    image_height: float,
    surface_width: float,
    surface_height: float,
) -> Mapping:
    """Fit an image into a surface.

    ``scale = min(surface_w / image_w, surface_h / image_h, 1)``.  Zero or
    negative sizes yield an identity mapping that still carries the true
    image size.
    """
    if image_width <= 0 or image_height <= 0 or surface_width <= 0 or surface_height <= 0:
        logger.debug(
            "Degenerate mapping input image=%sx%s surface=%sx%s",
            image_width,
            image_height,
            surface_width,
            surface_height,
        )
        return Mapping(
            scale=1.0,
            image_width=max(image_width, 0.0),
            image_height=max(image_height, 0.0),
            surface_width=max(surface_width, 0.0),
            surface_height=max(surface_height, 0.0),
        )

    scale = min(surface_width / image_width, surface_height / image_height, 1.0)
    offset_x = (surface_width - image_width * scale) / 2
    offset_y = (surface_height - image_height * scale) / 2
    return Mapping(
        scale=scale,
        offset_x=offset_x,
        offset_y=offset_y,
        image_width=image_width,
        image_height=image_height,
        surface_width=surface_width,
        surface_height=surface_height,
    )


def to_image_space(mapping: Mapping, px: float, py: float) -> Point:
    """Surface -> image coordinates, clamped to the image extent."""
    x = (px - mapping.offset_x) / mapping.scale
    y = (py - mapping.offset_y) / mapping.scale
    return Point(
        x=max(0.0, min(x, mapping.image_width)),
        y=max(0.0, min(y, mapping.image_height)),
    )


def to_surface_space(mapping: Mapping, x: float, y: float) -> Point:
    """Image -> surface coordinates (no clamping)."""
    return Point(
        x=x * mapping.scale + mapping.offset_x,
        y=y * mapping.scale + mapping.offset_y,
    )


class CoordinateMapper:
    """Holds the current :class:`Mapping` for one image on one surface.

    The mapping is tagged with the image it was computed for; callers
    must :meth:`update` after an image load or viewport resize before
    interpreting pointer coordinates for the new image.
    """

    def __init__(self) -> None:
        self._mapping = Mapping()
        self._image_id: str | None = None
        self._surface: tuple[float, float] = (0.0, 0.0)

    @property
    def mapping(self) -> Mapping:
        return self._mapping

    @property
    def image_id(self) -> str | None:
        return self._image_id

    def compute_mapping(
        self,
        image_width: float,
        image_height: float,
        surface_width: float,
        surface_height: float,
        image_id: str | None = None,
    ) -> Mapping:
        """Recompute and store the mapping; returns it."""
        self._mapping = compute_mapping(image_width, image_height, surface_width, surface_height)
        self._surface = (surface_width, surface_height)
        self._image_id = image_id
        logger.debug(
            "Mapping for image %s: scale=%.4f offset=(%.1f, %.1f)",
            image_id,
            self._mapping.scale,
            self._mapping.offset_x,
            self._mapping.offset_y,
        )
        return self._mapping

    def set_image(self, image_id: str, width: float, height: float) -> Mapping:
        """Recompute for a newly loaded image on the current surface."""
        return self.compute_mapping(width, height, *self._surface, image_id=image_id)

    def resize_surface(self, surface_width: float, surface_height: float) -> Mapping:
        """Recompute for a viewport resize, keeping the current image."""
        return self.compute_mapping(
            self._mapping.image_width,
            self._mapping.image_height,
            surface_width,
            surface_height,
            image_id=self._image_id,
        )

    def is_current_for(self, image_id: str) -> bool:
        """True when the stored mapping was computed for *image_id*."""
        return self._image_id == image_id

    def to_image_space(self, px: float, py: float) -> Point:
        return to_image_space(self._mapping, px, py)

    def to_surface_space(self, x: float, y: float) -> Point:
        return to_surface_space(self._mapping, x, y)

    def box_to_surface(self, box: BBox) -> BBox:
        """Project an image-space box onto the surface."""
        top_left = self.to_surface_space(box.x, box.y)
        return BBox(
            x=top_left.x,
            y=top_left.y,
            width=box.width * self._mapping.scale,
            height=box.height * self._mapping.scale,
        )

    def box_to_image(self, box: BBox) -> BBox:
        """Project a surface-space box into the image, clamping both corners."""
        top_left = self.to_image_space(box.x, box.y)
        bottom_right = self.to_image_space(box.x + box.width, box.y + box.height)
        return BBox(
            x=top_left.x,
            y=top_left.y,
            width=bottom_right.x - top_left.x,
            height=bottom_right.y - top_left.y,
        )

    def is_point_in_image(self, px: float, py: float) -> bool:
        """True when a surface point falls on the drawn image."""
        m = self._mapping
        return (
            m.offset_x <= px <= m.offset_x + m.scaled_width
            and m.offset_y <= py <= m.offset_y + m.scaled_height
        )
