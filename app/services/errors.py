"""Named failure classes for the review engines.

The engines themselves report failure through return values (``None``,
``False``, :class:`~app.models.roi.ROIRejection`).  These exceptions are
raised at the HTTP boundary, where a failure value has to become a status
code, and carry the same vocabulary.
"""

from __future__ import annotations


class ReviewError(Exception):
    """Base class for DetectReview failures."""

    status_code: int = 400


class AnnotationValidationError(ReviewError):
    """Malformed bbox, class, confidence, state or polygon."""

    status_code = 400


class NotFoundError(ReviewError):
    """Operation on an unknown annotation, ROI, image or session id."""

    status_code = 404


class InsufficientGeometryError(ReviewError):
    """Polygon below the minimum vertex count."""

    status_code = 400


class TransitionRefusedError(ReviewError):
    """State transition outside the table under the strict policy."""

    status_code = 409
