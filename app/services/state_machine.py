"""Verification workflow for annotations.

The transition table is advisory under the default policy: a request
outside the table is reported as invalid but still applied.  The strict
policy refuses it instead.  Callers ask :func:`check_transition` what to
do and never branch on the policy themselves.
"""

from __future__ import annotations

import logging
from enum import Enum

from app.config import TransitionPolicy
from app.models.annotation import AnnotationState

logger = logging.getLogger(__name__)

ALLOWED_TRANSITIONS: dict[AnnotationState, frozenset[AnnotationState]] = {
    AnnotationState.SUGGESTED: frozenset(
        {AnnotationState.MODIFIED, AnnotationState.VERIFIED, AnnotationState.REJECTED}
    ),
    AnnotationState.MODIFIED: frozenset(
        {AnnotationState.VERIFIED, AnnotationState.REJECTED, AnnotationState.SUGGESTED}
    ),
    AnnotationState.VERIFIED: frozenset({AnnotationState.MODIFIED, AnnotationState.REJECTED}),
    AnnotationState.REJECTED: frozenset(
        {AnnotationState.MODIFIED, AnnotationState.VERIFIED, AnnotationState.SUGGESTED}
    ),
}


class TransitionOutcome(str, Enum):
    """What the store should do with a requested transition."""

    UNCHANGED = "unchanged"
    APPLY = "apply"
    APPLY_INVALID = "apply_invalid"
    REFUSE = "refuse"

    @property
    def applies(self) -> bool:
        return self in (TransitionOutcome.APPLY, TransitionOutcome.APPLY_INVALID)


def parse_state(value: str | AnnotationState | None) -> AnnotationState | None:
    """Return the matching state, or ``None`` for anything outside the closed set."""
    if isinstance(value, AnnotationState):
        return value
    try:
        return AnnotationState(value)
    except ValueError:
        return None


def is_valid_transition(current: AnnotationState, target: AnnotationState) -> bool:
    return target in ALLOWED_TRANSITIONS.get(current, frozenset())


def check_transition(
    current: AnnotationState,
    target: AnnotationState,
    policy: TransitionPolicy,
    annotation_id: str | None = None,
) -> TransitionOutcome:
    """Classify ``current -> target`` under *policy*, logging invalid requests."""
    if current == target:
        return TransitionOutcome.UNCHANGED
    if is_valid_transition(current, target):
        return TransitionOutcome.APPLY

    if policy == TransitionPolicy.STRICT:
        logger.warning(
            "Refused invalid state transition %s -> %s for annotation %s",
            current.value,
            target.value,
            annotation_id,
        )
        return TransitionOutcome.REFUSE

    logger.warning(
        "Invalid state transition %s -> %s for annotation %s (applied)",
        current.value,
        target.value,
        annotation_id,
    )
    return TransitionOutcome.APPLY_INVALID
