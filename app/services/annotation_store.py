"""Authoritative per-image annotation collection.

The store owns every annotation list, the per-image selection, the
verification state machine and the edit history.  Records are immutable
pydantic snapshots: a mutation swaps in a new record and callers only
ever receive snapshots, so nothing outside the store can alias its
state.  Every operation is total -- failure is reported through
``None`` / ``False`` and a log line, never an exception.
"""

from __future__ import annotations

import copy
import logging
import math
import uuid
from collections import deque
from collections.abc import Callable, Iterable, Mapping
from datetime import datetime, timezone
from typing import Any

from pydantic import ValidationError

from app.config import OTHER_CLASS, EngineConfig
from app.models.annotation import (
    Annotation,
    AnnotationCounts,
    AnnotationPatch,
    AnnotationState,
    HistoryAction,
    HistoryEntry,
)
from app.models.geometry import BBox, Point
from app.services import events
from app.services.events import EventEmitter
from app.services.geometry import point_in_rect
from app.services.state_machine import TransitionOutcome, check_transition, parse_state

logger = logging.getLogger(__name__)


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def generate_annotation_id() -> str:
    return f"ann_{uuid.uuid4().hex[:12]}"


class AnnotationStore:
    """Per-session annotation engine.

    Args:
        config: Engine knobs (class list, minimum box size, history cap,
            transition policy).
        emitter: Where change notifications go.  A private emitter is
            created when omitted.
        session_id: Stamped on every history entry.
        clock: Returns the current time; injectable for deterministic tests.
    """

    def __init__(
        self,
        config: EngineConfig | None = None,
        emitter: EventEmitter | None = None,
        session_id: str | None = None,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self.config = config or EngineConfig()
        self.events = emitter or EventEmitter()
        self.session_id = session_id or uuid.uuid4().hex
        self._clock = clock

        self._annotations: dict[str, list[Annotation]] = {}
        self._selected: dict[str, str] = {}
        self._history: deque[HistoryEntry] = deque(maxlen=max(1, self.config.history_max_size))
        self._current_image_id: str | None = None

    # ------------------------------------------------------------------
    # Validation helpers
    # ------------------------------------------------------------------

    def validate_bbox(self, bbox: BBox | Mapping[str, Any] | None) -> BBox | None:
        """Return a box satisfying the positivity and minimum-size rules, or ``None``.

        Non-positive width/height is a rejection; a positive box below the
        minimum is widened instead.  Negative origins are clamped to 0.
        """
        if bbox is None:
            return None
        if not isinstance(bbox, BBox):
            try:
                bbox = BBox.model_validate(bbox)
            except ValidationError:
                return None

        values = (bbox.x, bbox.y, bbox.width, bbox.height)
        if not all(math.isfinite(v) for v in values):
            return None
        if bbox.width <= 0 or bbox.height <= 0:
            return None

        min_size = self.config.min_box_size
        return BBox(
            x=max(0.0, bbox.x),
            y=max(0.0, bbox.y),
            width=max(min_size, bbox.width),
            height=max(min_size, bbox.height),
        )

    def validate_class_name(self, class_name: Any) -> str:
        if isinstance(class_name, str) and class_name in self.config.classes:
            return class_name
        return OTHER_CLASS

    @staticmethod
    def validate_confidence(confidence: Any) -> float:
        if isinstance(confidence, bool) or not isinstance(confidence, (int, float)):
            return 1.0
        if math.isnan(confidence):
            return 1.0
        return max(0.0, min(1.0, float(confidence)))

    # ------------------------------------------------------------------
    # Image context
    # ------------------------------------------------------------------

    @property
    def current_image_id(self) -> str | None:
        return self._current_image_id

    def has_image(self, image_id: str) -> bool:
        return image_id in self._annotations

    def set_current_image(self, image_id: str) -> list[Annotation]:
        """Make *image_id* current, reusing its cached list when present."""
        self._annotations.setdefault(image_id, [])
        self._current_image_id = image_id
        logger.debug("Current image set to %s (%d annotations)", image_id, len(self._annotations[image_id]))
        self._notify_changed(image_id)
        return self.get_current_annotations()

    def load_annotations(self, image_id: str, records: Iterable[Annotation | Mapping[str, Any]]) -> list[Annotation]:
        """Bulk-load annotations for *image_id*, replacing any cached list.

        Each record is validated like a create: records whose bbox fails
        validation are dropped, class names are coerced, confidence is
        clamped, and a missing or unknown state becomes ``Suggested``.
        The image becomes current.
        """
        loaded: list[Annotation] = []
        dropped = 0
        for record in records:
            annotation = self._coerce_record(image_id, record)
            if annotation is None:
                dropped += 1
                continue
            loaded.append(annotation)

        if dropped:
            logger.warning("Dropped %d invalid annotation record(s) for image %s", dropped, image_id)

        self._annotations[image_id] = loaded
        self._selected.pop(image_id, None)
        self._current_image_id = image_id
        logger.info("Loaded %d annotations for image %s", len(loaded), image_id)
        self._notify_changed(image_id)
        return self.get_current_annotations()

    def clear_image(self, image_id: str) -> int:
        """Drop every annotation of *image_id*; returns how many were removed."""
        removed = len(self._annotations.pop(image_id, []))
        self._selected.pop(image_id, None)
        if image_id == self._current_image_id:
            self._current_image_id = None
        logger.info("Cleared %d annotations for image %s", removed, image_id)
        self.events.emit(events.EVENT_ANNOTATIONS_CHANGED, image_id=image_id, annotations=[])
        return removed

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def get_current_annotations(self) -> list[Annotation]:
        if self._current_image_id is None:
            return []
        return self.get_annotations(self._current_image_id)

    def get_annotations(self, image_id: str) -> list[Annotation]:
        selected = self._selected.get(image_id)
        return [self._view(a, selected) for a in self._annotations.get(image_id, [])]

    def all_annotations(self) -> dict[str, list[Annotation]]:
        """Snapshot of every image's list, in image insertion order."""
        return {image_id: self.get_annotations(image_id) for image_id in self._annotations}

    def find(self, annotation_id: str) -> Annotation | None:
        """Look up an annotation of the current image."""
        index = self._index_of(annotation_id)
        if index is None:
            return None
        return self._view(self._current_list()[index], self._selected.get(self._current_image_id or ""))

    def get_selected(self) -> Annotation | None:
        if self._current_image_id is None:
            return None
        selected = self._selected.get(self._current_image_id)
        return self.find(selected) if selected else None

    def list_by_state(self, state: AnnotationState | str, image_id: str | None = None) -> list[Annotation]:
        parsed = parse_state(state)
        target = image_id or self._current_image_id
        if parsed is None or target is None:
            return []
        return [a for a in self.get_annotations(target) if a.state == parsed]

    def counts(self, image_id: str | None = None) -> AnnotationCounts:
        """Per-state counts for the current image (or *image_id*)."""
        target = image_id or self._current_image_id
        annotations = self._annotations.get(target, []) if target else []
        tally = {state.value: 0 for state in AnnotationState}
        for annotation in annotations:
            tally[annotation.state.value] += 1
        return AnnotationCounts(**tally, total=len(annotations))

    def annotation_at(self, point: Point) -> Annotation | None:
        """Topmost annotation whose box contains an image-space *point*."""
        for annotation in reversed(self.get_current_annotations()):
            if point_in_rect(point, annotation.bbox):
                return annotation
        return None

    def history(self, image_id: str | None = None) -> list[HistoryEntry]:
        """Edit history, oldest first, optionally restricted to one image."""
        if image_id is None:
            return [entry.model_copy(deep=True) for entry in self._history]
        return [entry.model_copy(deep=True) for entry in self._history if entry.image_id == image_id]

    # ------------------------------------------------------------------
    # Mutations
    # ------------------------------------------------------------------

    def create(
        self,
        bbox: BBox | Mapping[str, Any],
        class_name: str = OTHER_CLASS,
        confidence: float = 1.0,
        *,
        state: AnnotationState | str | None = None,
        annotation_id: str | None = None,
        segmentation_mask: list[Point] | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> Annotation | None:
        """Add an annotation to the current image.

        New annotations start ``Modified`` (user-drawn) unless *state*
        names another state.  Returns ``None`` without an image context or
        when the bbox is not strictly positive.
        """
        image_id = self._current_image_id
        if image_id is None:
            logger.warning("Cannot create annotation: no current image set")
            return None

        validated = self.validate_bbox(bbox)
        if validated is None:
            logger.warning("Cannot create annotation on image %s: invalid bounding box %r", image_id, bbox)
            return None

        now = self._clock()
        annotation = Annotation(
            id=annotation_id or generate_annotation_id(),
            image_id=image_id,
            bbox=validated,
            class_name=self.validate_class_name(class_name),
            confidence=self.validate_confidence(confidence),
            state=parse_state(state) or AnnotationState.MODIFIED,
            segmentation_mask=segmentation_mask,
            created_at=now,
            modified_at=now,
            metadata=copy.deepcopy(metadata or {}),
        )
        self._current_list().append(annotation)
        self._record(HistoryAction.CREATE, annotation)
        logger.info("Created annotation %s for image %s", annotation.id, image_id)
        self._notify_changed(image_id)
        return self._view(annotation, self._selected.get(image_id))

    def update(self, annotation_id: str, patch: AnnotationPatch | Mapping[str, Any]) -> bool:
        """Apply the provided fields of *patch* to one annotation.

        Fields are validated individually: an invalid bbox is ignored, the
        class is coerced, confidence clamped, and an unknown state skipped.
        A content change while ``Suggested`` promotes to ``Modified``.
        """
        if not isinstance(patch, AnnotationPatch):
            try:
                patch = AnnotationPatch.model_validate(patch)
            except ValidationError as exc:
                logger.warning("Rejected malformed patch for annotation %s: %s", annotation_id, exc)
                return False

        index = self._index_of(annotation_id)
        if index is None:
            logger.warning("Cannot update annotation %s: not found", annotation_id)
            return False

        annotations = self._current_list()
        original = annotations[index]
        provided = patch.provided()
        changes: dict[str, Any] = {}

        if "bbox" in provided:
            validated = self.validate_bbox(patch.bbox)
            if validated is not None:
                changes["bbox"] = validated
            else:
                logger.warning("Ignoring invalid bbox in update of annotation %s", annotation_id)
        if "class_name" in provided:
            changes["class_name"] = self.validate_class_name(patch.class_name)
        if "confidence" in provided:
            changes["confidence"] = self.validate_confidence(patch.confidence)
        if "segmentation_mask" in provided:
            mask = patch.segmentation_mask
            changes["segmentation_mask"] = tuple(mask) if mask is not None else None
        if "metadata" in provided and patch.metadata is not None:
            changes["metadata"] = {**original.metadata, **patch.metadata}

        new_state = original.state
        if "state" in provided:
            target = parse_state(patch.state)
            if target is None:
                logger.warning("Ignoring unknown state %r in update of annotation %s", patch.state, annotation_id)
            else:
                outcome = check_transition(original.state, target, self.config.transition_policy, annotation_id)
                self._emit_invalid(annotation_id, original.state, target, outcome)
                if outcome.applies:
                    new_state = target

        if patch.touches_content() and new_state == AnnotationState.SUGGESTED:
            new_state = AnnotationState.MODIFIED
        changes["state"] = new_state
        changes["modified_at"] = self._clock()

        updated = original.model_copy(update=changes).model_copy(deep=True)
        annotations[index] = updated
        self._record(HistoryAction.UPDATE, updated, original)
        logger.info("Updated annotation %s", annotation_id)

        self._notify_changed(updated.image_id)
        if updated.state != original.state:
            self._notify_state_changed(updated, original.state)
        return True

    def delete(self, annotation_id: str) -> bool:
        index = self._index_of(annotation_id)
        if index is None:
            logger.warning("Cannot delete annotation %s: not found", annotation_id)
            return False

        removed = self._current_list().pop(index)
        if self._selected.get(removed.image_id) == annotation_id:
            del self._selected[removed.image_id]
            self.events.emit(events.EVENT_ANNOTATION_SELECTED, image_id=removed.image_id, annotation=None)
        self._record(HistoryAction.DELETE, removed)
        logger.info("Deleted annotation %s", annotation_id)
        self._notify_changed(removed.image_id)
        return True

    def set_state(self, target: str | Annotation, new_state: AnnotationState | str) -> bool:
        """Move one annotation to *new_state*.

        Unknown states are a silent no-op returning ``False``.  Asking for
        the current state succeeds without recording anything.  Transitions
        outside the table follow the configured policy.
        """
        annotation_id = target.id if isinstance(target, Annotation) else target
        parsed = parse_state(new_state)
        if parsed is None:
            logger.debug("Ignoring unknown state %r for annotation %s", new_state, annotation_id)
            return False

        index = self._index_of(annotation_id)
        if index is None:
            logger.warning("Cannot change state of annotation %s: not found", annotation_id)
            return False

        annotations = self._current_list()
        original = annotations[index]
        outcome = check_transition(original.state, parsed, self.config.transition_policy, annotation_id)
        self._emit_invalid(annotation_id, original.state, parsed, outcome)
        if outcome == TransitionOutcome.UNCHANGED:
            return True
        if not outcome.applies:
            return False

        updated = original.model_copy(update={"state": parsed, "modified_at": self._clock()})
        annotations[index] = updated
        self._record(HistoryAction.UPDATE, updated, original)
        logger.info("Changed annotation %s state %s -> %s", annotation_id, original.state.value, parsed.value)
        self._notify_state_changed(updated, original.state)
        self._notify_changed(updated.image_id)
        return True

    def select(self, annotation_id: str | None) -> bool:
        """Select one annotation of the current image, deselecting the previous one.

        ``None`` clears the selection.
        """
        if annotation_id is None:
            self.clear_selection()
            return True

        if self._index_of(annotation_id) is None:
            logger.warning("Cannot select annotation %s: not found", annotation_id)
            return False

        image_id = self._current_image_id
        assert image_id is not None
        self._selected[image_id] = annotation_id
        self.events.emit(events.EVENT_ANNOTATION_SELECTED, image_id=image_id, annotation=self.find(annotation_id))
        return True

    def clear_selection(self) -> None:
        image_id = self._current_image_id
        if image_id is not None and self._selected.pop(image_id, None) is not None:
            self.events.emit(events.EVENT_ANNOTATION_SELECTED, image_id=image_id, annotation=None)

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _current_list(self) -> list[Annotation]:
        assert self._current_image_id is not None
        return self._annotations.setdefault(self._current_image_id, [])

    def _index_of(self, annotation_id: str) -> int | None:
        if self._current_image_id is None:
            return None
        for i, annotation in enumerate(self._annotations.get(self._current_image_id, [])):
            if annotation.id == annotation_id:
                return i
        return None

    @staticmethod
    def _view(annotation: Annotation, selected_id: str | None) -> Annotation:
        copied = annotation.model_copy(deep=True)
        if annotation.id == selected_id:
            return copied.model_copy(update={"selected": True})
        return copied

    def _coerce_record(self, image_id: str, record: Annotation | Mapping[str, Any]) -> Annotation | None:
        raw = record.model_dump() if isinstance(record, Annotation) else dict(record)
        bbox = self.validate_bbox(raw.get("bbox"))
        if bbox is None:
            return None

        now = self._clock()
        try:
            return Annotation(
                id=raw.get("id") or generate_annotation_id(),
                image_id=image_id,
                bbox=bbox,
                class_name=self.validate_class_name(raw.get("class_name")),
                confidence=self.validate_confidence(raw.get("confidence")),
                state=parse_state(raw.get("state")) or AnnotationState.SUGGESTED,
                segmentation_mask=raw.get("segmentation_mask") or None,
                created_at=raw.get("created_at") or now,
                modified_at=raw.get("modified_at") or now,
                metadata=copy.deepcopy(raw.get("metadata") or {}),
            )
        except ValidationError as exc:
            logger.warning("Dropping malformed annotation record %r: %s", raw.get("id"), exc)
            return None

    def _record(self, action: HistoryAction, snapshot: Annotation, prior: Annotation | None = None) -> None:
        self._history.append(
            HistoryEntry(
                timestamp=self._clock(),
                action=action,
                snapshot=snapshot.model_copy(deep=True),
                prior_snapshot=prior.model_copy(deep=True) if prior is not None else None,
                image_id=snapshot.image_id,
                session_id=self.session_id,
            )
        )

    def _emit_invalid(
        self,
        annotation_id: str,
        from_state: AnnotationState,
        to_state: AnnotationState,
        outcome: TransitionOutcome,
    ) -> None:
        if outcome in (TransitionOutcome.APPLY_INVALID, TransitionOutcome.REFUSE):
            self.events.emit(
                events.EVENT_INVALID_TRANSITION,
                annotation_id=annotation_id,
                from_state=from_state,
                to_state=to_state,
                applied=outcome.applies,
            )

    def _notify_changed(self, image_id: str) -> None:
        self.events.emit(
            events.EVENT_ANNOTATIONS_CHANGED,
            image_id=image_id,
            annotations=self.get_annotations(image_id),
        )

    def _notify_state_changed(self, annotation: Annotation, old_state: AnnotationState) -> None:
        self.events.emit(
            events.EVENT_ANNOTATION_STATE_CHANGED,
            annotation=annotation.model_copy(deep=True),
            old_state=old_state,
        )
