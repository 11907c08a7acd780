"""Change-notification dispatch for the annotation and ROI engines.

Centralizes event names so engines, sessions and tests reference
constants, not magic strings.  Subscriber calls are wrapped in
try/except -- a failing subscriber is logged but never crashes the
engine that emitted the event.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from typing import Any

logger = logging.getLogger(__name__)

# Annotation store events
EVENT_ANNOTATIONS_CHANGED: str = "annotations_changed"
EVENT_ANNOTATION_SELECTED: str = "annotation_selected"
EVENT_ANNOTATION_STATE_CHANGED: str = "annotation_state_changed"
EVENT_INVALID_TRANSITION: str = "invalid_transition"

# ROI engine events
EVENT_ROI_CHANGED: str = "roi_changed"
EVENT_ROI_FILTERING_CHANGED: str = "roi_filtering_changed"

# Persistence events
EVENT_SAVE_COMPLETE: str = "save_complete"
EVENT_SAVE_ERROR: str = "save_error"

ALL_EVENTS: list[str] = [
    EVENT_ANNOTATIONS_CHANGED,
    EVENT_ANNOTATION_SELECTED,
    EVENT_ANNOTATION_STATE_CHANGED,
    EVENT_INVALID_TRANSITION,
    EVENT_ROI_CHANGED,
    EVENT_ROI_FILTERING_CHANGED,
    EVENT_SAVE_COMPLETE,
    EVENT_SAVE_ERROR,
]

Subscriber = Callable[..., Any]


class EventEmitter:
    """Registers subscribers per event name and dispatches keyword payloads."""

    def __init__(self) -> None:
        self._subscribers: dict[str, list[Subscriber]] = {}

    def subscribe(self, event: str, callback: Subscriber) -> Callable[[], None]:
        """Register *callback* for *event*; returns a function that unsubscribes it."""
        self._subscribers.setdefault(event, []).append(callback)

        def unsubscribe() -> None:
            callbacks = self._subscribers.get(event, [])
            if callback in callbacks:
                callbacks.remove(callback)

        return unsubscribe

    def emit(self, event: str, **payload: Any) -> list[Any]:
        """Invoke every subscriber of *event* in registration order.

        Returns the list of subscriber return values; subscribers that
        raise are logged and skipped.
        """
        results: list[Any] = []
        for callback in list(self._subscribers.get(event, [])):
            try:
                results.append(callback(**payload))
            except Exception:
                logger.exception("Subscriber %r raised in event %s", callback, event)
        return results

    def subscriber_count(self, event: str) -> int:
        return len(self._subscribers.get(event, []))

    def clear(self) -> None:
        """Drop every subscriber (used when a session is torn down)."""
        self._subscribers.clear()
