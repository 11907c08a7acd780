"""Review sessions: one store, ROI engine, mapper and auto-save task each.

Sessions are plain constructible objects so several can run side by side
(one per browser tab, or one per test).  :class:`SessionRegistry` is the
arena the HTTP layer looks them up in.
"""

from __future__ import annotations

import asyncio
import logging
import math
import time
import uuid
from collections.abc import Callable
from datetime import datetime
from typing import Any

from app.config import EngineConfig
from app.models.annotation import Annotation, AnnotationPatch, AnnotationState
from app.models.export import ExportFormat, ExportResult, ExportScope, ImageMetadata
from app.models.geometry import BBox, Handle, Mapping, Point
from app.services import events, exporters, geometry
from app.services.annotation_store import AnnotationStore, utc_now
from app.services.autosave import DebouncedTask
from app.services.coordinate_mapper import CoordinateMapper
from app.services.events import EventEmitter
from app.services.persistence import AnnotationPersistence, SaveResult
from app.services.roi_engine import ROIEngine

logger = logging.getLogger(__name__)


class ReviewSession:
    """Everything one reviewer needs while stepping through images.

    Args:
        session_id: Stable identifier, stamped on history entries.
        config: Engine knobs shared by the store, ROI engine and auto-save.
        persistence: Where annotation lists are loaded from and saved to.
        monotonic: Seconds clock driving the auto-save debounce.
        clock: Wall clock for annotation/ROI timestamps.
    """

    def __init__(
        self,
        session_id: str,
        config: EngineConfig,
        persistence: AnnotationPersistence,
        monotonic: Callable[[], float] = time.monotonic,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self.session_id = session_id
        self.config = config
        self.persistence = persistence

        self.events = EventEmitter()
        self.store = AnnotationStore(config, self.events, session_id=session_id, clock=clock)
        self.roi = ROIEngine(config, self.events, clock=clock)
        self.mapper = CoordinateMapper()
        self.autosave = DebouncedTask(self.save_now, config.auto_save_delay, monotonic)
        self.images: dict[str, ImageMetadata] = {}
        self.last_save: SaveResult | None = None
        self._loading = False
        self.guard = asyncio.Lock()

        self.events.subscribe(events.EVENT_ANNOTATIONS_CHANGED, self._on_annotations_changed)
        self.events.subscribe(events.EVENT_ANNOTATION_STATE_CHANGED, self._on_annotations_changed)

    # ------------------------------------------------------------------
    # Image and viewport
    # ------------------------------------------------------------------

    @property
    def current_image(self) -> ImageMetadata | None:
        image_id = self.store.current_image_id
        return self.images.get(image_id) if image_id else None

    def open_image(self, image: ImageMetadata) -> Mapping:
        """Switch to *image*: flush pending saves, drop the ROI, load annotations.

        Annotations already held by the store are reused; otherwise they are
        loaded from persistence.
        """
        self.autosave.flush()
        self.images[image.id] = image
        self.roi.set_image(image.id)

        self._loading = True
        try:
            if self.store.has_image(image.id):
                self.store.set_current_image(image.id)
            else:
                self.store.load_annotations(image.id, self.persistence.load(image.id))
        finally:
            self._loading = False

        return self.mapper.set_image(image.id, image.width or 0, image.height or 0)

    def set_viewport(self, surface_width: float, surface_height: float) -> Mapping:
        return self.mapper.resize_surface(surface_width, surface_height)

    def _image_bounds(self) -> BBox:
        image = self.current_image
        if image is None or not image.has_dimensions:
            return BBox(x=0.0, y=0.0, width=math.inf, height=math.inf)
        return geometry.image_bounds(image.width, image.height)

    # ------------------------------------------------------------------
    # Interactive edits (pointer positions in surface space)
    # ------------------------------------------------------------------

    def draw(self, start: Point, end: Point, class_name: str) -> Annotation | None:
        """Finish a drag: create a user-drawn box unless it is too small on screen."""
        if self.store.current_image_id is None:
            logger.warning("Session %s: draw with no image open", self.session_id)
            return None

        surface_box = geometry.box_from_drag(start, end)
        min_size = self.config.min_box_size
        if surface_box.width < min_size or surface_box.height < min_size:
            logger.info(
                "Session %s: drag %.1fx%.1f below minimum %.1f, ignored",
                self.session_id,
                surface_box.width,
                surface_box.height,
                min_size,
            )
            return None

        image_box = self.mapper.box_to_image(surface_box)
        return self.store.create(image_box, class_name, 1.0, state=AnnotationState.MODIFIED)

    def resize_annotation(self, annotation_id: str, handle: Handle | str, pointer: Point) -> Annotation | None:
        annotation = self.store.find(annotation_id)
        if annotation is None or geometry.parse_handle(handle) is None:
            return None
        box = geometry.resize(annotation.bbox, handle, pointer, self.mapper, self.config.min_box_size)
        if not self.store.update(annotation_id, AnnotationPatch(bbox=box)):
            return None
        return self.store.find(annotation_id)

    def move_annotation(self, annotation_id: str, dx: float, dy: float) -> Annotation | None:
        """Translate by image-space deltas, kept inside the image."""
        annotation = self.store.find(annotation_id)
        if annotation is None:
            return None
        box = geometry.move(annotation.bbox, dx, dy, self._image_bounds())
        if not self.store.update(annotation_id, AnnotationPatch(bbox=box)):
            return None
        return self.store.find(annotation_id)

    def hit_test(self, pointer: Point) -> tuple[Annotation | None, Handle | None]:
        """What a click at *pointer* lands on.

        Handles of the selected annotation win over box bodies; bodies are
        tested topmost first.
        """
        selected = self.store.get_selected()
        if selected is not None:
            surface_box = self.mapper.box_to_surface(selected.bbox)
            handle = geometry.hit_test_handle(
                surface_box,
                pointer,
                self.config.handle_size,
                self.config.selection_tolerance,
            )
            if handle is not None:
                return selected, handle

        if not self.mapper.is_point_in_image(pointer.x, pointer.y):
            return None, None
        return self.store.annotation_at(self.mapper.to_image_space(pointer.x, pointer.y)), None

    # ------------------------------------------------------------------
    # Persistence
    # ------------------------------------------------------------------

    def _on_annotations_changed(self, **_: Any) -> None:
        if self._loading or not self.config.auto_save_enabled:
            return
        self.autosave.schedule()

    def save_now(self) -> SaveResult | None:
        """Persist the current image's annotations; ``None`` with no image open."""
        image_id = self.store.current_image_id
        if image_id is None:
            return None
        self.autosave.cancel()

        annotations = self.store.get_annotations(image_id)
        try:
            result = self.persistence.save(image_id, annotations)
        except Exception as exc:
            logger.exception("Session %s: saving image %s failed", self.session_id, image_id)
            result = SaveResult(image_id=image_id, errors={"*": str(exc)})

        self.last_save = result
        if result.success:
            self.events.emit(events.EVENT_SAVE_COMPLETE, result=result)
        else:
            self.events.emit(events.EVENT_SAVE_ERROR, result=result)
        return result

    def flush_due(self) -> SaveResult | None:
        """Run the auto-save if its debounce window has passed."""
        return self.autosave.run_pending()

    # ------------------------------------------------------------------
    # Export
    # ------------------------------------------------------------------

    def export(
        self,
        fmt: ExportFormat | str,
        scope: ExportScope | str = ExportScope.CURRENT,
        include_history: bool = False,
    ) -> ExportResult:
        history = self.store.history() if include_history else None
        if ExportScope(scope) == ExportScope.ALL:
            return exporters.export(
                fmt, scope, self.store.all_annotations(), self.images, self.config.classes, history
            )

        image_id = self.store.current_image_id
        history = self.store.history(image_id) if include_history and image_id else history
        return exporters.export(
            fmt,
            scope,
            self.store.get_current_annotations(),
            self.current_image,
            self.config.classes,
            history,
        )

    def close(self) -> None:
        self.autosave.flush()
        self.events.clear()


class SessionRegistry:
    """Arena of live review sessions keyed by id."""

    def __init__(
        self,
        config: EngineConfig,
        persistence: AnnotationPersistence,
        monotonic: Callable[[], float] = time.monotonic,
    ) -> None:
        self.config = config
        self.persistence = persistence
        self._monotonic = monotonic
        self._sessions: dict[str, ReviewSession] = {}

    def __len__(self) -> int:
        return len(self._sessions)

    def create(self, session_id: str | None = None) -> ReviewSession:
        session_id = session_id or uuid.uuid4().hex
        session = ReviewSession(
            session_id,
            self.config,
            self.persistence,
            monotonic=self._monotonic,
        )
        self._sessions[session_id] = session
        logger.info("Opened review session %s", session_id)
        return session

    def get(self, session_id: str) -> ReviewSession | None:
        return self._sessions.get(session_id)

    def close(self, session_id: str) -> bool:
        session = self._sessions.pop(session_id, None)
        if session is None:
            return False
        session.close()
        logger.info("Closed review session %s", session_id)
        return True

    def run_due_saves(self) -> int:
        """Fire every session's auto-save whose window has passed; returns how many ran."""
        fired = 0
        for session in list(self._sessions.values()):
            if session.flush_due() is not None:
                fired += 1
        return fired

    async def flush_due_saves(self) -> int:
        """Like :meth:`run_due_saves`, holding each session's guard and saving off the event loop."""
        fired = 0
        for session in list(self._sessions.values()):
            if not session.autosave.is_due():
                continue
            async with session.guard:
                if await asyncio.to_thread(session.flush_due) is not None:
                    fired += 1
        return fired

    def close_all(self) -> None:
        for session_id in list(self._sessions):
            self.close(session_id)
