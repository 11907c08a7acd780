"""Debounced save scheduling with an injectable clock.

The task never sleeps or spawns timers itself: :meth:`DebouncedTask.schedule`
records a deadline and :meth:`DebouncedTask.run_pending` fires the action
once the clock passes it.  The service drives ``run_pending`` from a
polling loop; tests drive it with a fake clock.
"""

from __future__ import annotations

import logging
import time
from collections.abc import Callable
from typing import Any

from app.config import MIN_AUTO_SAVE_DELAY

logger = logging.getLogger(__name__)


class DebouncedTask:
    """Run *action* once, ``delay`` seconds after the most recent :meth:`schedule`.

    Args:
        action: Zero-argument callable invoked when the deadline passes.
        delay: Debounce window in seconds (clamped to the auto-save minimum).
        clock: Monotonic seconds source; defaults to :func:`time.monotonic`.
    """

    def __init__(
        self,
        action: Callable[[], Any],
        delay: float = 1.0,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._action = action
        self.delay = max(MIN_AUTO_SAVE_DELAY, delay)
        self._clock = clock
        self._deadline: float | None = None
        self.run_count = 0

    @property
    def pending(self) -> bool:
        return self._deadline is not None

    @property
    def deadline(self) -> float | None:
        return self._deadline

    def schedule(self) -> None:
        """Arm (or re-arm) the timer; any earlier pending run is superseded."""
        self._deadline = self._clock() + self.delay

    def cancel(self) -> bool:
        """Disarm the timer; returns whether a run was pending."""
        was_pending = self._deadline is not None
        self._deadline = None
        return was_pending

    def is_due(self) -> bool:
        return self._deadline is not None and self._clock() >= self._deadline

    def run_pending(self) -> Any:
        """Fire the action if due.  Returns its result, or ``None`` when not due.

        The deadline is cleared before the action runs, so a schedule()
        made from inside the action (or by a concurrent edit) arms a fresh
        run instead of being lost.
        """
        if not self.is_due():
            return None
        self._deadline = None
        self.run_count += 1
        logger.debug("Debounced task firing (run %d)", self.run_count)
        return self._action()

    def flush(self) -> Any:
        """Fire immediately if anything is pending, regardless of the deadline."""
        if self._deadline is None:
            return None
        self._deadline = None
        self.run_count += 1
        return self._action()
