"""DetectReview application configuration using Pydantic Settings."""

from enum import Enum
from functools import lru_cache
from pathlib import Path

from pydantic import BaseModel, field_validator
from pydantic_settings import BaseSettings

OTHER_CLASS = "Other"

DEFAULT_CLASSES: list[str] = [
    "Car",
    "Truck",
    "Bus",
    "Motorcycle",
    "Bicycle",
    "Person",
    OTHER_CLASS,
]

DEFAULT_CLASS_COLORS: dict[str, str] = {
    "Car": "#FF6B6B",
    "Truck": "#4ECDC4",
    "Bus": "#45B7D1",
    "Motorcycle": "#96CEB4",
    "Bicycle": "#FFEAA7",
    "Person": "#DDA0DD",
    OTHER_CLASS: "#98D8C8",
}

DEFAULT_STATE_COLORS: dict[str, str] = {
    "Suggested": "#FFA500",
    "Modified": "#FFD700",
    "Verified": "#32CD32",
    "Rejected": "#FF6347",
}

MIN_AUTO_SAVE_DELAY = 0.5


class TransitionPolicy(str, Enum):
    """How the annotation store reacts to a transition outside the table.

    ``WARN_AND_ALLOW`` logs the transition as invalid and applies it anyway.
    ``STRICT`` logs it and leaves the annotation untouched.
    """

    WARN_AND_ALLOW = "warn_and_allow"
    STRICT = "strict"


class EngineConfig(BaseModel):
    """Immutable knobs handed to the annotation/ROI engines.

    Built from :class:`Settings` in the service, or directly in tests so
    engines never read the environment themselves.
    """

    classes: tuple[str, ...] = tuple(DEFAULT_CLASSES)
    min_box_size: float = 10.0
    handle_size: float = 8.0
    selection_tolerance: float = 5.0
    roi_min_points: int = 3
    roi_vertex_tolerance: float = 1.0
    roi_close_tolerance: float = 8.0
    history_max_size: int = 100
    auto_save_delay: float = 1.0
    auto_save_enabled: bool = True
    transition_policy: TransitionPolicy = TransitionPolicy.WARN_AND_ALLOW

    model_config = {"frozen": True}

    @field_validator("classes")
    @classmethod
    def _ensure_other(cls, value: tuple[str, ...]) -> tuple[str, ...]:
        names = tuple(dict.fromkeys(value))
        if OTHER_CLASS not in names:
            names = names + (OTHER_CLASS,)
        return names

    @field_validator("auto_save_delay")
    @classmethod
    def _clamp_delay(cls, value: float) -> float:
        return max(MIN_AUTO_SAVE_DELAY, value)


class Settings(BaseSettings):
    """DetectReview application settings.

    All fields can be overridden via environment variables with
    the DETECTREVIEW_ prefix (e.g., DETECTREVIEW_DB_PATH).
    """

    db_path: Path = Path("data/detectreview.duckdb")
    image_root: Path = Path("data/images")
    host: str = "0.0.0.0"
    port: int = 8000
    behind_proxy: bool = False  # Set DETECTREVIEW_BEHIND_PROXY=true in Docker

    classes: list[str] = DEFAULT_CLASSES
    class_colors: dict[str, str] = DEFAULT_CLASS_COLORS
    state_colors: dict[str, str] = DEFAULT_STATE_COLORS

    min_box_size: float = 10.0
    handle_size: float = 8.0
    selection_tolerance: float = 5.0

    roi_min_points: int = 3
    roi_vertex_tolerance: float = 1.0
    roi_close_tolerance: float = 8.0

    history_max_size: int = 100
    auto_save_enabled: bool = True
    auto_save_delay: float = 1.0
    auto_save_poll_interval: float = 0.25
    transition_policy: TransitionPolicy = TransitionPolicy.WARN_AND_ALLOW

    model_config = {
        "env_prefix": "DETECTREVIEW_",
        "env_file": ".env",
        "extra": "ignore",
    }

    def engine_config(self) -> EngineConfig:
        """Project the engine-relevant fields into an :class:`EngineConfig`."""
        return EngineConfig(
            classes=tuple(self.classes),
            min_box_size=self.min_box_size,
            handle_size=self.handle_size,
            selection_tolerance=self.selection_tolerance,
            roi_min_points=self.roi_min_points,
            roi_vertex_tolerance=self.roi_vertex_tolerance,
            roi_close_tolerance=self.roi_close_tolerance,
            history_max_size=self.history_max_size,
            auto_save_delay=self.auto_save_delay,
            auto_save_enabled=self.auto_save_enabled,
            transition_policy=self.transition_policy,
        )


@lru_cache
def get_settings() -> Settings:
    """Return cached application settings (singleton)."""
    return Settings()


def get_class_color(class_name: str, settings: Settings | None = None) -> str:
    """Return the render colour for *class_name*, falling back to ``Other``."""
    colors = (settings or get_settings()).class_colors
    return colors.get(class_name, colors.get(OTHER_CLASS, DEFAULT_CLASS_COLORS[OTHER_CLASS]))


def get_state_color(state: str, settings: Settings | None = None) -> str:
    """Return the render colour for a verification state, falling back to ``Suggested``."""
    colors = (settings or get_settings()).state_colors
    return colors.get(state, colors.get("Suggested", DEFAULT_STATE_COLORS["Suggested"]))
