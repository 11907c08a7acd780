"""Shared pytest fixtures for DetectReview tests."""

from datetime import datetime, timedelta, timezone
from pathlib import Path

import httpx
import pytest
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from PIL import Image

from app.config import EngineConfig
from app.main import review_error_handler
from app.repositories.duckdb_repo import DuckDBRepo
from app.repositories.storage import StorageBackend
from app.routers import annotations, export, images, predictions, roi, sessions
from app.services.annotation_store import AnnotationStore
from app.services.errors import ReviewError
from app.services.image_catalog import ImageCatalog
from app.services.persistence import DuckDBAnnotationPersistence, InMemoryAnnotationPersistence
from app.services.roi_engine import ROIEngine
from app.services.session import ReviewSession, SessionRegistry


class FakeClock:
    """Monotonic seconds that only move when a test says so."""

    def __init__(self, start: float = 1000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FakeWallClock:
    """UTC datetimes advancing one second per call, for ordered timestamps."""

    def __init__(self) -> None:
        self.current = datetime(2024, 1, 1, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        self.current += timedelta(seconds=1)
        return self.current


@pytest.fixture()
def tmp_db_path(tmp_path: Path) -> Path:
    """Return a temporary DuckDB file path."""
    return tmp_path / "test.duckdb"


@pytest.fixture()
def db(tmp_db_path: Path) -> DuckDBRepo:
    """Create a DuckDBRepo with a temporary database, initialize schema, then close."""
    repo = DuckDBRepo(tmp_db_path)
    repo.initialize_schema()
    yield repo
    repo.close()


@pytest.fixture()
def engine_config() -> EngineConfig:
    return EngineConfig(history_max_size=5)


@pytest.fixture()
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture()
def wall_clock() -> FakeWallClock:
    return FakeWallClock()


@pytest.fixture()
def store(engine_config: EngineConfig, wall_clock: FakeWallClock) -> AnnotationStore:
    """An AnnotationStore with ``img_001`` as the current image."""
    s = AnnotationStore(engine_config, session_id="test-session", clock=wall_clock)
    s.set_current_image("img_001")
    return s


@pytest.fixture()
def roi_engine(engine_config: EngineConfig) -> ROIEngine:
    engine = ROIEngine(engine_config)
    engine.set_image("img_001")
    return engine


@pytest.fixture()
def memory_persistence() -> InMemoryAnnotationPersistence:
    return InMemoryAnnotationPersistence()


@pytest.fixture()
def session(
    engine_config: EngineConfig,
    memory_persistence: InMemoryAnnotationPersistence,
    clock: FakeClock,
    wall_clock: FakeWallClock,
) -> ReviewSession:
    return ReviewSession(
        "test-session",
        engine_config,
        memory_persistence,
        monotonic=clock,
        clock=wall_clock,
    )


@pytest.fixture()
def sample_images_dir(tmp_path: Path) -> Path:
    """Create a directory of small test images with distinct sizes."""
    img_dir = tmp_path / "sample_images"
    img_dir.mkdir()
    for name, w, h in [("street_001.jpg", 64, 48), ("street_002.png", 32, 32), ("street_003.jpg", 40, 20)]:
        Image.new("RGB", (w, h), color="blue").save(img_dir / name)
    (img_dir / "notes.txt").write_text("not an image")
    return img_dir


@pytest.fixture()
async def app_client(db: DuckDBRepo, clock: FakeClock) -> httpx.AsyncClient:
    """Create a fully wired FastAPI test app and yield an async HTTP client."""
    test_app = FastAPI()

    test_app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    test_app.add_exception_handler(ReviewError, review_error_handler)

    # Wire services onto app.state
    storage = StorageBackend()
    persistence = DuckDBAnnotationPersistence(db)
    test_app.state.db = db
    test_app.state.storage = storage
    test_app.state.catalog = ImageCatalog(db=db, storage=storage)
    test_app.state.persistence = persistence
    test_app.state.sessions = SessionRegistry(EngineConfig(), persistence, monotonic=clock)

    # Include routers
    test_app.include_router(images.router)
    test_app.include_router(sessions.router)
    test_app.include_router(annotations.router)
    test_app.include_router(roi.router)
    test_app.include_router(export.router)
    test_app.include_router(predictions.router)

    @test_app.get("/health")
    async def health_check() -> dict[str, str]:
        return {"status": "ok"}

    async with httpx.AsyncClient(
        transport=httpx.ASGITransport(app=test_app),
        base_url="http://testserver",
    ) as client:
        yield client
