"""
Pytest configuration and fixtures for testing.
"""

import os

# Must be set before meeting_analyzer is imported; the module-level engine reads it
os.environ.setdefault("DATABASE_URL", "sqlite:///:memory:")

import uuid
from typing import Any, Callable, Generator, List

import httpx
import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from meeting_analyzer.config import Settings
from meeting_analyzer.db.database import Base, get_db
from meeting_analyzer.models import analysis, job_claim, recording  # noqa: F401
from meeting_analyzer.models.recording import Recording


class FakeClock:
    """Monotonic clock that only moves when slept on."""

    def __init__(self, start: float = 1000.0) -> None:
        self.now = start
        self.sleeps: List[float] = []

    def __call__(self) -> float:
        return self.now

    def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.now += seconds


@pytest.fixture
def test_settings(tmp_path: Any) -> Settings:
    """Settings for tests: AI configured, scratch space in a temp dir, no free-space floor."""
    return Settings(
        _env_file=None,
        database_url="sqlite:///:memory:",
        gemini_api_key="test-key",
        gemini_model="gemini-test",
        scratch_dir=str(tmp_path / "scratch"),
        min_free_space_bytes=0,
        poll_interval=5.0,
        ytdlp_paths=[],
    )


@pytest.fixture
def test_engine() -> Generator[Engine, None, None]:
    """Fresh in-memory database per test."""
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(test_engine: Engine) -> Callable[[], Session]:
    return sessionmaker(autocommit=False, autoflush=False, bind=test_engine)


@pytest.fixture
def test_db(session_factory: Callable[[], Session]) -> Generator[Session, None, None]:
    """Create test database session."""
    session = session_factory()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def make_recording(test_db: Session) -> Callable[..., Recording]:
    """Factory for recordings."""
    def _make(
        name: str = "Weekly planning meeting.mp4",
        web_view_link: str = "https://drive.google.com/file/d/1AbC_dEf-123/view?usp=drive_link",
        duration: str = "45 minutes",
        transcript_text: Any = None,
    ) -> Recording:
        rec = Recording(
            id=uuid.uuid4(),
            name=name,
            web_view_link=web_view_link,
            duration=duration,
            transcript_text=transcript_text,
        )
        test_db.add(rec)
        test_db.commit()
        test_db.refresh(rec)
        return rec

    return _make


@pytest.fixture
def fake_clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def sample_transcript() -> str:
    """Timestamped transcript long enough to pass the minimum length check."""
    return (
        "0:00\nGood morning everyone, let's start with the roadmap review.\n"
        "1:02\nThe mobile release moves to the second week of March.\n"
        "2:15\nWe agreed to hire two more backend engineers this quarter."
    )


@pytest.fixture
def analysis_json() -> str:
    return (
        '{"summary": "The team reviewed the roadmap.", '
        '"keypoints": ["Release moves to March", "Two hires approved"], '
        '"topics": ["Roadmap", "Hiring"], '
        '"transcript": "Roadmap review and hiring plans.", '
        '"language": "en"}'
    )


@pytest.fixture
def gemini_response() -> Callable[[str], httpx.Response]:
    """Build a generateContent response carrying the given text."""
    def _response(text: str) -> httpx.Response:
        return httpx.Response(200, json={"candidates": [{"content": {"parts": [{"text": text}]}}]})

    return _response


@pytest.fixture
def client(test_db: Session) -> Generator[TestClient, None, None]:
    """Create test client with database dependency override."""
    from meeting_analyzer.main import app

    def override_get_db() -> Generator[Session, None, None]:
        try:
            yield test_db
        finally:
            pass

    app.dependency_overrides[get_db] = override_get_db
    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()
