"""
Shared fixtures for the IdeaForge test suite.

Provides: fake clock, recorded sleep, in-memory store, mock generator and a
fully wired service container built on top of them.
"""

from datetime import datetime, timedelta, timezone

import pytest

from ideaforge.config import Settings
from ideaforge.dependencies import ServiceContainer
from ideaforge.models.schemas import AppType, Idea, Session, SessionPhase
from ideaforge.services.generator import MockCandidateGenerator
from ideaforge.services.storage import BlobStore
from ideaforge.services.store import InMemoryStore


class FakeClock:
    """Callable clock that only moves when a test advances it."""

    def __init__(self, start: datetime | None = None):
        self.now = start or datetime(2026, 1, 1, 12, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now += timedelta(**kwargs)


class RecordingSleep:
    """Async sleep stand-in that records requested delays and returns immediately."""

    def __init__(self):
        self.calls: list[float] = []

    async def __call__(self, seconds: float) -> None:
        self.calls.append(seconds)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def sleep() -> RecordingSleep:
    return RecordingSleep()


@pytest.fixture
def store() -> InMemoryStore:
    return InMemoryStore()


@pytest.fixture
def generator() -> MockCandidateGenerator:
    return MockCandidateGenerator()


@pytest.fixture
def test_settings(tmp_path) -> Settings:
    return Settings(
        use_mock_generator=True,
        outputs_dir=tmp_path / "outputs",
        database_url="sqlite+aiosqlite:///:memory:",
    )


@pytest.fixture
def container(test_settings, store, generator, clock, sleep, tmp_path) -> ServiceContainer:
    """Service container wired to the in-memory store and mock generator."""
    return ServiceContainer(
        test_settings,
        store=store,
        generator=generator,
        blobs=BlobStore(tmp_path / "outputs", "/outputs"),
        clock=clock,
        sleep=sleep,
    )


def make_session(
    user_id: str = "user-1",
    phase: SessionPhase = SessionPhase.SPARK,
    app_type: AppType = AppType.PRODUCTIVITY,
) -> Session:
    return Session(user_id=user_id, app_type=app_type, complexity_level=3, current_phase=phase)


def make_idea(
    session_id: str,
    title: str = "Habit Garden",
    keywords: list[str] | None = None,
    score: float = 0.0,
    batch_number: int = 1,
) -> Idea:
    return Idea(
        session_id=session_id,
        batch_number=batch_number,
        title=title,
        description=f"{title} helps people build routines.",
        dna_keywords=keywords if keywords is not None else ["habits", "gamification"],
        score=score,
    )
