"""Shared test fixtures for the Memory Timeline backend tests."""

import os
import sys
from datetime import date

import pytest

# Ensure backend is on the path
sys.path.insert(0, os.path.join(os.path.dirname(__file__), ".."))
os.environ.setdefault("DATABASE_URL", "sqlite:///test.db")
os.environ.setdefault("ANTHROPIC_API_KEY", "test")
os.environ.setdefault("EMBEDDING_PROVIDER", "local")

from sqlalchemy.pool import StaticPool
from sqlmodel import Session, create_engine

from memory_timeline.db.database import create_db_and_tables
from memory_timeline.embeddings.providers import EmbeddingProvider
from memory_timeline.models.event import Era, Event


class RecordingProvider(EmbeddingProvider):
    """Fake provider: vectors keyed by the first line of the embedded text.

    Records every call; ``errors`` are raised (in order) before any vector
    is returned.
    """

    name = "fake"

    def __init__(self, vectors=None, dimension=3, model="fake-1", errors=None, default=None):
        super().__init__(model=model, dimension=dimension)
        self.vectors = vectors or {}
        self.default = default or [1.0] + [0.0] * (dimension - 1)
        self.errors = list(errors or [])
        self.calls: list[str] = []

    async def embed(self, text: str) -> list[float]:
        self.calls.append(text)
        if self.errors:
            raise self.errors.pop(0)
        return list(self.vectors.get(text.split("\n\n")[0], self.default))


def make_engine():
    """In-memory SQLite shared by every connection (TestClient runs in another thread)."""
    engine = create_engine(
        "sqlite://",
        echo=False,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    create_db_and_tables(engine)
    return engine


def insert_events(engine, *events):
    with Session(engine, expire_on_commit=False) as session:
        for ev in events:
            session.add(ev)
        session.commit()


@pytest.fixture
def db_engine():
    return make_engine()


@pytest.fixture
def add_events(db_engine):
    """Insert Event/Era rows: add_events(Event(...), ...)."""
    def _add(*rows):
        insert_events(db_engine, *rows)
        return rows
    return _add


@pytest.fixture
def provider_cls():
    return RecordingProvider


@pytest.fixture
def scenario_events(add_events):
    """Graduation, first job 17 days later, and an unrelated trip a year on.

    Descriptions share words, so the offline provider scores A–B above 0.3.
    """
    return add_events(
        Event(
            event_id="evt-a",
            title="Graduated college",
            description="Graduated from college with a degree in history",
            category="education",
            start_date=date(2020, 5, 15),
        ),
        Event(
            event_id="evt-b",
            title="Started first job",
            description="First job after college, teaching history with my new degree",
            category="work",
            start_date=date(2020, 6, 1),
        ),
        Event(
            event_id="evt-c",
            title="Trip to Paris",
            description="Visited the Eiffel Tower and museums in Paris",
            category="travel",
            start_date=date(2021, 8, 10),
        ),
    )


@pytest.fixture
def era_factory():
    def _era(name, start, end=None):
        return Era(name=name, start_date=start, end_date=end)
    return _era
