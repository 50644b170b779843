"""Event and Era tables.

Both are owned by the external event store (CRUD forms, transcription
import). The engine only reads them; nothing in memory_timeline writes
these rows outside of tests.
"""

from __future__ import annotations

from datetime import date, datetime, timezone
from typing import Literal
from uuid import uuid4

from sqlmodel import JSON, Column, SQLModel
from sqlmodel import Field as SQLField

EventCategory = Literal[
    "milestone", "work", "education", "relationship", "travel",
    "achievement", "challenge", "era", "other",
]


class Event(SQLModel, table=True):
    """A single life event on the timeline."""

    __tablename__ = "events"

    event_id: str = SQLField(default_factory=lambda: str(uuid4()), primary_key=True)
    title: str
    description: str | None = None
    raw_transcript: str | None = None
    category: str | None = SQLField(default=None, index=True)
    start_date: date = SQLField(index=True)
    end_date: date | None = None  # None for point events
    tags: list[str] = SQLField(default_factory=list, sa_column=Column(JSON))
    people: list[str] = SQLField(default_factory=list, sa_column=Column(JSON))
    locations: list[str] = SQLField(default_factory=list, sa_column=Column(JSON))
    era_id: str | None = SQLField(default=None, index=True)
    created_at: datetime = SQLField(default_factory=lambda: datetime.now(timezone.utc))
    updated_at: datetime = SQLField(default_factory=lambda: datetime.now(timezone.utc))

    @property
    def effective_end(self) -> date:
        return self.end_date or self.start_date

    def text_fields(self) -> dict[str, str | None]:
        """Text that feeds the embedding, in concatenation order."""
        return {
            "title": self.title,
            "description": self.description,
            "transcript": self.raw_transcript,
        }


class Era(SQLModel, table=True):
    """A named life phase (date range) used as a transition boundary."""

    __tablename__ = "eras"

    era_id: str = SQLField(default_factory=lambda: str(uuid4()), primary_key=True)
    name: str = SQLField(unique=True)
    start_date: date
    end_date: date | None = None  # None for ongoing eras
    color_code: str = "#888888"
    description: str | None = None
