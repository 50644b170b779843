"""EventEmbedding table: exactly one live vector per event."""

from __future__ import annotations

from datetime import datetime, timezone
from uuid import uuid4

from pydantic import BaseModel
from sqlmodel import JSON, Column, SQLModel
from sqlmodel import Field as SQLField


class EventEmbedding(SQLModel, table=True):
    """Stored embedding for an event.

    Invariant: ``dimension == len(vector)``. Regeneration overwrites the row
    in place (event_id is unique), so provider, model and vector always come
    from the same call.
    """

    __tablename__ = "event_embeddings"

    embedding_id: str = SQLField(default_factory=lambda: str(uuid4()), primary_key=True)
    event_id: str = SQLField(unique=True, index=True)
    vector: list[float] = SQLField(default_factory=list, sa_column=Column(JSON))
    provider: str = SQLField(index=True)
    model: str
    dimension: int
    created_at: datetime = SQLField(default_factory=lambda: datetime.now(timezone.utc))


class EmbeddingResult(BaseModel):
    """Returned by EmbeddingStore.generate."""

    embedding_id: str
    event_id: str
    dimension: int
    provider: str
    model: str
