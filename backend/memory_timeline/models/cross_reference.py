"""CrossReference table and the read model exposed to callers.

Pairs are stored canonically (event_id_1 < event_id_2) so (A, B) and (B, A)
can never coexist; one row per (pair, relationship_type).
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Literal
from uuid import uuid4

from pydantic import BaseModel, Field
from sqlalchemy import CheckConstraint, UniqueConstraint
from sqlmodel import JSON, Column, SQLModel
from sqlmodel import Field as SQLField

RelationshipType = Literal["causal", "thematic", "temporal", "person", "location", "other"]
RELATIONSHIP_TYPES: tuple[str, ...] = ("causal", "thematic", "temporal", "person", "location", "other")


class CrossReference(SQLModel, table=True):
    """A typed relationship between two events."""

    __tablename__ = "cross_references"
    __table_args__ = (
        UniqueConstraint("event_id_1", "event_id_2", "relationship_type", name="uq_cross_ref_pair_type"),
        CheckConstraint("event_id_1 < event_id_2", name="ck_cross_ref_canonical_order"),
        CheckConstraint("confidence_score >= 0 AND confidence_score <= 1", name="ck_cross_ref_confidence"),
    )

    reference_id: str = SQLField(default_factory=lambda: str(uuid4()), primary_key=True)
    event_id_1: str = SQLField(index=True)
    event_id_2: str = SQLField(index=True)
    relationship_type: str = SQLField(index=True)
    confidence_score: float
    analysis_details: dict = SQLField(default_factory=dict, sa_column=Column(JSON))
    created_at: datetime = SQLField(default_factory=lambda: datetime.now(timezone.utc))

    @property
    def reasoning(self) -> str:
        return (self.analysis_details or {}).get("reasoning", "")

    def other(self, event_id: str) -> str:
        """Return the endpoint that is not ``event_id``."""
        return self.event_id_2 if self.event_id_1 == event_id else self.event_id_1


class RelatedReference(BaseModel):
    """A cross-reference seen from one of its endpoints."""

    reference_id: str
    related_event_id: str
    relationship_type: str
    confidence: float = Field(ge=0.0, le=1.0)
    reasoning: str = ""
    created_at: datetime
