"""CrossReferenceStore: persistence for typed event-to-event relationships."""

from __future__ import annotations

import logging
from typing import Any, Sequence

from sqlalchemy.engine import Engine
from sqlalchemy import or_
from sqlmodel import Session, func, select

from memory_timeline.engines.cache import QueryCache
from memory_timeline.errors import NotFoundError, ValidationError
from memory_timeline.models.cross_reference import RELATIONSHIP_TYPES, CrossReference, RelatedReference

logger = logging.getLogger(__name__)


def canonical_pair(event_a: str, event_b: str) -> tuple[str, str]:
    """Order a pair so the lexicographically smaller id comes first."""
    return (event_a, event_b) if event_a < event_b else (event_b, event_a)


class CrossReferenceStore:
    """CRUD for cross_references rows.

    Usage:
        refs = CrossReferenceStore(engine)
        row, created = refs.upsert("e2", "e1", "temporal", 0.6, "17 days apart")
        related = refs.get_for_event("e1")
    """

    def __init__(self, db_engine: Engine, cache: QueryCache | None = None) -> None:
        self.db_engine = db_engine
        self.cache = cache

    def upsert(
        self,
        event_a: str,
        event_b: str,
        relationship_type: str,
        confidence: float,
        reasoning: str = "",
        details: dict[str, Any] | None = None,
    ) -> tuple[CrossReference, bool]:
        """Create or refresh the row for (pair, type).

        Returns:
            (row, created) where created is False when an existing row was updated.

        Raises:
            ValidationError: Self-reference, unknown type or confidence outside [0, 1].
        """
        if not event_a or not event_b:
            raise ValidationError("Both event ids are required")
        if event_a == event_b:
            raise ValidationError(f"An event cannot reference itself: {event_a}")
        if relationship_type not in RELATIONSHIP_TYPES:
            raise ValidationError(f"Unknown relationship type: {relationship_type}")
        if not 0.0 <= confidence <= 1.0:
            raise ValidationError(f"Confidence must be within [0, 1], got {confidence}")

        first, second = canonical_pair(event_a, event_b)
        analysis_details = dict(details or {})
        analysis_details["reasoning"] = reasoning

        with Session(self.db_engine) as session:
            row = session.exec(
                select(CrossReference).where(
                    CrossReference.event_id_1 == first,
                    CrossReference.event_id_2 == second,
                    CrossReference.relationship_type == relationship_type,
                )
            ).first()
            created = row is None
            if row is None:
                row = CrossReference(
                    event_id_1=first,
                    event_id_2=second,
                    relationship_type=relationship_type,
                    confidence_score=confidence,
                    analysis_details=analysis_details,
                )
            else:
                row.confidence_score = confidence
                row.analysis_details = analysis_details
            session.add(row)
            session.commit()
            session.refresh(row)
            session.expunge(row)

        self._invalidate()
        logger.debug(
            "%s cross-reference %s<->%s (%s, %.2f)",
            "Created" if created else "Updated", first, second, relationship_type, confidence,
        )
        return row, created

    def get(self, reference_id: str) -> CrossReference:
        with Session(self.db_engine) as session:
            row = session.get(CrossReference, reference_id)
            if row is None:
                raise NotFoundError(f"Cross-reference not found: {reference_id}")
            session.expunge(row)
        return row

    def get_for_event(self, event_id: str) -> list[RelatedReference]:
        """Every reference touching ``event_id``, seen from that event, by confidence desc."""
        with Session(self.db_engine) as session:
            rows = session.exec(
                select(CrossReference).where(
                    or_(CrossReference.event_id_1 == event_id, CrossReference.event_id_2 == event_id)
                )
            ).all()
            related = [
                RelatedReference(
                    reference_id=row.reference_id,
                    related_event_id=row.other(event_id),
                    relationship_type=row.relationship_type,
                    confidence=row.confidence_score,
                    reasoning=row.reasoning,
                    created_at=row.created_at,
                )
                for row in rows
            ]
        related.sort(key=lambda r: (-r.confidence, r.related_event_id, r.relationship_type))
        return related

    def list_all(self, relationship_type: str | None = None) -> Sequence[CrossReference]:
        with Session(self.db_engine) as session:
            query = select(CrossReference)
            if relationship_type is not None:
                query = query.where(CrossReference.relationship_type == relationship_type)
            rows = session.exec(
                query.order_by(CrossReference.event_id_1, CrossReference.event_id_2, CrossReference.relationship_type)
            ).all()
            for row in rows:
                session.expunge(row)
        return rows

    def delete_for_event(self, event_id: str) -> int:
        """Drop every reference touching ``event_id``. Returns the number removed."""
        with Session(self.db_engine) as session:
            rows = session.exec(
                select(CrossReference).where(
                    or_(CrossReference.event_id_1 == event_id, CrossReference.event_id_2 == event_id)
                )
            ).all()
            for row in rows:
                session.delete(row)
            session.commit()
            removed = len(rows)
        if removed:
            self._invalidate()
            logger.info("Removed %d cross-references for event %s", removed, event_id)
        return removed

    def count(self) -> int:
        with Session(self.db_engine) as session:
            return session.exec(select(func.count()).select_from(CrossReference)).one()

    def _invalidate(self) -> None:
        if self.cache is not None:
            self.cache.invalidate()
