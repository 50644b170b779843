"""Read-only access to the external event store's tables."""

from __future__ import annotations

from typing import Iterable, Sequence

from sqlalchemy.engine import Engine
from sqlmodel import Session, select

from memory_timeline.errors import NotFoundError
from memory_timeline.models.event import Era, Event


class EventReader:
    """Loads events and eras; never writes."""

    def __init__(self, db_engine: Engine) -> None:
        self.db_engine = db_engine

    def get(self, event_id: str) -> Event:
        with Session(self.db_engine) as session:
            event = session.get(Event, event_id)
            if event is None:
                raise NotFoundError(f"Event not found: {event_id}")
            session.expunge(event)
        return event

    def get_many(self, event_ids: Iterable[str]) -> dict[str, Event]:
        ids = list(set(event_ids))
        if not ids:
            return {}
        with Session(self.db_engine) as session:
            events = session.exec(select(Event).where(Event.event_id.in_(ids))).all()  # type: ignore[union-attr]
            for ev in events:
                session.expunge(ev)
        return {ev.event_id: ev for ev in events}

    def list_all(self) -> Sequence[Event]:
        """All events in chronological order (event_id breaks ties)."""
        with Session(self.db_engine) as session:
            events = session.exec(select(Event).order_by(Event.start_date, Event.event_id)).all()
            for ev in events:
                session.expunge(ev)
        return events

    def list_eras(self) -> Sequence[Era]:
        with Session(self.db_engine) as session:
            eras = session.exec(select(Era).order_by(Era.start_date)).all()
            for era in eras:
                session.expunge(era)
        return eras
