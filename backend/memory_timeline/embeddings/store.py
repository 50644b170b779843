"""EmbeddingStore: generates and persists one vector per event.

Text fields are concatenated, embedded by the active provider and upserted
into ``event_embeddings`` keyed by event_id. Regeneration for one event is
serialized by a per-event asyncio lock, and the provider is captured once
per call, so a row can never mix a vector from one provider with the
name/model of another even if ``initialize`` switches providers mid-flight.
"""

from __future__ import annotations

import asyncio
import logging
import weakref
from collections.abc import Mapping
from datetime import datetime, timezone
from typing import Sequence

from sqlalchemy.engine import Engine
from sqlmodel import Session, func, select

from memory_timeline.embeddings.providers import EmbeddingConfig, EmbeddingProvider, create_provider
from memory_timeline.engines.cache import QueryCache
from memory_timeline.errors import NotFoundError, ParseError, ValidationError
from memory_timeline.models.analysis import BatchSummary
from memory_timeline.models.embedding import EmbeddingResult, EventEmbedding
from memory_timeline.models.event import Event
from memory_timeline.resilience import retry_with_backoff
from memory_timeline.workflows.batch_runner import BatchRunner, CancellationToken, ProgressCallback

logger = logging.getLogger(__name__)

TEXT_SEPARATOR = "\n\n"


def combine_text(text_fields: Mapping[str, str | None]) -> str:
    """Join the non-empty fields, in mapping order, with blank-line separators."""
    parts = [value.strip() for value in text_fields.values() if value and value.strip()]
    return TEXT_SEPARATOR.join(parts)


def _with_text(events: Sequence[Event]) -> list[Event]:
    """Drop events with nothing to embed; they are not batch failures."""
    kept = [ev for ev in events if combine_text(ev.text_fields())]
    if len(kept) < len(events):
        logger.info("Skipping %d events with no text to embed", len(events) - len(kept))
    return kept


class EmbeddingStore:
    """Generate, persist and look up event embeddings.

    Usage:
        store = EmbeddingStore(engine, EmbeddingConfig(provider="local"))
        result = await store.generate(event.event_id, event.text_fields())
        row = store.get(event.event_id)
    """

    def __init__(
        self,
        db_engine: Engine,
        config: EmbeddingConfig | None = None,
        provider: EmbeddingProvider | None = None,
        cache: QueryCache | None = None,
        batch_runner: BatchRunner | None = None,
    ) -> None:
        self.db_engine = db_engine
        self.cache = cache
        self.batch_runner = batch_runner or BatchRunner()
        self.config = config or EmbeddingConfig()
        self._provider = provider or create_provider(self.config)
        # entries vanish once no generate() call holds the lock
        self._locks: weakref.WeakValueDictionary[str, asyncio.Lock] = weakref.WeakValueDictionary()

    # --- provider selection ---

    def initialize(self, config: EmbeddingConfig, provider: EmbeddingProvider | None = None) -> None:
        """Switch the active provider.

        Stored vectors from the previous provider stay in place but are no
        longer comparable with new ones; call ``clear_all`` or
        ``regenerate_all`` after a switch.
        """
        new_provider = provider or create_provider(config)
        self.config = config
        self._provider = new_provider

    @property
    def provider(self) -> EmbeddingProvider:
        return self._provider

    @property
    def provider_name(self) -> str:
        return self._provider.name

    @property
    def model(self) -> str:
        return self._provider.model

    # --- generation ---

    async def embed_text(self, text: str, provider: EmbeddingProvider | None = None) -> list[float]:
        """Embed ad-hoc text (not persisted). Retries transient failures."""
        if not text or not text.strip():
            raise ValidationError("No text available to embed")
        active = provider or self._provider
        vector = await retry_with_backoff(
            lambda: active.embed(text),
            timeout=self.config.timeout_seconds,
            max_retries=self.config.max_retries,
            base_delay=self.config.retry_base_delay,
            label=f"embedding:{active.name}",
        )
        if len(vector) != active.dimension:
            raise ParseError(
                f"{active.name}/{active.model} returned {len(vector)} dims, expected {active.dimension}"
            )
        return vector

    async def generate(self, event_id: str, text_fields: Mapping[str, str | None]) -> EmbeddingResult:
        """Embed an event's text and upsert its row.

        Raises:
            ValidationError: All text fields are empty (no provider call is made).
            ProviderError / ProviderTimeout: Provider failed after retries.
            ParseError: Provider response was malformed.
        """
        text = combine_text(text_fields)
        if not text:
            raise ValidationError(f"No text available to embed for event {event_id}")

        lock = self._lock_for(event_id)
        async with lock:
            provider = self._provider
            vector = await self.embed_text(text, provider=provider)
            row = self._upsert(event_id, vector, provider)

        logger.info("Generated embedding for event %s (%s/%s)", event_id, provider.name, provider.model)
        return EmbeddingResult(
            embedding_id=row.embedding_id,
            event_id=event_id,
            dimension=row.dimension,
            provider=row.provider,
            model=row.model,
        )

    async def generate_for_event(self, event: Event) -> EmbeddingResult:
        return await self.generate(event.event_id, event.text_fields())

    def _lock_for(self, event_id: str) -> asyncio.Lock:
        lock = self._locks.get(event_id)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[event_id] = lock
        return lock

    def _upsert(self, event_id: str, vector: list[float], provider: EmbeddingProvider) -> EventEmbedding:
        with Session(self.db_engine) as session:
            row = session.exec(
                select(EventEmbedding).where(EventEmbedding.event_id == event_id)
            ).first()
            if row is None:
                row = EventEmbedding(event_id=event_id, provider=provider.name, model=provider.model, dimension=0)
            row.vector = vector
            row.provider = provider.name
            row.model = provider.model
            row.dimension = len(vector)
            row.created_at = datetime.now(timezone.utc)
            session.add(row)
            session.commit()
            session.refresh(row)
            session.expunge(row)
        self._invalidate()
        return row

    # --- reads ---

    def get(self, event_id: str) -> EventEmbedding:
        """Return the embedding for ``event_id`` or raise NotFoundError."""
        with Session(self.db_engine) as session:
            row = session.exec(
                select(EventEmbedding).where(EventEmbedding.event_id == event_id)
            ).first()
            if row is None:
                raise NotFoundError(f"Event {event_id} has no embedding")
            session.expunge(row)
        return row

    def has_embedding(self, event_id: str) -> bool:
        try:
            self.get(event_id)
        except NotFoundError:
            return False
        return True

    def list_for_model(self, provider: str, model: str) -> Sequence[EventEmbedding]:
        """All embeddings produced by one provider+model, ordered by event_id."""
        with Session(self.db_engine) as session:
            rows = session.exec(
                select(EventEmbedding)
                .where(EventEmbedding.provider == provider, EventEmbedding.model == model)
                .order_by(EventEmbedding.event_id)
            ).all()
            for row in rows:
                session.expunge(row)
        return rows

    def embedded_event_ids(self) -> list[str]:
        with Session(self.db_engine) as session:
            return list(session.exec(select(EventEmbedding.event_id).order_by(EventEmbedding.event_id)).all())

    def count(self) -> int:
        with Session(self.db_engine) as session:
            return session.exec(select(func.count()).select_from(EventEmbedding)).one()

    # --- deletes ---

    def delete(self, event_id: str) -> bool:
        """Remove an event's embedding. Returns True if a row was deleted."""
        with Session(self.db_engine) as session:
            row = session.exec(
                select(EventEmbedding).where(EventEmbedding.event_id == event_id)
            ).first()
            if row is None:
                return False
            session.delete(row)
            session.commit()
        self._invalidate()
        return True

    def clear_all(self) -> int:
        """Delete every embedding (used when switching providers/models)."""
        with Session(self.db_engine) as session:
            rows = session.exec(select(EventEmbedding)).all()
            for row in rows:
                session.delete(row)
            session.commit()
            removed = len(rows)
        self._invalidate()
        logger.info("All embeddings cleared (%d rows)", removed)
        return removed

    # --- batch ---

    async def generate_missing(
        self,
        progress: ProgressCallback | None = None,
        cancel: CancellationToken | None = None,
    ) -> BatchSummary:
        """Embed every event that has text but no embedding yet."""
        with Session(self.db_engine) as session:
            embedded = set(session.exec(select(EventEmbedding.event_id)).all())
            events = [
                ev for ev in session.exec(select(Event).order_by(Event.event_id)).all()
                if ev.event_id not in embedded
            ]
            for ev in events:
                session.expunge(ev)
        events = _with_text(events)
        logger.info("Found %d events without embeddings", len(events))
        return await self._run_batch(events, progress, cancel)

    async def regenerate_all(
        self,
        progress: ProgressCallback | None = None,
        cancel: CancellationToken | None = None,
    ) -> BatchSummary:
        """Re-embed every event with the active provider (after a provider switch)."""
        with Session(self.db_engine) as session:
            events = session.exec(select(Event).order_by(Event.event_id)).all()
            for ev in events:
                session.expunge(ev)
        events = _with_text(events)
        logger.info("Regenerating embeddings for %d events with %s/%s", len(events), self.provider_name, self.model)
        return await self._run_batch(events, progress, cancel)

    async def _run_batch(
        self,
        events: Sequence[Event],
        progress: ProgressCallback | None,
        cancel: CancellationToken | None,
    ) -> BatchSummary:
        result = await self.batch_runner.run(
            events,
            worker=self.generate_for_event,
            key=lambda ev: ev.event_id,
            progress=progress,
            cancel=cancel,
        )
        return BatchSummary(
            total=result.total,
            succeeded=result.succeeded,
            failed=result.failed,
            cancelled=result.cancelled,
            errors=result.errors,
        )

    def _invalidate(self) -> None:
        if self.cache is not None:
            self.cache.invalidate()
