"""SimilaritySearch: cosine nearest-neighbour queries over stored embeddings.

Only vectors from the same provider+model as the query are compared;
vectors from other providers live in different spaces and are excluded,
never padded or truncated. A row whose length still differs from the
query (corrupt or hand-edited data) is skipped with a warning.

The scan itself sits behind ``SimilarityBackend``. ``BruteForceBackend``
is an O(N·D) numpy pass, which is fine for a single lifetime of events;
an indexed backend can replace it without touching callers.
"""

from __future__ import annotations

import logging
from collections.abc import Sequence
from datetime import date
from typing import Protocol

import numpy as np

from memory_timeline.embeddings.store import EmbeddingStore
from memory_timeline.engines.cache import QueryCache
from memory_timeline.engines.events import EventReader
from memory_timeline.errors import DimensionMismatchError
from memory_timeline.models.analysis import SimilarEvent

logger = logging.getLogger(__name__)


def cosine_similarity(a: Sequence[float], b: Sequence[float]) -> float:
    """Cosine similarity of two vectors.

    Returns 0.0 (not NaN) when either vector is all zeros.

    Raises:
        DimensionMismatchError: The vectors have different lengths.
    """
    if len(a) != len(b):
        raise DimensionMismatchError(len(a), len(b))
    va = np.asarray(a, dtype=np.float64)
    vb = np.asarray(b, dtype=np.float64)
    norm_a = np.linalg.norm(va)
    norm_b = np.linalg.norm(vb)
    if norm_a == 0 or norm_b == 0:
        return 0.0
    return float(np.dot(va, vb) / (norm_a * norm_b))


class SimilarityBackend(Protocol):
    """Scores stored vectors of one provider+model against a query vector."""

    def query(
        self,
        vector: Sequence[float],
        provider: str,
        model: str,
        threshold: float,
        exclude_ids: frozenset[str],
    ) -> list[tuple[str, float]]:
        """Return (event_id, similarity) for every stored vector with similarity >= threshold."""
        ...


class BruteForceBackend:
    """Exact scan over all embeddings of the requested provider+model."""

    def __init__(self, embeddings: EmbeddingStore) -> None:
        self.embeddings = embeddings

    def query(
        self,
        vector: Sequence[float],
        provider: str,
        model: str,
        threshold: float,
        exclude_ids: frozenset[str],
    ) -> list[tuple[str, float]]:
        rows = [r for r in self.embeddings.list_for_model(provider, model) if r.event_id not in exclude_ids]
        if not rows:
            return []

        dim = len(vector)
        usable = []
        for row in rows:
            if len(row.vector) != dim:
                logger.warning(
                    "Skipping embedding for %s: %s", row.event_id, DimensionMismatchError(dim, len(row.vector))
                )
                continue
            usable.append(row)
        if not usable:
            return []

        matrix = np.asarray([r.vector for r in usable], dtype=np.float64)
        query = np.asarray(vector, dtype=np.float64)
        query_norm = np.linalg.norm(query)
        row_norms = np.linalg.norm(matrix, axis=1)
        if query_norm == 0:
            scores = np.zeros(len(usable))
        else:
            denom = row_norms * query_norm
            dots = matrix @ query
            scores = np.divide(dots, denom, out=np.zeros_like(dots), where=denom > 0)

        return [
            (row.event_id, float(score))
            for row, score in zip(usable, scores)
            if score >= threshold
        ]


class SimilaritySearch:
    """Find events whose embeddings are closest to a given event or vector.

    Usage:
        search = SimilaritySearch(embeddings, EventReader(engine))
        hits = search.find_similar(event_id, threshold=0.75, limit=10)
    """

    def __init__(
        self,
        embeddings: EmbeddingStore,
        events: EventReader,
        backend: SimilarityBackend | None = None,
        cache: QueryCache | None = None,
    ) -> None:
        self.embeddings = embeddings
        self.events = events
        self.backend = backend or BruteForceBackend(embeddings)
        self.cache = cache

    def find_similar(self, event_id: str, threshold: float = 0.75, limit: int = 10) -> list[SimilarEvent]:
        """Nearest neighbours of a stored event.

        Raises:
            NotFoundError: The source event has no embedding.
        """
        key = ("similar", event_id, threshold, limit)
        generation = self.cache.generation if self.cache is not None else None
        if self.cache is not None:
            cached = self.cache.get(key)
            if cached is not None:
                return list(cached)

        source = self.embeddings.get(event_id)
        results = self.find_similar_to_vector(
            source.vector,
            provider=source.provider,
            model=source.model,
            threshold=threshold,
            limit=limit,
            exclude_ids=[event_id],
        )
        if self.cache is not None:
            self.cache.put(key, list(results), generation=generation)
        return results

    def find_similar_to_vector(
        self,
        vector: Sequence[float],
        provider: str,
        model: str,
        threshold: float = 0.75,
        limit: int = 10,
        exclude_ids: Sequence[str] = (),
    ) -> list[SimilarEvent]:
        """Nearest neighbours of an ad-hoc vector produced by ``provider``/``model``.

        Sorted by similarity descending; ties go to the more recent start_date.
        """
        if limit <= 0:
            return []
        scored = self.backend.query(vector, provider, model, threshold, frozenset(exclude_ids))
        if not scored:
            return []

        events = self.events.get_many(event_id for event_id, _ in scored)
        hits = []
        for event_id, score in scored:
            event = events.get(event_id)
            if event is None:
                # Embedding outlived its event; nothing to show for it
                continue
            hits.append(SimilarEvent(
                event_id=event_id,
                title=event.title,
                start_date=event.start_date,
                end_date=event.end_date,
                category=event.category,
                similarity=score,
            ))

        hits.sort(key=lambda h: (-h.similarity, -(h.start_date or date.min).toordinal(), h.event_id))
        return hits[:limit]
