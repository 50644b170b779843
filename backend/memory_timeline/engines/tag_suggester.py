"""TagSuggester: proposes tags from the tags of semantically close events."""

from __future__ import annotations

import logging
from collections.abc import Iterable

from memory_timeline.embeddings.store import EmbeddingStore
from memory_timeline.engines.events import EventReader
from memory_timeline.engines.similarity import SimilaritySearch
from memory_timeline.models.analysis import SimilarEvent, TagSuggestion

logger = logging.getLogger(__name__)


class TagSuggester:
    """Usage:
        suggester = TagSuggester(search, events, embeddings)
        tags = suggester.suggest_tags("evt-1", max_suggestions=5)
    """

    def __init__(
        self,
        search: SimilaritySearch,
        events: EventReader,
        embeddings: EmbeddingStore,
        threshold: float = 0.5,
        neighbor_limit: int = 10,
    ) -> None:
        self.search = search
        self.events = events
        self.embeddings = embeddings
        self.threshold = threshold
        self.neighbor_limit = neighbor_limit

    def suggest_tags(self, event_id: str, max_suggestions: int = 5) -> list[TagSuggestion]:
        """Raises NotFoundError when the event or its embedding is missing."""
        source = self.events.get(event_id)
        neighbours = self.search.find_similar(event_id, threshold=self.threshold, limit=self.neighbor_limit)
        return self._aggregate(neighbours, source.tags or [], max_suggestions)

    async def suggest_tags_for_text(
        self,
        text: str,
        max_suggestions: int = 5,
        exclude_tags: Iterable[str] = (),
    ) -> list[TagSuggestion]:
        """Suggestions for text that is not stored as an event yet.

        Raises ValidationError on empty text.
        """
        provider = self.embeddings.provider
        vector = await self.embeddings.embed_text(text, provider=provider)
        neighbours = self.search.find_similar_to_vector(
            vector,
            provider=provider.name,
            model=provider.model,
            threshold=self.threshold,
            limit=self.neighbor_limit,
        )
        return self._aggregate(neighbours, exclude_tags, max_suggestions)

    def _aggregate(
        self,
        neighbours: list[SimilarEvent],
        exclude_tags: Iterable[str],
        max_suggestions: int,
    ) -> list[TagSuggestion]:
        if max_suggestions <= 0 or not neighbours:
            return []
        excluded = {t.strip().lower() for t in exclude_tags if t}
        events = self.events.get_many(n.event_id for n in neighbours)

        weights: dict[str, float] = {}
        spelling: dict[str, str] = {}
        support: dict[str, list[str]] = {}
        for hit in neighbours:
            event = events.get(hit.event_id)
            if event is None or hit.similarity <= 0:
                continue
            for tag in event.tags or []:
                key = tag.strip().lower() if tag else ""
                if not key or key in excluded:
                    continue
                if hit.event_id in support.get(key, []):
                    continue
                spelling.setdefault(key, tag.strip())
                weights[key] = weights.get(key, 0.0) + hit.similarity
                support.setdefault(key, []).append(hit.event_id)

        if not weights:
            return []
        top = max(weights.values())
        ranked = sorted(weights, key=lambda k: (-weights[k], k))[:max_suggestions]
        return [
            TagSuggestion(
                tag_name=spelling[key],
                confidence=round(min(1.0, weights[key] / top), 6),
                supporting_event_ids=support[key],
            )
            for key in ranked
        ]
