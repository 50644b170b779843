"""TimelineCore: the engine's public Python API.

Wires the stores and engines around one database engine, one embedding
provider and one classifier. The API router and the CLI both go through
this facade; the external event store calls ``on_event_changed`` and
``on_event_deleted``.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable

from sqlalchemy.engine import Engine

from memory_timeline.config import Settings, settings as default_settings
from memory_timeline.embeddings.providers import EmbeddingConfig, EmbeddingProvider
from memory_timeline.embeddings.store import EmbeddingStore
from memory_timeline.engines.cache import QueryCache
from memory_timeline.engines.classifier import HeuristicClassifier, RelationshipClassifier, create_classifier
from memory_timeline.engines.cross_references import CrossReferenceStore
from memory_timeline.engines.events import EventReader
from memory_timeline.engines.patterns import PatternDetector
from memory_timeline.engines.relationship_analyzer import RelationshipAnalyzer
from memory_timeline.engines.similarity import SimilaritySearch
from memory_timeline.engines.tag_suggester import TagSuggester
from memory_timeline.errors import ValidationError
from memory_timeline.models.analysis import (
    AnalysisResult,
    BatchSummary,
    PatternReport,
    SimilarEvent,
    TagSuggestion,
    TimelineAnalysisSummary,
)
from memory_timeline.models.cross_reference import RelatedReference
from memory_timeline.models.embedding import EmbeddingResult
from memory_timeline.workflows.batch_runner import BatchRunner, CancellationToken, ProgressCallback

logger = logging.getLogger(__name__)


class TimelineCore:
    """Facade over the cross-reference and pattern engine."""

    def __init__(
        self,
        db_engine: Engine,
        app_settings: Settings | None = None,
        provider: EmbeddingProvider | None = None,
        classifier: RelationshipClassifier | None = None,
    ) -> None:
        s = app_settings or default_settings
        self.settings = s
        self.db_engine = db_engine
        self.cache = QueryCache()
        runner = BatchRunner(concurrency=s.batch_concurrency, item_timeout=s.batch_item_timeout_seconds)

        self.events = EventReader(db_engine)
        self.embeddings = EmbeddingStore(
            db_engine,
            config=EmbeddingConfig.from_settings(s),
            provider=provider,
            cache=self.cache,
            batch_runner=runner,
        )
        self.cross_references = CrossReferenceStore(db_engine, cache=self.cache)
        self.search = SimilaritySearch(self.embeddings, self.events, cache=self.cache)
        self.classifier = classifier or create_classifier(
            api_key=s.anthropic_api_key,
            enabled=s.classifier_enabled,
            model=s.classifier_model,
            min_confidence=s.classifier_min_confidence,
            timeout=s.llm_timeout_seconds,
        )
        self.analyzer = RelationshipAnalyzer(
            self.search,
            self.cross_references,
            self.events,
            self.embeddings,
            classifier=self.classifier,
            batch_runner=runner,
            min_confidence=s.cross_reference_min_confidence,
            candidate_limit=s.analysis_candidate_limit,
            default_threshold=s.similarity_threshold,
        )
        self.patterns = PatternDetector(
            self.events,
            self.embeddings,
            min_category_support=s.pattern_min_category_support,
            cluster_window_days=s.cluster_window_days,
            cluster_min_events=s.cluster_min_events,
            era_window_days=s.era_transition_window_days,
        )
        self.tags = TagSuggester(
            self.search,
            self.events,
            self.embeddings,
            threshold=s.tag_similarity_threshold,
            neighbor_limit=s.tag_neighbor_limit,
        )

    @property
    def classifier_mode(self) -> str:
        return "heuristic" if isinstance(self.classifier, HeuristicClassifier) else "llm"

    # --- embeddings ---

    async def generate_embedding(self, event_id: str) -> EmbeddingResult:
        """Embed a stored event. Raises NotFoundError for unknown events."""
        return await self.embeddings.generate_for_event(self.events.get(event_id))

    async def embed_missing(
        self,
        progress: ProgressCallback | None = None,
        cancel: CancellationToken | None = None,
    ) -> BatchSummary:
        return await self.embeddings.generate_missing(progress=progress, cancel=cancel)

    async def reembed_all(
        self,
        progress: ProgressCallback | None = None,
        cancel: CancellationToken | None = None,
        clear_first: bool = False,
    ) -> BatchSummary:
        if clear_first:
            self.embeddings.clear_all()
        return await self.embeddings.regenerate_all(progress=progress, cancel=cancel)

    # --- queries ---

    def find_similar(
        self,
        event_id: str,
        threshold: float | None = None,
        limit: int | None = None,
    ) -> list[SimilarEvent]:
        return self.search.find_similar(
            event_id,
            threshold=self.settings.similarity_threshold if threshold is None else threshold,
            limit=self.settings.similarity_limit if limit is None else limit,
        )

    def get_cross_references(self, event_id: str) -> list[RelatedReference]:
        return self.cross_references.get_for_event(event_id)

    async def analyze_event(self, event_id: str, threshold: float | None = None) -> AnalysisResult:
        return await self.analyzer.analyze_event(event_id, threshold=threshold)

    async def analyze_full_timeline(
        self,
        threshold: float | None = None,
        progress: ProgressCallback | None = None,
        cancel: CancellationToken | None = None,
        start_after: str | None = None,
    ) -> TimelineAnalysisSummary:
        return await self.analyzer.analyze_full_timeline(
            threshold=threshold, progress=progress, cancel=cancel, start_after=start_after,
        )

    def detect_patterns(self) -> PatternReport:
        return self.patterns.detect_patterns()

    def suggest_tags(self, event_id: str, max_suggestions: int = 5) -> list[TagSuggestion]:
        return self.tags.suggest_tags(event_id, max_suggestions=max_suggestions)

    async def suggest_tags_for_text(
        self,
        text: str,
        max_suggestions: int = 5,
        exclude_tags: Iterable[str] = (),
    ) -> list[TagSuggestion]:
        return await self.tags.suggest_tags_for_text(text, max_suggestions=max_suggestions, exclude_tags=exclude_tags)

    # --- event store notifications ---

    async def on_event_changed(self, event_id: str) -> EmbeddingResult | None:
        """Re-embed after a text edit. An event whose text is now empty loses its embedding."""
        event = self.events.get(event_id)
        try:
            return await self.embeddings.generate_for_event(event)
        except ValidationError:
            if self.embeddings.delete(event_id):
                logger.info("Event %s has no text left, embedding removed", event_id)
            return None

    def on_event_deleted(self, event_id: str) -> None:
        """Drop everything derived from a deleted event."""
        self.embeddings.delete(event_id)
        self.cross_references.delete_for_event(event_id)

    async def aclose(self) -> None:
        await self.embeddings.provider.aclose()


def build_core(
    db_engine: Engine | None = None,
    app_settings: Settings | None = None,
    provider: EmbeddingProvider | None = None,
    classifier: RelationshipClassifier | None = None,
) -> TimelineCore:
    """TimelineCore bound to the configured database unless an engine is given."""
    if db_engine is None:
        from memory_timeline.db.database import engine as db_engine
    return TimelineCore(db_engine, app_settings=app_settings, provider=provider, classifier=classifier)

