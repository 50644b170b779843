"""RelationshipAnalyzer: turns similarity candidates into stored cross-references.

For one event: nearest neighbours from SimilaritySearch, one classifier
verdict per pair, and an upsert for every verdict that clears the
confidence floor. For the whole timeline: the same per event, in event_id
order, through the bounded BatchRunner.

The upserts of one event happen between awaits, so another coroutine can
never observe a half-written pair. Cancelling a timeline run keeps the rows
already written.
"""

from __future__ import annotations

import logging

from memory_timeline.embeddings.store import EmbeddingStore
from memory_timeline.engines.classifier import HeuristicClassifier, RelationshipClassifier
from memory_timeline.engines.cross_references import CrossReferenceStore
from memory_timeline.engines.events import EventReader
from memory_timeline.engines.similarity import SimilaritySearch
from memory_timeline.models.analysis import AnalysisResult, TimelineAnalysisSummary
from memory_timeline.workflows.batch_runner import BatchRunner, CancellationToken, ProgressCallback

logger = logging.getLogger(__name__)


class RelationshipAnalyzer:
    """Detect and persist relationships between semantically close events.

    Usage:
        analyzer = RelationshipAnalyzer(search, refs, events, embeddings)
        result = await analyzer.analyze_event("evt-1", threshold=0.75)
        summary = await analyzer.analyze_full_timeline(progress=print)
    """

    def __init__(
        self,
        search: SimilaritySearch,
        cross_references: CrossReferenceStore,
        events: EventReader,
        embeddings: EmbeddingStore,
        classifier: RelationshipClassifier | None = None,
        batch_runner: BatchRunner | None = None,
        min_confidence: float = 0.4,
        candidate_limit: int = 20,
        default_threshold: float = 0.75,
    ) -> None:
        self.search = search
        self.cross_references = cross_references
        self.events = events
        self.embeddings = embeddings
        self.classifier = classifier or HeuristicClassifier()
        self.batch_runner = batch_runner or BatchRunner()
        self.min_confidence = min_confidence
        self.candidate_limit = candidate_limit
        self.default_threshold = default_threshold

    async def analyze_event(self, event_id: str, threshold: float | None = None) -> AnalysisResult:
        """Classify ``event_id`` against its neighbours and store the relationships found.

        Raises:
            NotFoundError: Unknown event, or the event has no embedding.
        """
        source = self.events.get(event_id)
        hits = self.search.find_similar(
            event_id,
            threshold=self.default_threshold if threshold is None else threshold,
            limit=self.candidate_limit,
        )
        result = AnalysisResult(event_id=event_id, candidates=len(hits))
        if not hits:
            return result

        neighbours = self.events.get_many(hit.event_id for hit in hits)
        for hit in hits:
            other = neighbours.get(hit.event_id)
            if other is None:
                continue
            verdict = await self.classifier.classify(source, other)
            if not verdict.has_relationship or verdict.confidence < self.min_confidence:
                continue
            _, created = self.cross_references.upsert(
                event_id,
                other.event_id,
                verdict.relationship_type,
                verdict.confidence,
                reasoning=verdict.reasoning,
                details={"similarity": round(hit.similarity, 6), "source": verdict.source},
            )
            if created:
                result.created_count += 1
            else:
                result.updated_count += 1

        logger.info(
            "Analyzed event %s: %d candidates, %d created, %d updated",
            event_id, result.candidates, result.created_count, result.updated_count,
        )
        return result

    async def analyze_full_timeline(
        self,
        threshold: float | None = None,
        progress: ProgressCallback | None = None,
        cancel: CancellationToken | None = None,
        start_after: str | None = None,
    ) -> TimelineAnalysisSummary:
        """Analyze every embedded event; one failure never stops the run.

        Args:
            threshold: Similarity floor for candidates.
            progress: Called after each event finishes.
            cancel: Stops further events; finished ones stay written.
            start_after: Resume point; only event ids greater than this run.
        """
        event_ids = self.embeddings.embedded_event_ids()
        if start_after is not None:
            event_ids = [eid for eid in event_ids if eid > start_after]
        logger.info("Starting timeline analysis of %d events", len(event_ids))

        batch = await self.batch_runner.run(
            event_ids,
            worker=lambda eid: self.analyze_event(eid, threshold=threshold),
            key=str,
            progress=progress,
            cancel=cancel,
        )

        summary = TimelineAnalysisSummary(
            total_events=len(event_ids),
            processed=batch.succeeded,
            total_references=self.cross_references.count(),
            cancelled=batch.cancelled,
            last_event_id=_resume_point(event_ids, batch.results.keys(), {e.item_id for e in batch.errors}),
            errors=batch.errors,
        )
        logger.info(
            "Timeline analysis %s: %d/%d processed, %d failed, %d references stored",
            "cancelled" if summary.cancelled else "finished",
            summary.processed, summary.total_events, len(summary.errors), summary.total_references,
        )
        return summary


def _resume_point(ordered_ids: list[str], succeeded, failed: set[str]) -> str | None:
    """Last id of the finished prefix; resuming after it repeats no finished work."""
    done = set(succeeded) | failed
    last = None
    for event_id in ordered_ids:
        if event_id not in done:
            break
        last = event_id
    return last
