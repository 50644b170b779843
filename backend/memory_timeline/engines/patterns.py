"""PatternDetector: timeline-wide batch analyses.

- Recurring categories: categories with enough events, yearly distribution
  and a trend (second half of the covered span vs the first half).
- Temporal clusters: sliding ``window_days`` window over start dates;
  qualifying windows (>= ``min_events``) that overlap merge into one cluster.
- Era transitions: dominant category in the window before vs after each
  era's start date.

``detect_patterns`` runs all three and records a failing analysis in
``errors`` instead of raising.
"""

from __future__ import annotations

import logging
from collections import Counter
from datetime import date, timedelta
from itertools import combinations
from typing import Sequence

from memory_timeline.embeddings.store import EmbeddingStore
from memory_timeline.engines.events import EventReader
from memory_timeline.engines.similarity import cosine_similarity
from memory_timeline.errors import DimensionMismatchError
from memory_timeline.models.analysis import (
    CategoryPattern,
    CategoryShift,
    EraTransition,
    PatternReport,
    TemporalCluster,
)
from memory_timeline.models.event import Event

logger = logging.getLogger(__name__)

IGNORED_CATEGORIES = frozenset({"other"})
TREND_RATIO = 1.25


def _trend(dates: list[date]) -> str:
    first, last = min(dates), max(dates)
    if first == last:
        return "stable"
    midpoint = first + (last - first) / 2
    early = sum(1 for d in dates if d < midpoint)
    late = len(dates) - early
    if late > early * TREND_RATIO:
        return "increasing"
    if late * TREND_RATIO < early:
        return "decreasing"
    return "stable"


def _dominant(counts: Counter) -> str | None:
    if not counts:
        return None
    return min(counts.items(), key=lambda kv: (-kv[1], kv[0]))[0]


def _category_counts(events: Sequence[Event]) -> Counter:
    return Counter(ev.category for ev in events if ev.category)


class PatternDetector:
    """Usage:
        detector = PatternDetector(EventReader(engine), embeddings)
        report = detector.detect_patterns()
    """

    def __init__(
        self,
        events: EventReader,
        embeddings: EmbeddingStore | None = None,
        min_category_support: int = 3,
        cluster_window_days: int = 30,
        cluster_min_events: int = 3,
        era_window_days: int = 180,
    ) -> None:
        self.events = events
        self.embeddings = embeddings
        self.min_category_support = min_category_support
        self.cluster_window_days = cluster_window_days
        self.cluster_min_events = cluster_min_events
        self.era_window_days = era_window_days

    # --- recurring categories ---

    def detect_recurring_categories(self, min_support: int | None = None) -> list[CategoryPattern]:
        support = self.min_category_support if min_support is None else min_support
        by_category: dict[str, list[date]] = {}
        for ev in self.events.list_all():
            if not ev.category or ev.category in IGNORED_CATEGORIES:
                continue
            by_category.setdefault(ev.category, []).append(ev.start_date)

        patterns = []
        for category, dates in by_category.items():
            if len(dates) < support:
                continue
            years = Counter(str(d.year) for d in dates)
            patterns.append(CategoryPattern(
                category=category,
                occurrences=len(dates),
                first_date=min(dates),
                last_date=max(dates),
                distribution=dict(sorted(years.items())),
                trend=_trend(dates),
            ))
        patterns.sort(key=lambda p: (-p.occurrences, p.category))
        return patterns

    # --- temporal clusters ---

    def detect_temporal_clusters(
        self,
        window_days: int | None = None,
        min_events: int | None = None,
    ) -> list[TemporalCluster]:
        window = self.cluster_window_days if window_days is None else window_days
        minimum = self.cluster_min_events if min_events is None else min_events
        events = list(self.events.list_all())
        if minimum < 1 or len(events) < minimum:
            return []

        span = timedelta(days=window)
        spans: list[list[int]] = []  # merged [first_index, last_index]
        end = 0
        for start in range(len(events)):
            end = max(end, start)
            while end + 1 < len(events) and events[end + 1].start_date - events[start].start_date <= span:
                end += 1
            if end - start + 1 < minimum:
                continue
            if spans and start <= spans[-1][1]:
                spans[-1][1] = max(spans[-1][1], end)
            else:
                spans.append([start, end])

        clusters = []
        for first, last in spans:
            members = events[first:last + 1]
            clusters.append(TemporalCluster(
                start=members[0].start_date,
                end=max(ev.effective_end for ev in members),
                member_event_ids=[ev.event_id for ev in members],
                theme=self._theme(members),
                cohesion=self._cohesion(members),
            ))
        return clusters

    @staticmethod
    def _theme(members: Sequence[Event]) -> str | None:
        """Most frequent category or tag; categories win ties, then alphabetical."""
        labels: Counter = Counter()
        categories = set()
        for ev in members:
            if ev.category and ev.category not in IGNORED_CATEGORIES:
                labels[ev.category] += 1
                categories.add(ev.category)
            for tag in {t.strip().lower() for t in ev.tags or [] if t and t.strip()}:
                labels[tag] += 1
        if not labels:
            return None
        return min(labels.items(), key=lambda kv: (-kv[1], kv[0] not in categories, kv[0]))[0]

    def _cohesion(self, members: Sequence[Event]) -> float | None:
        """Mean pairwise similarity of members embedded with the active provider."""
        if self.embeddings is None:
            return None
        member_ids = {ev.event_id for ev in members}
        vectors = [
            row.vector
            for row in self.embeddings.list_for_model(self.embeddings.provider_name, self.embeddings.model)
            if row.event_id in member_ids
        ]
        scores = []
        for a, b in combinations(vectors, 2):
            try:
                scores.append(cosine_similarity(a, b))
            except DimensionMismatchError as e:
                logger.warning("Cohesion skipped a pair: %s", e)
        if not scores:
            return None
        return round(sum(scores) / len(scores), 6)

    # --- era transitions ---

    def detect_era_transitions(self, window_days: int | None = None) -> list[EraTransition]:
        window = timedelta(days=self.era_window_days if window_days is None else window_days)
        eras = list(self.events.list_eras())
        events = list(self.events.list_all())
        transitions = []
        for index, era in enumerate(eras):
            boundary = era.start_date
            before = _category_counts([ev for ev in events if boundary - window <= ev.start_date < boundary])
            after = _category_counts([ev for ev in events if boundary <= ev.start_date < boundary + window])
            dominant_before = _dominant(before)
            dominant_after = _dominant(after)
            if dominant_before is None or dominant_after is None or dominant_before == dominant_after:
                continue
            transitions.append(EraTransition(
                boundary_date=boundary,
                from_era=eras[index - 1].name if index > 0 else None,
                to_era=era.name,
                category_shift=CategoryShift(before=dominant_before, after=dominant_after),
                before_distribution=dict(sorted(before.items())),
                after_distribution=dict(sorted(after.items())),
            ))
        return transitions

    # --- all ---

    def detect_patterns(self) -> PatternReport:
        report = PatternReport()
        analyses = (
            ("category_patterns", self.detect_recurring_categories),
            ("temporal_clusters", self.detect_temporal_clusters),
            ("era_transitions", self.detect_era_transitions),
        )
        for name, analysis in analyses:
            try:
                setattr(report, name, analysis())
            except Exception as e:
                logger.exception("Pattern analysis %s failed", name)
                report.errors.append(f"{name}: {type(e).__name__}: {e}")
        return report
