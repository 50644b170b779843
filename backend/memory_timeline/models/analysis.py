"""Transient analysis models: similarity hits, relationship verdicts, patterns and tags.

None of these are SQL tables; they are computed on demand and returned to
callers (API, CLI, TimelineCore).
"""

from __future__ import annotations

from datetime import date

from pydantic import BaseModel, Field

from memory_timeline.models.cross_reference import RelationshipType


# === Similarity ===


class SimilarEvent(BaseModel):
    """A neighbour returned by SimilaritySearch."""

    event_id: str
    title: str
    start_date: date | None = None
    end_date: date | None = None
    category: str | None = None
    similarity: float


# === Relationship classification ===


class RelationshipAssessment(BaseModel):
    """Verdict for one event pair.

    Also the structured-output schema for the LLM classifier, so field
    descriptions double as instructions to the model.
    """

    has_relationship: bool = Field(
        default=True,
        description="False when the two events are not meaningfully connected.",
    )
    relationship_type: RelationshipType = Field(
        default="other",
        description="causal | thematic | temporal | person | location | other",
    )
    confidence: float = Field(default=0.0, ge=0.0, le=1.0)
    reasoning: str = Field(default="", description="One or two sentences explaining the link.")
    source: str = Field(default="heuristic", description="Which classifier answered.")


class AnalysisResult(BaseModel):
    """Outcome of analysing one event against its neighbours."""

    event_id: str
    candidates: int = 0
    created_count: int = 0
    updated_count: int = 0

    @property
    def written_count(self) -> int:
        return self.created_count + self.updated_count


# === Batch bookkeeping ===


class BatchItemError(BaseModel):
    item_id: str
    error_type: str
    message: str


class BatchProgress(BaseModel):
    """Snapshot passed to progress callbacks after every finished item."""

    total: int
    completed: int = 0
    failed: int = 0
    current_item: str | None = None

    @property
    def fraction(self) -> float:
        return (self.completed + self.failed) / self.total if self.total else 1.0


class BatchSummary(BaseModel):
    """Result of a bulk embedding run."""

    total: int = 0
    succeeded: int = 0
    failed: int = 0
    cancelled: bool = False
    errors: list[BatchItemError] = Field(default_factory=list)


class TimelineAnalysisSummary(BaseModel):
    """Result of analyze_full_timeline."""

    total_events: int = 0
    processed: int = 0
    total_references: int = 0
    cancelled: bool = False
    last_event_id: str | None = None  # Resume point for start_after
    errors: list[BatchItemError] = Field(default_factory=list)


# === Patterns ===


class CategoryPattern(BaseModel):
    category: str
    occurrences: int
    first_date: date
    last_date: date
    distribution: dict[str, int] = Field(default_factory=dict)  # year -> count
    trend: str = "stable"  # "increasing" | "decreasing" | "stable"


class TemporalCluster(BaseModel):
    start: date
    end: date
    member_event_ids: list[str]
    theme: str | None = None
    cohesion: float | None = None  # Mean pairwise embedding similarity

    @property
    def size(self) -> int:
        return len(self.member_event_ids)


class CategoryShift(BaseModel):
    before: str
    after: str


class EraTransition(BaseModel):
    boundary_date: date
    from_era: str | None = None
    to_era: str
    category_shift: CategoryShift
    before_distribution: dict[str, int] = Field(default_factory=dict)
    after_distribution: dict[str, int] = Field(default_factory=dict)


class PatternReport(BaseModel):
    category_patterns: list[CategoryPattern] = Field(default_factory=list)
    temporal_clusters: list[TemporalCluster] = Field(default_factory=list)
    era_transitions: list[EraTransition] = Field(default_factory=list)
    errors: list[str] = Field(default_factory=list)


# === Tags ===


class TagSuggestion(BaseModel):
    tag_name: str
    confidence: float = Field(ge=0.0, le=1.0)
    supporting_event_ids: list[str] = Field(default_factory=list)
