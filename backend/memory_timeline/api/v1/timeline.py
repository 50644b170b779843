"""Cross-reference and pattern API endpoints.

POST /api/v1/embeddings/{event_id} - (re)generate an event's embedding
GET  /api/v1/events/{event_id}/similar - nearest neighbours
GET  /api/v1/events/{event_id}/cross-references - stored relationships
POST /api/v1/events/{event_id}/analyze - detect relationships for one event
POST /api/v1/timeline/analyze - detect relationships for every embedded event
GET  /api/v1/patterns - recurring categories, clusters, era transitions
GET  /api/v1/events/{event_id}/tag-suggestions - tags from neighbours
POST /api/v1/tag-suggestions - tags for text that is not stored yet
"""

from __future__ import annotations

import logging

from fastapi import APIRouter, HTTPException, Query
from pydantic import BaseModel, Field

from memory_timeline.core import TimelineCore
from memory_timeline.errors import (
    ConfigurationError,
    DimensionMismatchError,
    NotFoundError,
    ParseError,
    ProviderError,
    ProviderTimeout,
    TimelineError,
    ValidationError,
)
from memory_timeline.models.analysis import (
    AnalysisResult,
    PatternReport,
    SimilarEvent,
    TagSuggestion,
    TimelineAnalysisSummary,
)
from memory_timeline.models.cross_reference import RelatedReference
from memory_timeline.models.embedding import EmbeddingResult

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/v1", tags=["timeline"])

_core: TimelineCore | None = None


def set_core(core: TimelineCore | None) -> None:
    """Wire the TimelineCore instance (called from main.py lifespan or tests)."""
    global _core
    _core = core


def _get_core() -> TimelineCore:
    if _core is None:
        raise HTTPException(status_code=503, detail="Timeline engine not initialized")
    return _core


# Most specific first: ProviderTimeout is a ProviderError.
_STATUS_BY_ERROR: tuple[tuple[type[TimelineError], int], ...] = (
    (NotFoundError, 404),
    (ValidationError, 422),
    (DimensionMismatchError, 422),
    (ConfigurationError, 503),
    (ProviderTimeout, 504),
    (ProviderError, 502),
    (ParseError, 502),
)


def _http_error(e: TimelineError) -> HTTPException:
    for error_type, status in _STATUS_BY_ERROR:
        if isinstance(e, error_type):
            if status >= 500:
                logger.warning("Provider-side failure: %s: %s", type(e).__name__, e)
            return HTTPException(status_code=status, detail=str(e))
    logger.error("Unmapped engine error: %s: %s", type(e).__name__, e)
    return HTTPException(status_code=500, detail="Internal server error.")


# === Request / Response Models ===


class AnalyzeRequest(BaseModel):
    threshold: float | None = Field(default=None, ge=0.0, le=1.0)


class TimelineAnalyzeRequest(BaseModel):
    threshold: float | None = Field(default=None, ge=0.0, le=1.0)
    start_after: str | None = None


class TextTagRequest(BaseModel):
    text: str = Field(min_length=1, max_length=20000)
    max_suggestions: int = Field(default=5, ge=1, le=50)
    exclude_tags: list[str] = Field(default_factory=list)


class AnalysisResponse(BaseModel):
    event_id: str
    candidates: int
    created_count: int
    updated_count: int

    @classmethod
    def from_result(cls, result: AnalysisResult) -> AnalysisResponse:
        return cls(
            event_id=result.event_id,
            candidates=result.candidates,
            created_count=result.created_count,
            updated_count=result.updated_count,
        )


# === Endpoints ===


@router.post("/embeddings/{event_id}", response_model=EmbeddingResult)
async def generate_embedding(event_id: str) -> EmbeddingResult:
    core = _get_core()
    try:
        return await core.generate_embedding(event_id)
    except TimelineError as e:
        raise _http_error(e)


@router.get("/events/{event_id}/similar", response_model=list[SimilarEvent])
async def find_similar(
    event_id: str,
    threshold: float | None = Query(default=None, ge=0.0, le=1.0),
    limit: int | None = Query(default=None, ge=1, le=100),
) -> list[SimilarEvent]:
    core = _get_core()
    try:
        return core.find_similar(event_id, threshold=threshold, limit=limit)
    except TimelineError as e:
        raise _http_error(e)


@router.get("/events/{event_id}/cross-references", response_model=list[RelatedReference])
async def get_cross_references(event_id: str) -> list[RelatedReference]:
    return _get_core().get_cross_references(event_id)


@router.post("/events/{event_id}/analyze", response_model=AnalysisResponse)
async def analyze_event(event_id: str, request: AnalyzeRequest | None = None) -> AnalysisResponse:
    core = _get_core()
    threshold = request.threshold if request else None
    try:
        result = await core.analyze_event(event_id, threshold=threshold)
    except TimelineError as e:
        raise _http_error(e)
    return AnalysisResponse.from_result(result)


@router.post("/timeline/analyze", response_model=TimelineAnalysisSummary)
async def analyze_full_timeline(request: TimelineAnalyzeRequest | None = None) -> TimelineAnalysisSummary:
    core = _get_core()
    request = request or TimelineAnalyzeRequest()
    return await core.analyze_full_timeline(threshold=request.threshold, start_after=request.start_after)


@router.get("/patterns", response_model=PatternReport)
async def detect_patterns() -> PatternReport:
    return _get_core().detect_patterns()


@router.get("/events/{event_id}/tag-suggestions", response_model=list[TagSuggestion])
async def suggest_tags(
    event_id: str,
    max_suggestions: int = Query(default=5, ge=1, le=50),
) -> list[TagSuggestion]:
    core = _get_core()
    try:
        return core.suggest_tags(event_id, max_suggestions=max_suggestions)
    except TimelineError as e:
        raise _http_error(e)


@router.post("/tag-suggestions", response_model=list[TagSuggestion])
async def suggest_tags_for_text(request: TextTagRequest) -> list[TagSuggestion]:
    core = _get_core()
    try:
        return await core.suggest_tags_for_text(
            request.text,
            max_suggestions=request.max_suggestions,
            exclude_tags=request.exclude_tags,
        )
    except TimelineError as e:
        raise _http_error(e)
