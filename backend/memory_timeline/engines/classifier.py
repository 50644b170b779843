"""Relationship classification for event pairs.

Two implementations behind one ``RelationshipClassifier`` protocol:

- HeuristicClassifier: offline rules over people, locations, dates,
  category and tags. Always available.
- LLMRelationshipClassifier: asks Claude for a structured verdict and
  falls back to the heuristic when the call fails, times out, or answers
  below the confidence floor. A confident "unrelated" verdict is kept.

Heuristic calibration (first matching rule wins):

    person    shared people          0.80, +0.05 per extra person, max 0.95
    location  shared locations       0.70
    temporal  overlapping ranges     0.65
    temporal  gap <= 30 days         0.60 at 0 days, linear to 0.45 at 30
    thematic  shared category/tags   0.55, +0.05 per shared tag, max 0.75
    other     nothing in common      0.20
"""

from __future__ import annotations

import asyncio
import logging
from typing import Protocol

from memory_timeline.errors import ConfigurationError
from memory_timeline.models.analysis import RelationshipAssessment
from memory_timeline.models.event import Event

logger = logging.getLogger(__name__)

ADJACENT_DAYS = 30


class RelationshipClassifier(Protocol):
    async def classify(self, event_a: Event, event_b: Event) -> RelationshipAssessment:
        ...


def _shared(left: list[str] | None, right: list[str] | None) -> list[str]:
    """Case-insensitive intersection, reported with the left side's spelling."""
    right_keys = {item.strip().lower() for item in right or [] if item and item.strip()}
    seen: set[str] = set()
    shared = []
    for item in left or []:
        key = item.strip().lower() if item else ""
        if key and key in right_keys and key not in seen:
            seen.add(key)
            shared.append(item.strip())
    return shared


def date_gap_days(event_a: Event, event_b: Event) -> int:
    """Days between two date ranges; 0 when they overlap or touch."""
    if event_a.start_date <= event_b.effective_end and event_b.start_date <= event_a.effective_end:
        return 0
    if event_a.effective_end < event_b.start_date:
        return (event_b.start_date - event_a.effective_end).days
    return (event_a.start_date - event_b.effective_end).days


def _ranges_overlap(event_a: Event, event_b: Event) -> bool:
    return event_a.start_date <= event_b.effective_end and event_b.start_date <= event_a.effective_end


class HeuristicClassifier:
    """Rule-based classifier; deterministic and network-free."""

    async def classify(self, event_a: Event, event_b: Event) -> RelationshipAssessment:
        return self.assess(event_a, event_b)

    def assess(self, event_a: Event, event_b: Event) -> RelationshipAssessment:
        people = _shared(event_a.people, event_b.people)
        if people:
            return RelationshipAssessment(
                relationship_type="person",
                confidence=min(0.95, 0.8 + 0.05 * (len(people) - 1)),
                reasoning=f"Both events involve {', '.join(people)}.",
            )

        places = _shared(event_a.locations, event_b.locations)
        if places:
            return RelationshipAssessment(
                relationship_type="location",
                confidence=0.7,
                reasoning=f"Both events took place at {', '.join(places)}.",
            )

        if _ranges_overlap(event_a, event_b):
            return RelationshipAssessment(
                relationship_type="temporal",
                confidence=0.65,
                reasoning="The events overlap in time.",
            )

        gap = date_gap_days(event_a, event_b)
        if gap <= ADJACENT_DAYS:
            return RelationshipAssessment(
                relationship_type="temporal",
                confidence=round(0.6 - 0.15 * gap / ADJACENT_DAYS, 4),
                reasoning=f"The events happened {gap} days apart.",
            )

        tags = _shared(event_a.tags, event_b.tags)
        same_category = bool(event_a.category) and event_a.category == event_b.category and event_a.category != "other"
        if same_category or tags:
            bits = []
            if same_category:
                bits.append(f"Both are {event_a.category} events.")
            if tags:
                bits.append(f"Shared tags: {', '.join(tags)}.")
            return RelationshipAssessment(
                relationship_type="thematic",
                confidence=min(0.75, 0.55 + 0.05 * len(tags)),
                reasoning=" ".join(bits),
            )

        return RelationshipAssessment(
            has_relationship=False,
            relationship_type="other",
            confidence=0.2,
            reasoning="No shared people, places, dates or themes.",
        )


SYSTEM_PROMPT = (
    "You analyze relationships between events in a person's life timeline. "
    "Given two events, decide whether they are meaningfully connected and, if so, "
    "how: causal (one led to the other), thematic (same theme or life area), "
    "temporal (close in time), person (same people involved), location (same place) "
    "or other. Give a confidence between 0 and 1 and a short explanation."
)


def _describe(label: str, event: Event) -> str:
    lines = [f"{label}: {event.title}"]
    if event.description:
        lines.append(f"Description: {event.description}")
    when = event.start_date.isoformat()
    if event.end_date and event.end_date != event.start_date:
        when += f" to {event.end_date.isoformat()}"
    lines.append(f"Date: {when}")
    if event.category:
        lines.append(f"Category: {event.category}")
    if event.people:
        lines.append(f"People: {', '.join(event.people)}")
    if event.locations:
        lines.append(f"Locations: {', '.join(event.locations)}")
    if event.tags:
        lines.append(f"Tags: {', '.join(event.tags)}")
    return "\n".join(lines)


def build_prompt(event_a: Event, event_b: Event) -> str:
    return f"{_describe('Event 1', event_a)}\n\n{_describe('Event 2', event_b)}"


class LLMRelationshipClassifier:
    """Claude-backed classifier with a heuristic safety net.

    Args:
        llm: LLMLayer (or MockLLMLayer in tests).
        fallback: Classifier used whenever the LLM answer is unusable.
        min_confidence: LLM verdicts below this are replaced by the fallback,
            whether they claim a relationship or not.
        timeout: Hard ceiling for one classification, retries included.
    """

    def __init__(
        self,
        llm,
        fallback: HeuristicClassifier | None = None,
        min_confidence: float = 0.5,
        timeout: float | None = 60.0,
        temperature: float = 0.3,
    ) -> None:
        self.llm = llm
        self.fallback = fallback or HeuristicClassifier()
        self.min_confidence = min_confidence
        self.timeout = timeout
        self.temperature = temperature

    async def classify(self, event_a: Event, event_b: Event) -> RelationshipAssessment:
        try:
            call = self.llm.complete_structured(
                messages=[{"role": "user", "content": build_prompt(event_a, event_b)}],
                response_model=RelationshipAssessment,
                system=SYSTEM_PROMPT,
                temperature=self.temperature,
            )
            if self.timeout is not None:
                verdict, _meta = await asyncio.wait_for(call, timeout=self.timeout)
            else:
                verdict, _meta = await call
        except asyncio.TimeoutError:
            logger.warning(
                "LLM classification of %s/%s timed out after %ss, using heuristic",
                event_a.event_id, event_b.event_id, self.timeout,
            )
            return await self.fallback.classify(event_a, event_b)
        except Exception as e:
            logger.warning(
                "LLM classification of %s/%s failed (%s: %s), using heuristic",
                event_a.event_id, event_b.event_id, type(e).__name__, e,
            )
            return await self.fallback.classify(event_a, event_b)

        if verdict.confidence < self.min_confidence:
            logger.debug(
                "LLM verdict for %s/%s below confidence floor (related=%s, confidence=%.2f), using heuristic",
                event_a.event_id, event_b.event_id, verdict.has_relationship, verdict.confidence,
            )
            return await self.fallback.classify(event_a, event_b)
        return verdict.model_copy(update={"source": "llm"})


def create_classifier(
    api_key: str = "",
    enabled: bool = True,
    model: str | None = None,
    min_confidence: float = 0.5,
    timeout: float | None = 60.0,
) -> RelationshipClassifier:
    """LLM classifier when a real key is configured, otherwise the heuristic one."""
    if not enabled or not api_key or api_key == "test":
        return HeuristicClassifier()
    from memory_timeline.llm.layer import LLMLayer

    try:
        llm = LLMLayer(api_key=api_key, model=model, timeout=timeout)
    except ConfigurationError as e:
        logger.warning("LLM classifier unavailable (%s), using heuristic", e)
        return HeuristicClassifier()
    return LLMRelationshipClassifier(llm, min_confidence=min_confidence, timeout=timeout)
