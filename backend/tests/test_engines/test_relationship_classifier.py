"""Tests for HeuristicClassifier and LLMRelationshipClassifier fallback behavior."""

import os
import sys
from datetime import date

sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..', '..'))
os.environ.setdefault("DATABASE_URL", "sqlite:///test.db")
os.environ.setdefault("ANTHROPIC_API_KEY", "test")

import pytest

from memory_timeline.engines.classifier import (
    HeuristicClassifier,
    LLMRelationshipClassifier,
    build_prompt,
    create_classifier,
    date_gap_days,
)
from memory_timeline.errors import ProviderError
from memory_timeline.llm.mock_layer import MockLLMLayer
from memory_timeline.models.analysis import RelationshipAssessment
from memory_timeline.models.event import Event


def _event(event_id, start, end=None, **kwargs):
    kwargs.setdefault("title", event_id)
    return Event(event_id=event_id, start_date=start, end_date=end, **kwargs)


# === Heuristic ===


def test_shared_people_is_person():
    a = _event("a", date(2010, 1, 1), people=["Sam", "Alex"])
    b = _event("b", date(2015, 1, 1), people=["sam", "alex", "Jo"])
    verdict = HeuristicClassifier().assess(a, b)
    assert verdict.relationship_type == "person"
    assert verdict.confidence == pytest.approx(0.85)
    assert "Sam" in verdict.reasoning
    print("  PASS: shared_people_is_person")


def test_shared_location_is_location():
    a = _event("a", date(2010, 1, 1), locations=["Lisbon"])
    b = _event("b", date(2014, 6, 1), locations=["lisbon "])
    verdict = HeuristicClassifier().assess(a, b)
    assert verdict.relationship_type == "location"
    assert verdict.confidence == 0.7
    print("  PASS: shared_location_is_location")


def test_overlapping_ranges_are_temporal():
    a = _event("a", date(2018, 1, 1), date(2018, 12, 31))
    b = _event("b", date(2018, 6, 1))
    verdict = HeuristicClassifier().assess(a, b)
    assert verdict.relationship_type == "temporal"
    assert verdict.confidence == 0.65
    print("  PASS: overlapping_ranges_are_temporal")


def test_adjacent_dates_are_temporal_with_decaying_confidence():
    a = _event("a", date(2020, 5, 15))
    close = HeuristicClassifier().assess(a, _event("b", date(2020, 5, 16)))
    edge = HeuristicClassifier().assess(a, _event("c", date(2020, 6, 14)))
    assert close.relationship_type == edge.relationship_type == "temporal"
    assert close.confidence > edge.confidence
    assert edge.confidence == pytest.approx(0.45)
    print("  PASS: adjacent_dates_are_temporal_with_decaying_confidence")


def test_shared_category_is_thematic():
    a = _event("a", date(2010, 1, 1), category="work", tags=["Teaching"])
    b = _event("b", date(2013, 1, 1), category="work", tags=["teaching", "promotion"])
    verdict = HeuristicClassifier().assess(a, b)
    assert verdict.relationship_type == "thematic"
    assert verdict.confidence == pytest.approx(0.6)
    assert "Teaching" in verdict.reasoning
    print("  PASS: shared_category_is_thematic")


def test_category_other_does_not_count():
    a = _event("a", date(2010, 1, 1), category="other")
    b = _event("b", date(2013, 1, 1), category="other")
    verdict = HeuristicClassifier().assess(a, b)
    assert verdict.relationship_type == "other"
    assert verdict.has_relationship is False
    assert verdict.confidence == 0.2
    print("  PASS: category_other_does_not_count")


def test_date_gap_days():
    a = _event("a", date(2020, 1, 1), date(2020, 1, 10))
    assert date_gap_days(a, _event("b", date(2020, 1, 5))) == 0
    assert date_gap_days(a, _event("c", date(2020, 1, 20))) == 10
    assert date_gap_days(_event("d", date(2019, 12, 25)), a) == 7
    print("  PASS: date_gap_days")


def test_prompt_mentions_both_events():
    a = _event("a", date(2020, 5, 15), title="Graduated college", people=["Mom"])
    b = _event("b", date(2020, 6, 1), title="Started first job", category="work")
    prompt = build_prompt(a, b)
    assert "Event 1: Graduated college" in prompt
    assert "Event 2: Started first job" in prompt
    assert "People: Mom" in prompt
    assert "2020-06-01" in prompt
    print("  PASS: prompt_mentions_both_events")


# === LLM with fallback ===


A = _event("a", date(2020, 5, 15), title="Graduated college")
B = _event("b", date(2020, 6, 1), title="Started first job")


@pytest.mark.asyncio
async def test_llm_verdict_is_used():
    llm = MockLLMLayer({
        "RelationshipAssessment": RelationshipAssessment(
            relationship_type="causal", confidence=0.9, reasoning="The degree led to the job."
        ),
    })
    verdict = await LLMRelationshipClassifier(llm).classify(A, B)
    assert verdict.relationship_type == "causal"
    assert verdict.source == "llm"
    assert llm.call_log[0]["response_model"] == "RelationshipAssessment"
    assert llm.call_log[0]["temperature"] == 0.3
    print("  PASS: llm_verdict_is_used")


@pytest.mark.asyncio
async def test_llm_error_falls_back_to_heuristic():
    llm = MockLLMLayer(error=ProviderError("overloaded", provider="anthropic", retryable=True))
    verdict = await LLMRelationshipClassifier(llm).classify(A, B)
    assert verdict.source == "heuristic"
    assert verdict.relationship_type == "temporal"
    print("  PASS: llm_error_falls_back_to_heuristic")


@pytest.mark.asyncio
async def test_llm_timeout_falls_back_to_heuristic():
    llm = MockLLMLayer(delay=1.0)
    verdict = await LLMRelationshipClassifier(llm, timeout=0.01).classify(A, B)
    assert verdict.source == "heuristic"
    print("  PASS: llm_timeout_falls_back_to_heuristic")


@pytest.mark.asyncio
async def test_low_confidence_falls_back():
    low = MockLLMLayer({"RelationshipAssessment": RelationshipAssessment(relationship_type="causal", confidence=0.2)})
    unsure = MockLLMLayer({"RelationshipAssessment": RelationshipAssessment(has_relationship=False, confidence=0.3)})
    for llm in (low, unsure):
        verdict = await LLMRelationshipClassifier(llm, min_confidence=0.5).classify(A, B)
        assert verdict.source == "heuristic"
        assert verdict.relationship_type == "temporal"
    print("  PASS: low_confidence_falls_back")


@pytest.mark.asyncio
async def test_confident_unrelated_verdict_is_kept():
    llm = MockLLMLayer({"RelationshipAssessment": RelationshipAssessment(has_relationship=False, confidence=0.95)})
    verdict = await LLMRelationshipClassifier(llm, min_confidence=0.5).classify(A, B)
    assert verdict.has_relationship is False
    assert verdict.source == "llm"
    assert verdict.confidence == 0.95
    print("  PASS: confident_unrelated_verdict_is_kept")


def test_factory_without_real_key_is_heuristic():
    assert isinstance(create_classifier(api_key=""), HeuristicClassifier)
    assert isinstance(create_classifier(api_key="test"), HeuristicClassifier)
    assert isinstance(create_classifier(api_key="sk-ant-real", enabled=False), HeuristicClassifier)
    print("  PASS: factory_without_real_key_is_heuristic")
