"""Tests for EmbeddingStore: generation, upsert, retries, batch regeneration."""

import asyncio
import os
import sys
from datetime import date

sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..', '..'))
os.environ.setdefault("DATABASE_URL", "sqlite:///test.db")
os.environ.setdefault("ANTHROPIC_API_KEY", "test")

import pytest

from memory_timeline.embeddings.providers import EmbeddingConfig, EmbeddingProvider, LocalHashingProvider
from memory_timeline.embeddings.store import EmbeddingStore, combine_text
from memory_timeline.engines.cache import QueryCache
from memory_timeline.errors import NotFoundError, ParseError, ProviderError, ValidationError
from memory_timeline.models.event import Event
from memory_timeline.workflows.batch_runner import CancellationToken

FAST = EmbeddingConfig(provider="local", retry_base_delay=0.0, max_retries=2, timeout_seconds=5)


def _store(db_engine, provider, **kwargs):
    return EmbeddingStore(db_engine, config=FAST, provider=provider, **kwargs)


class SlowProvider(EmbeddingProvider):
    name = "slow"

    def __init__(self):
        super().__init__(model="slow-1", dimension=2)
        self.active = 0
        self.max_active = 0

    async def embed(self, text):
        self.active += 1
        self.max_active = max(self.max_active, self.active)
        await asyncio.sleep(0.01)
        self.active -= 1
        return [1.0, 0.0]


def test_combine_text_skips_empty_fields():
    text = combine_text({"title": " Moved to Denver ", "description": "", "transcript": None, "notes": "New flat"})
    assert text == "Moved to Denver\n\nNew flat"
    assert combine_text({}) == ""
    assert combine_text({"title": "   "}) == ""
    print("  PASS: combine_text_skips_empty_fields")


@pytest.mark.asyncio
async def test_generate_persists_row(db_engine):
    store = _store(db_engine, LocalHashingProvider())
    result = await store.generate("evt-1", {"title": "Moved to Denver", "description": "Started a new chapter"})
    assert result.event_id == "evt-1"
    assert result.dimension == 384
    assert result.provider == "local"
    assert result.model == "hashing-v2"

    row = store.get("evt-1")
    assert row.embedding_id == result.embedding_id
    assert row.dimension == len(row.vector) == 384
    assert store.count() == 1
    print("  PASS: generate_persists_row")


@pytest.mark.asyncio
async def test_generate_empty_text_makes_no_provider_call(db_engine, provider_cls):
    provider = provider_cls()
    store = _store(db_engine, provider)
    with pytest.raises(ValidationError):
        await store.generate("evt-1", {})
    with pytest.raises(ValidationError):
        await store.generate("evt-1", {"title": "", "description": "  ", "transcript": None})
    assert provider.calls == []
    assert store.count() == 0
    print("  PASS: generate_empty_text_makes_no_provider_call")


@pytest.mark.asyncio
async def test_regenerate_replaces_row_in_place(db_engine, provider_cls):
    store = _store(db_engine, provider_cls(vectors={"v1": [1.0, 0.0, 0.0], "v2": [0.0, 1.0, 0.0]}))
    first = await store.generate("evt-1", {"title": "v1"})
    second = await store.generate("evt-1", {"title": "v2"})
    assert first.embedding_id == second.embedding_id
    assert store.count() == 1
    assert store.get("evt-1").vector == [0.0, 1.0, 0.0]
    print("  PASS: regenerate_replaces_row_in_place")


@pytest.mark.asyncio
async def test_provider_switch_updates_name_model_and_dimension(db_engine, provider_cls):
    store = _store(db_engine, provider_cls(dimension=3))
    await store.generate("evt-1", {"title": "hello"})
    store.initialize(FAST, provider=LocalHashingProvider())
    await store.generate("evt-1", {"title": "hello"})
    row = store.get("evt-1")
    assert (row.provider, row.model, row.dimension) == ("local", "hashing-v2", 384)
    assert len(row.vector) == 384
    print("  PASS: provider_switch_updates_name_model_and_dimension")


@pytest.mark.asyncio
async def test_transient_error_is_retried(db_engine, provider_cls):
    provider = provider_cls(errors=[ProviderError("503", provider="fake", retryable=True)])
    store = _store(db_engine, provider)
    await store.generate("evt-1", {"title": "hello"})
    assert len(provider.calls) == 2
    assert store.has_embedding("evt-1")
    print("  PASS: transient_error_is_retried")


@pytest.mark.asyncio
async def test_permanent_error_is_not_retried(db_engine, provider_cls):
    provider = provider_cls(errors=[ProviderError("401 unauthorized", provider="fake")])
    store = _store(db_engine, provider)
    with pytest.raises(ProviderError):
        await store.generate("evt-1", {"title": "hello"})
    assert len(provider.calls) == 1
    assert not store.has_embedding("evt-1")
    print("  PASS: permanent_error_is_not_retried")


@pytest.mark.asyncio
async def test_wrong_length_vector_is_parse_error(db_engine, provider_cls):
    provider = provider_cls(dimension=3, default=[1.0, 0.0])
    store = _store(db_engine, provider)
    with pytest.raises(ParseError):
        await store.generate("evt-1", {"title": "hello"})
    assert store.count() == 0
    print("  PASS: wrong_length_vector_is_parse_error")


@pytest.mark.asyncio
async def test_same_event_generation_is_serialized(db_engine):
    provider = SlowProvider()
    store = _store(db_engine, provider)
    await asyncio.gather(
        store.generate("evt-1", {"title": "one"}),
        store.generate("evt-1", {"title": "two"}),
        store.generate("evt-1", {"title": "three"}),
    )
    assert provider.max_active == 1
    assert store.count() == 1

    provider.max_active = 0
    await asyncio.gather(
        store.generate("evt-2", {"title": "one"}),
        store.generate("evt-3", {"title": "two"}),
    )
    assert provider.max_active == 2
    print("  PASS: same_event_generation_is_serialized")


@pytest.mark.asyncio
async def test_event_locks_are_released_after_generation(db_engine):
    provider = SlowProvider()
    store = _store(db_engine, provider)
    task = asyncio.create_task(store.generate("evt-1", {"title": "one"}))
    await asyncio.sleep(0)
    assert list(store._locks) == ["evt-1"]
    await task

    await asyncio.gather(*[store.generate(f"evt-{i}", {"title": "again"}) for i in range(20)])
    assert len(store._locks) == 0
    print("  PASS: event_locks_are_released_after_generation")


def test_get_missing_raises_not_found(db_engine, provider_cls):
    store = _store(db_engine, provider_cls())
    with pytest.raises(NotFoundError):
        store.get("nope")
    assert store.delete("nope") is False
    print("  PASS: get_missing_raises_not_found")


@pytest.mark.asyncio
async def test_writes_invalidate_cache(db_engine, provider_cls):
    cache = QueryCache()
    cache.put("k", "v")
    store = _store(db_engine, provider_cls(), cache=cache)
    await store.generate("evt-1", {"title": "hello"})
    assert cache.get("k") is None

    cache.put("k", "v")
    assert store.delete("evt-1") is True
    assert cache.get("k") is None
    print("  PASS: writes_invalidate_cache")


@pytest.mark.asyncio
async def test_generate_missing_and_clear_all(db_engine, add_events, provider_cls):
    add_events(
        Event(event_id="e1", title="First day at school", start_date=date(1995, 9, 1)),
        Event(event_id="e2", title="Learned to swim", start_date=date(1996, 7, 1)),
        Event(event_id="e3", title="Moved house", start_date=date(1997, 3, 1)),
    )
    provider = provider_cls()
    store = _store(db_engine, provider)
    await store.generate("e1", {"title": "First day at school"})
    provider.calls.clear()

    summary = await store.generate_missing()
    assert summary.total == 2
    assert summary.succeeded == 2
    assert summary.failed == 0
    assert len(provider.calls) == 2
    assert store.embedded_event_ids() == ["e1", "e2", "e3"]

    assert store.clear_all() == 3
    assert store.count() == 0
    print("  PASS: generate_missing_and_clear_all")


@pytest.mark.asyncio
async def test_batches_skip_events_without_text(db_engine, add_events, provider_cls):
    add_events(
        Event(event_id="e1", title="Adopted a dog", start_date=date(2012, 3, 1)),
        Event(event_id="e2", title="  ", description="", start_date=date(2012, 4, 1)),
    )
    provider = provider_cls()
    store = _store(db_engine, provider)

    for run in (store.generate_missing, store.regenerate_all):
        summary = await run()
        assert (summary.total, summary.failed) == (1, 0)
    assert provider.calls == ["Adopted a dog", "Adopted a dog"]
    assert store.embedded_event_ids() == ["e1"]
    print("  PASS: batches_skip_events_without_text")


@pytest.mark.asyncio
async def test_batch_records_failures_and_continues(db_engine, add_events, provider_cls):
    add_events(
        Event(event_id="e1", title="Good", start_date=date(2001, 1, 1)),
        Event(event_id="e2", title="Also good", start_date=date(2001, 2, 1)),
    )
    provider = provider_cls(errors=[ProviderError("bad request", provider="fake")])
    store = _store(db_engine, provider)
    store.batch_runner.concurrency = 1

    summary = await store.regenerate_all()
    assert summary.total == 2
    assert summary.succeeded == 1
    assert summary.failed == 1
    assert summary.errors[0].item_id == "e1"
    assert summary.errors[0].error_type == "ProviderError"
    print("  PASS: batch_records_failures_and_continues")


@pytest.mark.asyncio
async def test_cancelled_batch_makes_no_calls(db_engine, add_events, provider_cls):
    add_events(Event(event_id="e1", title="Anything", start_date=date(2001, 1, 1)))
    provider = provider_cls()
    store = _store(db_engine, provider)
    token = CancellationToken()
    token.cancel()

    summary = await store.generate_missing(cancel=token)
    assert summary.cancelled is True
    assert summary.succeeded == 0
    assert provider.calls == []
    print("  PASS: cancelled_batch_makes_no_calls")
