"""Tests for the retrieval cache and context retriever."""

import pytest

from app.core.query_classifier import classify_query
from app.core.retrieval import ContextRetriever
from app.core.retrieval_cache import InMemoryRetrievalCache, cache_key, normalize_for_cache
from app.core.retrieval_format import CONTEXT_HEADER
from app.core.schemas_retrieval import CacheEntry, RetrievalOptions, VectorMatch
from tests.fakes.fake_services import FakeEmbedder, FakeSourceStore, FakeVectorIndex
from tests.fixtures_pages import FAST_POLICY, grounding_matches, grounding_sources


class FakeClock:
    def __init__(self):
        self.now = 1000.0

    def __call__(self) -> float:
        return self.now


def make_retriever(**kwargs) -> ContextRetriever:
    defaults = {
        "embedder": FakeEmbedder(),
        "index": FakeVectorIndex(grounding_matches()),
        "sources": FakeSourceStore(grounding_sources()),
        "cache": InMemoryRetrievalCache(),
        "policy": FAST_POLICY,
    }
    defaults.update(kwargs)
    return ContextRetriever(**defaults)


# =======================
# Cache
# =======================


def test_cache_key_ignores_case_spacing_and_punctuation():
    assert cache_key("  Green   Smoothie!! ") == cache_key("green smoothie")
    assert normalize_for_cache("A3500, please?") == "a3500 please"
    assert cache_key("green smoothie").startswith("rag:")


def test_cache_entry_expires_after_ttl():
    clock = FakeClock()
    cache = InMemoryRetrievalCache(clock=clock)
    cache.set("k", CacheEntry(context="ctx", source_ids=["s"]), ttl_seconds=60)

    clock.now += 59
    assert cache.get("k").context == "ctx"

    clock.now += 1
    assert cache.get("k") is None
    assert cache.stats()["size"] == 0


def test_cache_sweeps_expired_entries_on_write():
    clock = FakeClock()
    cache = InMemoryRetrievalCache(clock=clock, max_entries=5000)
    for i in range(1000):
        cache.set(f"k{i}", CacheEntry(context=str(i)), ttl_seconds=1)

    clock.now += 10000
    cache.set("fresh", CacheEntry(context="new"), ttl_seconds=60)

    assert cache.stats()["size"] == 1
    assert cache.get("fresh").context == "new"


def test_cache_evicts_least_recently_used_at_capacity():
    cache = InMemoryRetrievalCache(clock=FakeClock(), max_entries=2)
    cache.set("a", CacheEntry(context="a"), ttl_seconds=60)
    cache.set("b", CacheEntry(context="b"), ttl_seconds=60)
    assert cache.get("a") is not None

    cache.set("c", CacheEntry(context="c"), ttl_seconds=60)

    assert cache.get("b") is None
    assert cache.get("a").context == "a"
    assert cache.get("c").context == "c"
    assert cache.stats()["evictions"] == 1


def test_cache_returns_copies():
    cache = InMemoryRetrievalCache()
    cache.set("k", CacheEntry(context="ctx", source_ids=["s"]), ttl_seconds=60)

    first = cache.get("k")
    first.source_ids.append("mutated")

    assert cache.get("k").source_ids == ["s"]


# =======================
# Retriever
# =======================


@pytest.mark.asyncio
async def test_retrieve_formats_context_and_source_images():
    retriever = make_retriever()

    result = await retriever.retrieve("Ascent A3500 price")

    assert result.cached is False
    assert result.source_ids == ["src-1"]
    assert CONTEXT_HEADER in result.context
    assert "(Relevance: 82%)" in result.context
    assert "Ascent A3500" in result.context
    assert result.source_images[0].images[0].url == "https://img.test/a3500.jpg"
    assert result.classification.type == "product"


@pytest.mark.asyncio
async def test_second_retrieve_is_cached_and_identical():
    embedder = FakeEmbedder()
    retriever = make_retriever(embedder=embedder)

    first = await retriever.retrieve("Ascent A3500 price")
    second = await retriever.retrieve("ascent a3500 PRICE")

    assert second.cached is True
    assert second.context == first.context
    assert second.source_ids == first.source_ids
    assert len(embedder.calls) == 1


@pytest.mark.asyncio
async def test_cached_result_carries_fresh_classification():
    retriever = make_retriever()
    await retriever.retrieve("Ascent A3500 price")

    override = classify_query("ascent a3500 price")
    result = await retriever.retrieve("ascent a3500 price", classification=override)

    assert result.cached is True
    assert result.classification == override


@pytest.mark.asyncio
async def test_embedding_failure_degrades_to_empty_context():
    retriever = make_retriever(embedder=FakeEmbedder(error=ConnectionError("down")))

    result = await retriever.retrieve("Ascent A3500 price")

    assert result.context == ""
    assert result.source_ids == []
    assert result.cached is False


@pytest.mark.asyncio
async def test_vector_search_failure_is_not_cached():
    index = FakeVectorIndex(error=ConnectionError("down"))
    cache = InMemoryRetrievalCache()
    retriever = make_retriever(index=index, cache=cache)

    await retriever.retrieve("Ascent A3500 price")

    assert cache.stats()["size"] == 0


@pytest.mark.asyncio
async def test_matches_below_threshold_are_dropped():
    index = FakeVectorIndex([VectorMatch(id="c", score=0.3, metadata={"source_id": "s"})])
    retriever = make_retriever(index=index)

    result = await retriever.retrieve(
        "Ascent A3500 price", options=RetrievalOptions(threshold=0.6, limit=5)
    )

    assert result.context == ""
    assert result.source_ids == []


@pytest.mark.asyncio
async def test_source_lookup_failure_keeps_text_context():
    retriever = make_retriever(sources=FakeSourceStore(error=ConnectionError("down")))

    result = await retriever.retrieve("Ascent A3500 price")

    assert result.source_ids == ["src-1"]
    assert result.source_images == []
    assert "Ascent A3500" in result.context


@pytest.mark.asyncio
async def test_skip_cache_forces_search():
    embedder = FakeEmbedder()
    retriever = make_retriever(embedder=embedder)
    await retriever.retrieve("Ascent A3500 price")

    result = await retriever.retrieve(
        "Ascent A3500 price", options=RetrievalOptions(threshold=0.6, skip_cache=True)
    )

    assert result.cached is False
    assert len(embedder.calls) == 2
