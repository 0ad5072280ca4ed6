"""Tests for retry, rate limiting, progress framing and page row conversion."""

import asyncio
import json
import warnings

import pytest
from fastapi import HTTPException
from tenacity import RetryCallState

from app.core.errors import ContentGenerationError, DeadlineExceededError
from app.core.progress import QueueProgressSink, Step, emit_safely, progress_payload, sse_event
from app.core.rate_limiter import RateLimiter, generation_key
from app.core.retry import RetryPolicy, is_transient, with_deadline
from app.core.schemas_pages import PageShape, normalize_query
from app.db.pages import page_from_row


# =======================
# Retry
# =======================


def test_transient_classification():
    assert is_transient(ConnectionError("reset"))
    assert is_transient(TimeoutError())
    assert not is_transient(ValueError("bad json"))
    assert not is_transient(ContentGenerationError("no atoms"))
    assert not is_transient(DeadlineExceededError("op", 1.0))


@pytest.mark.asyncio
async def test_retry_policy_retries_transient_errors():
    attempts = []

    async def flaky():
        attempts.append(1)
        if len(attempts) < 3:
            raise ConnectionError("reset")
        return "ok"

    policy = RetryPolicy(max_attempts=3, base_delay=0.0, max_delay=0.0)
    assert await policy.call("flaky", flaky) == "ok"
    assert len(attempts) == 3


@pytest.mark.asyncio
async def test_retry_policy_does_not_retry_domain_errors():
    attempts = []

    async def broken():
        attempts.append(1)
        raise ValueError("bad")

    with pytest.raises(ValueError):
        await RetryPolicy(max_attempts=3, base_delay=0.0, max_delay=0.0).call("broken", broken)
    assert len(attempts) == 1


def test_retry_wait_schedule_is_capped_and_warning_free():
    policy = RetryPolicy(max_attempts=5, base_delay=0.5, max_delay=4.0)

    with warnings.catch_warnings():
        warnings.simplefilter("error")
        wait = policy.wait()

    state = RetryCallState(retry_object=None, fn=None, args=(), kwargs={})
    delays = []
    for attempt in (1, 2, 3, 6):
        state.attempt_number = attempt
        delays.append(wait(state))

    assert 0.5 <= delays[0] <= 1.0
    assert 1.0 <= delays[1] <= 1.5
    assert 2.0 <= delays[2] <= 2.5
    assert 4.0 <= delays[3] <= 4.5


@pytest.mark.asyncio
async def test_with_deadline():
    with pytest.raises(DeadlineExceededError, match="slow_op"):
        await with_deadline(asyncio.sleep(1), 0.01, "slow_op")
    assert await with_deadline(asyncio.sleep(0, result=5), None, "no_deadline") == 5


# =======================
# Rate limiter
# =======================


def test_rate_limiter_burst_then_refill():
    clock = [0.0]
    limiter = RateLimiter(requests_per_minute=60, burst_size=2, clock=lambda: clock[0])

    assert limiter.check_limit("k")
    assert limiter.check_limit("k")
    with pytest.raises(HTTPException) as exc_info:
        limiter.check_limit("k")
    assert exc_info.value.status_code == 429
    assert exc_info.value.headers["Retry-After"] == "2"

    clock[0] += 1.0
    assert limiter.check_limit("k")
    assert limiter.get_stats("k")["total_requests"] == 3


def test_rate_limit_keys():
    assert generation_key("abc", "1.2.3.4") == "generate:session:abc"
    assert generation_key(None, "1.2.3.4") == "generate:client:1.2.3.4"


# =======================
# Progress
# =======================


def test_sse_framing():
    frame = sse_event("progress", progress_payload(Step.RAG_SEARCH, "Searching"))
    event_line, data_line, *_ = frame.split("\n")

    assert frame.endswith("\n\n")
    assert event_line == "event: progress"
    assert json.loads(data_line[len("data: "):]) == {
        "step": "rag_search",
        "message": "Searching",
        "percent": 10,
    }


@pytest.mark.asyncio
async def test_queue_sink_stops_at_terminal_event():
    sink = QueueProgressSink()
    await sink.emit("progress", {"percent": 5})
    await sink.emit("complete", {})
    await sink.emit("progress", {"percent": 100})

    names = [event.name async for event in sink.events()]

    assert names == ["progress", "complete"]


@pytest.mark.asyncio
async def test_closed_sink_drops_events():
    sink = QueueProgressSink()
    sink.close()

    await emit_safely(sink, "progress", {})

    assert [event async for event in sink.events()] == []


@pytest.mark.asyncio
async def test_emit_safely_swallows_sink_errors():
    class BrokenSink:
        closed = False

        async def emit(self, name, payload):
            raise RuntimeError("socket gone")

    await emit_safely(BrokenSink(), "progress", {})


# =======================
# Page rows
# =======================


def test_normalize_query():
    assert normalize_query("  Green   SMOOTHIE ") == "green smoothie"


def test_legacy_row_is_converted_to_atoms():
    row = {
        "id": "p1",
        "query": "Smoothie tips",
        "page_shape": "legacy",
        "hero": {"title": "Smoothie tips", "subtitle": "Blend better", "image_url": None},
        "body": {"paragraphs": ["Start with liquids."]},
        "features": [{"title": "Speed", "description": "Go fast"}],
        "faqs": [{"question": "Ice?", "answer": "Yes"}],
        "related": [{"title": "Soups"}],
        "created_at": "2026-01-01T00:00:00+00:00",
    }

    page = page_from_row(row)

    assert page.page_shape is PageShape.LEGACY
    assert [a.type for a in page.content_atoms] == [
        "heading",
        "paragraph",
        "paragraph",
        "feature_set",
        "faq_set",
        "related",
    ]
    assert page.metadata.title == "Smoothie tips"
    assert page.normalized_query == "smoothie tips"


def test_atoms_row_round_trips():
    row = {
        "id": "p2",
        "query": "Soup",
        "page_shape": "atoms",
        "content_atoms": [{"type": "heading", "text": "Soup"}],
        "layout_blocks": [{"block_type": "hero-banner", "atom_mappings": {}}],
        "image_status": "ready",
        "images_ready": True,
        "hero": None,
    }

    page = page_from_row(row)

    assert page.page_shape is PageShape.ATOMS
    assert page.layout_blocks[0].block_type == "hero-banner"
    assert page.images_ready is True
