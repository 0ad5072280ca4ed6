"""Progress events for the page pipeline and their SSE framing."""

import asyncio
import json
from collections.abc import AsyncGenerator
from dataclasses import dataclass
from enum import Enum
from typing import Any

from app.core.logging import get_logger

logger = get_logger(__name__)


class Step(str, Enum):
    """Progress step names, each with a fixed completion percentage."""

    CACHE_HIT = "cache_hit"
    CLASSIFYING = "classifying"
    RAG_SEARCH = "rag_search"
    CONTENT_GENERATING = "content_generating"
    LAYOUT_SELECTING = "layout_selecting"
    IMAGES_SEARCHING = "images_searching"
    IMAGES_PENDING = "images_pending"
    SAVING = "saving"
    COMPLETE = "complete"

    @property
    def percent(self) -> int:
        return _PERCENT[self]


_PERCENT = {
    Step.CACHE_HIT: 90,
    Step.CLASSIFYING: 5,
    Step.RAG_SEARCH: 10,
    Step.CONTENT_GENERATING: 25,
    Step.LAYOUT_SELECTING: 40,
    Step.IMAGES_SEARCHING: 55,
    Step.IMAGES_PENDING: 70,
    Step.SAVING: 90,
    Step.COMPLETE: 100,
}


class EventName(str, Enum):
    PROGRESS = "progress"
    CLASSIFICATION = "classification"
    CONTENT_PREVIEW = "content_preview"
    CONTENT_HERO = "content_hero"
    IMAGES_FOUND = "images_found"
    CONTENT_HERO_IMAGE = "content_hero_image"
    CONTENT_FEATURES = "content_features"
    CONTENT_RELATED = "content_related"
    COMPLETE = "complete"
    ERROR = "error"


TERMINAL_EVENTS = frozenset({EventName.COMPLETE.value, EventName.ERROR.value})


@dataclass(frozen=True)
class ProgressEvent:
    name: str
    payload: dict[str, Any]

    @property
    def terminal(self) -> bool:
        return self.name in TERMINAL_EVENTS


def progress_payload(step: Step, message: str, **extra: Any) -> dict[str, Any]:
    return {"step": step.value, "message": message, "percent": step.percent, **extra}


def sse_event(name: str, data: dict[str, Any]) -> str:
    """Format one named SSE event."""
    return f"event: {name}\ndata: {json.dumps(data, default=str)}\n\n"


class NullProgressSink:
    """Discards events; for callers that only want the final page."""

    closed = False

    async def emit(self, event_name: str, payload: dict[str, Any]) -> None:
        return None


class QueueProgressSink:
    """Buffers events in an asyncio.Queue for a streaming response to drain.

    Closing the sink (client went away) stops delivery; the producer keeps
    running and its further events are dropped.
    """

    def __init__(self, maxsize: int = 0):
        self._queue: asyncio.Queue[ProgressEvent | None] = asyncio.Queue(maxsize=maxsize)
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    async def emit(self, event_name: str, payload: dict[str, Any]) -> None:
        if self._closed:
            return
        await self._queue.put(ProgressEvent(event_name, payload))

    def close(self) -> None:
        """Stop accepting events and release the consumer."""
        if not self._closed:
            self._closed = True
            self._queue.put_nowait(None)

    def finish(self) -> None:
        """Producer is done; consumer stops after draining."""
        self._queue.put_nowait(None)

    async def events(self) -> AsyncGenerator[ProgressEvent, None]:
        while True:
            event = await self._queue.get()
            if event is None:
                return
            yield event
            if event.terminal:
                return


async def emit_safely(sink, event_name: str, payload: dict[str, Any]) -> None:
    """Emit without letting a sink failure affect the pipeline."""
    if sink is None or getattr(sink, "closed", False):
        return
    try:
        await sink.emit(event_name, payload)
    except Exception as e:
        logger.warning(f"Progress sink dropped '{event_name}': {e}")
