"""In-memory stand-ins for the pipeline's remote collaborators."""

import asyncio
import time
from datetime import datetime
from typing import Any

from app.core.schemas_images import ImageMatch
from app.core.schemas_pages import GeneratedPage, SearchHistoryEntry, SuggestedTopic
from app.core.schemas_retrieval import SourceRecord, VectorMatch


class FakeEmbedder:
    """Deterministic vectors; optionally fails every call."""

    def __init__(self, dim: int = 8, error: Exception | None = None):
        self.dim = dim
        self.error = error
        self.calls: list[str] = []

    async def embed(self, text: str) -> list[float]:
        self.calls.append(text)
        if self.error:
            raise self.error
        seed = sum(ord(c) for c in text) or 1
        return [((seed * (i + 1)) % 97) / 97.0 for i in range(self.dim)]

    async def embed_batch(self, texts: list[str]) -> list[list[float]]:
        return [await self.embed(t) for t in texts]


class FakeVectorIndex:
    """Returns canned matches per call, ignoring the vector."""

    def __init__(self, matches: list[VectorMatch] | None = None, error: Exception | None = None):
        self.matches = matches or []
        self.error = error
        self.queries: list[dict[str, Any]] = []

    async def query(self, vector, top_k, metadata_filter=None, min_score=0.0) -> list[VectorMatch]:
        self.queries.append({"top_k": top_k, "filter": metadata_filter, "min_score": min_score})
        if self.error:
            raise self.error
        return list(self.matches)


class FakeSourceStore:
    def __init__(self, records: list[SourceRecord] | None = None, error: Exception | None = None):
        self.records = {r.id: r for r in records or []}
        self.error = error

    async def get_by_ids(self, ids: list[str]) -> list[SourceRecord]:
        if self.error:
            raise self.error
        return [self.records[i] for i in ids if i in self.records]


class FakeImageCatalog:
    def __init__(
        self,
        by_code: dict[str, list[ImageMatch]] | None = None,
        error: Exception | None = None,
    ):
        self.by_code = by_code or {}
        self.error = error
        self.lookups: list[str] = []

    async def find_by_model_code(self, model_code: str, limit: int) -> list[ImageMatch]:
        self.lookups.append(model_code)
        if self.error:
            raise self.error
        return self.by_code.get(model_code, [])[:limit]


class ScriptedSearcher:
    """Image searcher answering from a query -> matches table with optional delays.

    Delays let tests force out-of-order completion of concurrent searches.
    """

    def __init__(
        self,
        results: dict[str, list[ImageMatch]] | None = None,
        delays: dict[str, float] | None = None,
        error: Exception | None = None,
    ):
        self.results = results or {}
        self.delays = delays or {}
        self.error = error
        self.queries: list[str] = []

    async def search(self, query, limit=5, threshold=0.6, image_type=None) -> list[ImageMatch]:
        self.queries.append(query)
        await asyncio.sleep(self.delays.get(query, 0))
        if self.error:
            raise self.error
        return [m for m in self.results.get(query, []) if m.score >= threshold][:limit]


class FakeTextModel:
    """Scripted text model keyed by model name.

    Each entry is a list consumed in order; an Exception entry is raised.
    The last entry repeats once the list is exhausted.
    """

    def __init__(self, script: dict[str, list[Any]] | None = None, delay: float = 0.0):
        self.script = {k: list(v) for k, v in (script or {}).items()}
        self.delay = delay
        self.calls: list[dict[str, Any]] = []

    async def complete(self, system_instruction, user_message, *, model=None, max_tokens=None) -> str:
        self.calls.append({"model": model, "user_message": user_message})
        if self.delay:
            await asyncio.sleep(self.delay)
        queue = self.script.get(model)
        if not queue:
            raise ConnectionError(f"no scripted response for {model}")
        item = queue.pop(0) if len(queue) > 1 else queue[0]
        if isinstance(item, Exception):
            raise item
        return item

    def calls_for(self, model: str) -> list[dict[str, Any]]:
        return [c for c in self.calls if c["model"] == model]


class FakeImageModel:
    """Returns PNG-ish bytes; prompts containing a marker fail."""

    def __init__(self, fail_marker: str | None = None, fail_all: bool = False):
        self.fail_marker = fail_marker
        self.fail_all = fail_all
        self.prompts: list[str] = []

    async def generate(self, prompt: str, aspect_ratio: str) -> bytes:
        self.prompts.append(prompt)
        if self.fail_all or (self.fail_marker and self.fail_marker in prompt):
            raise ValueError("content policy rejection")
        return b"\x89PNG" + prompt.encode()[:16]


class FakeBlobStore:
    def __init__(self):
        self.blobs: dict[str, bytes] = {}

    async def put(self, key: str, data: bytes, content_type: str) -> str:
        self.blobs[key] = data
        return f"https://cdn.test/{key}"


class FakePageStore:
    def __init__(self, fail_insert: bool = False):
        self.pages: dict[str, GeneratedPage] = {}
        self.fail_insert = fail_insert
        self.updates: list[tuple[str, dict[str, Any]]] = []

    async def insert(self, page: GeneratedPage) -> GeneratedPage:
        if self.fail_insert:
            raise ConnectionError("database unavailable")
        self.pages[page.id] = page.model_copy(deep=True)
        return page.model_copy(deep=True)

    async def update(self, page_id: str, fields: dict[str, Any]) -> GeneratedPage | None:
        current = self.pages.get(page_id)
        if current is None:
            return None
        self.updates.append((page_id, fields))
        merged = {**current.model_dump(mode="json"), **fields}
        self.pages[page_id] = GeneratedPage.model_validate(merged)
        return self.pages[page_id].model_copy(deep=True)

    async def get(self, page_id: str) -> GeneratedPage | None:
        page = self.pages.get(page_id)
        return page.model_copy(deep=True) if page else None

    async def find_by_normalized_query(
        self, normalized_query: str, min_created_at: datetime
    ) -> GeneratedPage | None:
        hits = [
            p
            for p in self.pages.values()
            if p.normalized_query == normalized_query and p.created_at >= min_created_at
        ]
        if not hits:
            return None
        return max(hits, key=lambda p: p.created_at).model_copy(deep=True)


class ThreadedPageStore(FakePageStore):
    """Writes from a worker thread, like the Supabase store.

    `write_delay` sleeps in the thread before the row lands; `fail_after_write`
    stores the row and then raises, as a timed-out request whose write
    committed would.
    """

    def __init__(self, write_delay: float = 0.0, fail_after_write: bool = False):
        super().__init__()
        self.write_delay = write_delay
        self.fail_after_write = fail_after_write

    def _write(self, page: GeneratedPage) -> GeneratedPage:
        time.sleep(self.write_delay)
        self.pages[page.id] = page.model_copy(deep=True)
        if self.fail_after_write:
            raise TimeoutError("read timed out")
        return page.model_copy(deep=True)

    async def insert(self, page: GeneratedPage) -> GeneratedPage:
        return await asyncio.to_thread(self._write, page)


class FakeHistoryStore:
    def __init__(self):
        self.entries: list[SearchHistoryEntry] = []

    async def add(self, session_id: str, query: str, page_id: str) -> None:
        self.entries.append(SearchHistoryEntry(session_id=session_id, query=query, page_id=page_id))

    async def list_for_session(self, session_id: str, limit: int = 20) -> list[SearchHistoryEntry]:
        mine = [e for e in self.entries if e.session_id == session_id]
        return list(reversed(mine))[:limit]


class FakeTopicStore:
    def __init__(self, topics: list[SuggestedTopic] | None = None):
        self.topics = topics or []

    async def list_active(self) -> list[SuggestedTopic]:
        return list(self.topics)


class RecordingProgressSink:
    """Keeps every event in order."""

    def __init__(self):
        self.events: list[tuple[str, dict[str, Any]]] = []
        self.closed = False

    async def emit(self, event_name: str, payload: dict[str, Any]) -> None:
        self.events.append((event_name, payload))

    def names(self) -> list[str]:
        return [name for name, _ in self.events]

    def of(self, name: str) -> list[dict[str, Any]]:
        return [payload for n, payload in self.events if n == name]
