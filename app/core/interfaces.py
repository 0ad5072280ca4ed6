"""Collaborator contracts consumed by the page pipeline.

Concrete adapters live in app/core (model SDKs) and app/db (Supabase). Tests
substitute the in-memory fakes under tests/fakes.
"""

from datetime import datetime
from typing import Any, Protocol

from app.core.schemas_images import ImageMatch
from app.core.schemas_pages import GeneratedPage, SearchHistoryEntry
from app.core.schemas_retrieval import CacheEntry, SourceRecord, VectorMatch


class Embedder(Protocol):
    async def embed(self, text: str) -> list[float]: ...

    async def embed_batch(self, texts: list[str]) -> list[list[float]]: ...


class VectorIndex(Protocol):
    async def query(
        self,
        vector: list[float],
        top_k: int,
        metadata_filter: dict[str, Any] | None = None,
        min_score: float = 0.0,
    ) -> list[VectorMatch]: ...


class SourceStore(Protocol):
    async def get_by_ids(self, ids: list[str]) -> list[SourceRecord]: ...


class ImageCatalog(Protocol):
    """Direct lookups against the image table (no embeddings)."""

    async def find_by_model_code(self, model_code: str, limit: int) -> list[ImageMatch]: ...


class GenerativeTextModel(Protocol):
    async def complete(
        self,
        system_instruction: str,
        user_message: str,
        *,
        model: str | None = None,
        max_tokens: int | None = None,
    ) -> str: ...


class GenerativeImageModel(Protocol):
    async def generate(self, prompt: str, aspect_ratio: str) -> bytes: ...


class BlobStore(Protocol):
    async def put(self, key: str, data: bytes, content_type: str) -> str: ...


class PageStore(Protocol):
    async def insert(self, page: GeneratedPage) -> GeneratedPage: ...

    async def update(self, page_id: str, fields: dict[str, Any]) -> GeneratedPage | None: ...

    async def get(self, page_id: str) -> GeneratedPage | None: ...

    async def find_by_normalized_query(
        self, normalized_query: str, min_created_at: datetime
    ) -> GeneratedPage | None: ...


class HistoryStore(Protocol):
    async def add(self, session_id: str, query: str, page_id: str) -> None: ...

    async def list_for_session(self, session_id: str, limit: int = 20) -> list[SearchHistoryEntry]: ...


class RetrievalCache(Protocol):
    def get(self, key: str) -> CacheEntry | None: ...

    def set(self, key: str, entry: CacheEntry, ttl_seconds: float) -> None: ...


class ProgressSink(Protocol):
    @property
    def closed(self) -> bool: ...

    async def emit(self, event_name: str, payload: dict[str, Any]) -> None: ...
