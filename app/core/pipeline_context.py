"""Per-process collaborators for the page pipeline.

Built once at application startup and torn down on shutdown; request code
receives it explicitly instead of reaching for module-level clients.
"""

import asyncio
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from typing import Any

from app.core.config import Settings
from app.core.embeddings import OpenAIEmbedder
from app.core.hybrid_images import HybridImageResolver
from app.core.image_search import ImageSearcher
from app.core.image_synthesis import ImageSynthesizer, OpenAIImageModel
from app.core.interfaces import GenerativeTextModel, HistoryStore, PageStore
from app.core.llm import AnthropicTextModel
from app.core.logging import get_logger
from app.core.retrieval import ContextRetriever, RetrievalTimeouts
from app.core.retrieval_cache import InMemoryRetrievalCache
from app.core.retry import RetryPolicy

logger = get_logger(__name__)


@dataclass
class PipelineContext:
    settings: Settings
    retriever: ContextRetriever
    text_model: GenerativeTextModel
    image_resolver: HybridImageResolver
    image_synthesizer: ImageSynthesizer | None
    pages: PageStore
    history: HistoryStore | None
    topics: Any = None
    policy: RetryPolicy = field(default_factory=RetryPolicy)
    closers: list[Callable[[], Awaitable[None]]] = field(default_factory=list)
    _background: set[asyncio.Task] = field(default_factory=set, init=False, repr=False)

    def spawn(self, coro: Awaitable[Any], name: str | None = None) -> asyncio.Task:
        """Run a background task owned by this context."""
        task = asyncio.ensure_future(coro)
        if name:
            task.set_name(name)
        self._background.add(task)
        task.add_done_callback(self._background.discard)
        return task

    async def drain(self, timeout: float | None = None) -> None:
        """Wait for background tasks (tests, graceful shutdown)."""
        if self._background:
            await asyncio.wait(list(self._background), timeout=timeout)

    async def aclose(self) -> None:
        for task in list(self._background):
            task.cancel()
        for close in self.closers:
            try:
                await close()
            except Exception as e:
                logger.warning(f"Error while closing pipeline resource: {e}")


def build_pipeline_context(settings: Settings) -> PipelineContext:
    """
    Wire SDK-backed collaborators from settings.

    Args:
        settings: Application settings

    Returns:
        Ready-to-use PipelineContext
    """
    from app.db.blob_store import SupabaseBlobStore
    from app.db.images import SupabaseImageCatalog, SupabaseImageIndex
    from app.db.pages import SupabasePageStore
    from app.db.search_history import SupabaseHistoryStore
    from app.db.sources import SupabaseContentIndex, SupabaseSourceStore
    from app.db.suggested_topics import SupabaseTopicStore
    from app.db.supabase_client import create_supabase

    supabase = create_supabase(settings)
    policy = RetryPolicy.from_settings(settings)

    embedder = OpenAIEmbedder.from_settings(settings)
    text_model = AnthropicTextModel.from_settings(settings)
    image_model = OpenAIImageModel.from_settings(settings)

    retriever = ContextRetriever(
        embedder=embedder,
        index=SupabaseContentIndex(supabase),
        sources=SupabaseSourceStore(supabase),
        cache=InMemoryRetrievalCache(max_entries=settings.RAG_CACHE_MAX_ENTRIES),
        policy=policy,
        timeouts=RetrievalTimeouts(
            embedding=settings.EMBEDDING_TIMEOUT_SECONDS,
            vector_search=settings.VECTOR_SEARCH_TIMEOUT_SECONDS,
            source_lookup=settings.VECTOR_SEARCH_TIMEOUT_SECONDS,
        ),
        ttl_seconds=settings.RAG_CACHE_TTL_SECONDS,
    )
    searcher = ImageSearcher(
        embedder=embedder,
        index=SupabaseImageIndex(supabase),
        catalog=SupabaseImageCatalog(supabase),
        policy=policy,
        timeout=settings.IMAGE_SEARCH_TIMEOUT_SECONDS,
    )

    return PipelineContext(
        settings=settings,
        retriever=retriever,
        text_model=text_model,
        image_resolver=HybridImageResolver(searcher),
        image_synthesizer=ImageSynthesizer(
            image_model, SupabaseBlobStore(supabase, settings.IMAGE_BUCKET), policy=policy
        ),
        pages=SupabasePageStore(supabase),
        history=SupabaseHistoryStore(supabase),
        topics=SupabaseTopicStore(supabase),
        policy=policy,
        closers=[embedder.close, text_model.close, image_model.close],
    )
