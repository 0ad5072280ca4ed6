"""Cached retrieval of grounding context for a query.

Failures in embedding or vector search never abort a request; they degrade
to an empty context so generation proceeds ungrounded-but-cautious.
"""

from dataclasses import dataclass

from app.core.errors import RetrievalError
from app.core.interfaces import Embedder, RetrievalCache, SourceStore, VectorIndex
from app.core.logging import get_logger
from app.core.query_classifier import classify_query, get_retrieval_options
from app.core.retrieval_cache import DEFAULT_TTL_SECONDS, cache_key
from app.core.retrieval_format import RetrievedChunk, format_grounding_context
from app.core.retry import RetryPolicy, call_remote
from app.core.schemas_retrieval import (
    CacheEntry,
    Classification,
    RetrievalOptions,
    RetrievalResult,
    SourceImageGroup,
)

logger = get_logger(__name__)

MAX_IMAGES_PER_SOURCE = 4


@dataclass
class RetrievalTimeouts:
    embedding: float | None = 10.0
    vector_search: float | None = 10.0
    source_lookup: float | None = 10.0


class ContextRetriever:
    """Embeds the query, searches the content index and formats grounding text."""

    def __init__(
        self,
        embedder: Embedder,
        index: VectorIndex,
        sources: SourceStore,
        cache: RetrievalCache,
        policy: RetryPolicy | None = None,
        timeouts: RetrievalTimeouts | None = None,
        ttl_seconds: float = DEFAULT_TTL_SECONDS,
    ):
        self.embedder = embedder
        self.index = index
        self.sources = sources
        self.cache = cache
        self.policy = policy or RetryPolicy()
        self.timeouts = timeouts or RetrievalTimeouts()
        self.ttl_seconds = ttl_seconds

    async def retrieve(
        self,
        query: str,
        options: RetrievalOptions | None = None,
        classification: Classification | None = None,
    ) -> RetrievalResult:
        """
        Retrieve grounding context for a query.

        Args:
            query: Raw query text
            options: Search overrides; derived from the classification when omitted
            classification: Precomputed classification (recomputed when omitted)

        Returns:
            RetrievalResult; `cached` reports whether the payload came from cache
        """
        classification = classification or classify_query(query)
        options = options or get_retrieval_options(classification)
        key = cache_key(query)

        if not options.skip_cache:
            entry = self._cache_get(key)
            if entry is not None:
                logger.info(f"Retrieval cache hit for key {key}")
                return RetrievalResult(
                    context=entry.context,
                    source_ids=entry.source_ids,
                    source_images=entry.source_images,
                    classification=classification,
                    cached=True,
                )

        entry = await self._search(query, options)

        if not entry.is_trivial:
            self._cache_set(key, entry)

        return RetrievalResult(
            context=entry.context,
            source_ids=entry.source_ids,
            source_images=entry.source_images,
            classification=classification,
            cached=False,
        )

    async def _search(self, query: str, options: RetrievalOptions) -> CacheEntry:
        try:
            matches = await self._vector_matches(query, options)
        except RetrievalError as e:
            logger.warning(f"Retrieval degraded to empty context: {e}")
            return CacheEntry()

        chunks = [
            RetrievedChunk.from_match(m)
            for m in sorted(matches, key=lambda m: m.score, reverse=True)
            if m.score >= options.threshold
        ][: options.limit]
        if not chunks:
            logger.info(f"No matches above threshold {options.threshold}")
            return CacheEntry()

        source_ids = list(dict.fromkeys(chunk.source_id for chunk in chunks))
        source_images = await self._source_images(source_ids)

        return CacheEntry(
            context=format_grounding_context(chunks, source_images),
            source_ids=source_ids,
            source_images=source_images,
        )

    async def _vector_matches(self, query: str, options: RetrievalOptions) -> list:
        try:
            vector = await call_remote(
                "embed_query",
                lambda: self.embedder.embed(query),
                self.policy,
                self.timeouts.embedding,
            )
            return await call_remote(
                "vector_search",
                lambda: self.index.query(vector, options.limit, min_score=options.threshold),
                self.policy,
                self.timeouts.vector_search,
            )
        except Exception as e:
            raise RetrievalError(f"Vector search failed for '{query[:40]}': {e}") from e

    async def _source_images(self, source_ids: list[str]) -> list[SourceImageGroup]:
        try:
            records = await call_remote(
                "source_lookup",
                lambda: self.sources.get_by_ids(source_ids),
                self.policy,
                self.timeouts.source_lookup,
            )
        except Exception as e:
            logger.warning(f"Source image lookup failed, continuing without images: {e}")
            return []

        by_id = {record.id: record for record in records}
        groups: list[SourceImageGroup] = []
        for source_id in source_ids:
            record = by_id.get(source_id)
            if record is None or not record.images:
                continue
            groups.append(
                SourceImageGroup(
                    source_id=record.id,
                    title=record.title,
                    page_type=record.content_type,
                    images=record.images[:MAX_IMAGES_PER_SOURCE],
                )
            )
        return groups

    def _cache_get(self, key: str) -> CacheEntry | None:
        try:
            return self.cache.get(key)
        except Exception as e:
            logger.warning(f"Retrieval cache read failed: {e}")
            return None

    def _cache_set(self, key: str, entry: CacheEntry) -> None:
        try:
            self.cache.set(key, entry, self.ttl_seconds)
        except Exception as e:
            logger.warning(f"Retrieval cache write failed: {e}")
