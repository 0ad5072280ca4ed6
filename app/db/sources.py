"""Content source and chunk vector operations."""

import asyncio
from typing import Any

from supabase import Client

from app.core.logging import get_logger
from app.core.schemas_retrieval import SourceImage, SourceRecord, VectorMatch

logger = get_logger(__name__)

SOURCES_TABLE = "content_sources"
IMAGES_TABLE = "source_images"
SEARCH_RPC = "search_content"

LEGACY_IMAGE_LIMIT = 3
IMAGE_LIMIT = 4


def search_chunks(
    client: Client,
    vector: list[float],
    top_k: int,
    min_score: float = 0.0,
    metadata_filter: dict[str, Any] | None = None,
) -> list[VectorMatch]:
    """
    Similarity search over content chunks.

    Returns:
        Matches whose metadata carries source_id, chunk_text, content_type,
        title, url and the source's own metadata
    """
    params: dict[str, Any] = {
        "query_embedding": vector,
        "match_threshold": min_score,
        "match_count": top_k,
    }
    if metadata_filter:
        params["filter"] = metadata_filter
    response = client.rpc(SEARCH_RPC, params).execute()

    matches = []
    for row in response.data or []:
        matches.append(
            VectorMatch(
                id=str(row["chunk_id"]),
                score=float(row.get("similarity") or 0.0),
                metadata={
                    "source_id": str(row["source_id"]),
                    "chunk_text": row.get("chunk_text") or "",
                    "content_type": row.get("content_type") or "page",
                    "title": row.get("title") or "",
                    "url": row.get("url"),
                    "metadata": row.get("metadata") or {},
                },
            )
        )
    return matches


def get_sources(client: Client, ids: list[str]) -> list[SourceRecord]:
    """
    Sources with their images.

    Sources with rows in the images table get up to IMAGE_LIMIT described
    images; older sources only have a URL array and get up to
    LEGACY_IMAGE_LIMIT bare URLs.
    """
    if not ids:
        return []

    sources = (
        client.table(SOURCES_TABLE)
        .select("id, title, url, content_type, r2_image_urls")
        .in_("id", ids)
        .execute()
    ).data or []

    images = (
        client.table(IMAGES_TABLE)
        .select("source_id, url, alt_text, image_type, context")
        .in_("source_id", ids)
        .execute()
    ).data or []

    images_by_source: dict[str, list[SourceImage]] = {}
    for row in images:
        group = images_by_source.setdefault(str(row["source_id"]), [])
        if len(group) < IMAGE_LIMIT and row.get("url"):
            group.append(
                SourceImage(
                    url=row["url"],
                    alt=row.get("alt_text"),
                    type=row.get("image_type"),
                    context=row.get("context"),
                )
            )

    records = []
    for row in sources:
        source_id = str(row["id"])
        source_images = images_by_source.get(source_id)
        if not source_images:
            legacy_urls = row.get("r2_image_urls") or []
            source_images = [SourceImage(url=u) for u in legacy_urls[:LEGACY_IMAGE_LIMIT]]
        records.append(
            SourceRecord(
                id=source_id,
                title=row.get("title") or "",
                url=row.get("url"),
                content_type=row.get("content_type"),
                images=source_images,
            )
        )
    return records


class SupabaseContentIndex:
    """VectorIndex over content chunks."""

    def __init__(self, client: Client):
        self.client = client

    async def query(
        self,
        vector: list[float],
        top_k: int,
        metadata_filter: dict[str, Any] | None = None,
        min_score: float = 0.0,
    ) -> list[VectorMatch]:
        return await asyncio.to_thread(
            search_chunks, self.client, vector, top_k, min_score, metadata_filter
        )


class SupabaseSourceStore:
    def __init__(self, client: Client):
        self.client = client

    async def get_by_ids(self, ids: list[str]) -> list[SourceRecord]:
        return await asyncio.to_thread(get_sources, self.client, ids)
