"""Image table and image vector operations."""

import asyncio
from typing import Any

from supabase import Client

from app.core.logging import get_logger
from app.core.schemas_images import ImageMatch
from app.core.schemas_retrieval import VectorMatch

logger = get_logger(__name__)

IMAGES_TABLE = "source_images"
MATCH_RPC = "match_images"


def find_images_by_model_code(client: Client, model_code: str, limit: int = 3) -> list[ImageMatch]:
    """Images whose alt text names the model code; exact hits score 1.0."""
    response = (
        client.table(IMAGES_TABLE)
        .select("id, url, alt_text, image_type, context")
        .ilike("alt_text", f"%{model_code}%")
        .limit(limit)
        .execute()
    )
    return [
        ImageMatch(
            id=str(row["id"]),
            url=row["url"],
            alt=row.get("alt_text"),
            type=row.get("image_type"),
            context=row.get("context"),
            score=1.0,
        )
        for row in response.data or []
        if row.get("url")
    ]


def match_images(
    client: Client,
    vector: list[float],
    top_k: int,
    min_score: float = 0.0,
    metadata_filter: dict[str, Any] | None = None,
) -> list[VectorMatch]:
    params: dict[str, Any] = {
        "query_embedding": vector,
        "match_threshold": min_score,
        "match_count": top_k,
    }
    if metadata_filter and metadata_filter.get("image_type"):
        params["filter_type"] = metadata_filter["image_type"]
    response = client.rpc(MATCH_RPC, params).execute()
    return [
        VectorMatch(
            id=str(row["id"]),
            score=float(row.get("similarity") or 0.0),
            metadata={
                "url": row.get("url"),
                "alt_text": row.get("alt_text"),
                "image_type": row.get("image_type"),
                "context": row.get("context"),
                "source_title": row.get("source_title"),
            },
        )
        for row in response.data or []
    ]


class SupabaseImageIndex:
    """VectorIndex over image embeddings."""

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
            match_images, self.client, vector, top_k, min_score, metadata_filter
        )


class SupabaseImageCatalog:
    def __init__(self, client: Client):
        self.client = client

    async def find_by_model_code(self, model_code: str, limit: int) -> list[ImageMatch]:
        return await asyncio.to_thread(find_images_by_model_code, self.client, model_code, limit)
