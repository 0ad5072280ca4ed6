"""Generated page database operations."""

import asyncio
from datetime import datetime
from typing import Any

from supabase import Client

from app.core.errors import PersistenceError
from app.core.logging import get_logger
from app.core.schemas_pages import GeneratedPage, PageShape

logger = get_logger(__name__)

TABLE = "generated_pages"


def _legacy_atoms(row: dict[str, Any]) -> tuple[list[dict], dict]:
    """Atoms and metadata for a row stored in the hero/body/features layout."""
    hero = row.get("hero") or {}
    body = row.get("body") or {}
    atoms: list[dict] = []
    if hero.get("title"):
        atoms.append({"type": "heading", "level": 1, "text": hero["title"]})
    if hero.get("subtitle"):
        atoms.append({"type": "paragraph", "text": hero["subtitle"]})
    for text in body.get("paragraphs") or []:
        atoms.append({"type": "paragraph", "text": text})
    if row.get("features"):
        atoms.append({"type": "feature_set", "items": row["features"]})
    if row.get("faqs"):
        atoms.append({"type": "faq_set", "items": row["faqs"]})
    if row.get("cta"):
        atoms.append({"type": "cta", **row["cta"]})
    if row.get("related"):
        atoms.append({"type": "related", "items": row["related"]})
    metadata = {
        "title": hero.get("title", ""),
        "description": hero.get("subtitle"),
        "primary_image_prompt": hero.get("image_prompt"),
        "image_url": hero.get("image_url"),
    }
    return atoms, metadata


def page_from_row(row: dict[str, Any]) -> GeneratedPage:
    """Build a GeneratedPage from a table row, dispatching on its page_shape column."""
    shape = PageShape(row.get("page_shape") or PageShape.ATOMS.value)
    if shape is PageShape.LEGACY:
        atoms, metadata = _legacy_atoms(row)
        row = {**row, "content_atoms": atoms, "metadata": metadata, "layout_blocks": []}
    fields = {k: v for k, v in row.items() if k in GeneratedPage.model_fields and v is not None}
    return GeneratedPage.model_validate(fields)


def insert_page(client: Client, page: GeneratedPage) -> GeneratedPage:
    """
    Insert a fully assembled page.

    Raises:
        ValueError: If the insert returns no row
    """
    response = client.table(TABLE).insert(page.to_row()).execute()
    if not response.data:
        raise ValueError("No data returned from insert_page")
    logger.info(f"Inserted page {page.id}")
    return page_from_row(response.data[0])


def update_page(client: Client, page_id: str, fields: dict[str, Any]) -> GeneratedPage | None:
    response = client.table(TABLE).update(fields).eq("id", page_id).execute()
    if not response.data:
        return None
    return page_from_row(response.data[0])


def get_page(client: Client, page_id: str) -> GeneratedPage | None:
    response = client.table(TABLE).select("*").eq("id", page_id).limit(1).execute()
    if not response.data:
        return None
    return page_from_row(response.data[0])


def find_page_by_query(
    client: Client, normalized_query: str, min_created_at: datetime
) -> GeneratedPage | None:
    """Most recent page for a normalized query created at or after min_created_at."""
    response = (
        client.table(TABLE)
        .select("*")
        .eq("normalized_query", normalized_query)
        .gte("created_at", min_created_at.isoformat())
        .order("created_at", desc=True)
        .limit(1)
        .execute()
    )
    if not response.data:
        return None
    return page_from_row(response.data[0])


class SupabasePageStore:
    """PageStore over the generated_pages table."""

    def __init__(self, client: Client):
        self.client = client

    async def insert(self, page: GeneratedPage) -> GeneratedPage:
        try:
            return await asyncio.to_thread(insert_page, self.client, page)
        except Exception as e:
            logger.error(f"Failed to insert page {page.id}: {e}")
            raise PersistenceError("Failed to save page") from e

    async def update(self, page_id: str, fields: dict[str, Any]) -> GeneratedPage | None:
        return await asyncio.to_thread(update_page, self.client, page_id, fields)

    async def get(self, page_id: str) -> GeneratedPage | None:
        return await asyncio.to_thread(get_page, self.client, page_id)

    async def find_by_normalized_query(
        self, normalized_query: str, min_created_at: datetime
    ) -> GeneratedPage | None:
        return await asyncio.to_thread(find_page_by_query, self.client, normalized_query, min_created_at)
