"""Search history database operations."""

import asyncio

from supabase import Client

from app.core.logging import get_logger
from app.core.schemas_pages import SearchHistoryEntry

logger = get_logger(__name__)

TABLE = "search_history"


def add_history(client: Client, session_id: str, query: str, page_id: str) -> None:
    client.table(TABLE).insert(
        {"session_id": session_id, "query": query, "page_id": page_id}
    ).execute()


def list_history(client: Client, session_id: str, limit: int = 20) -> list[SearchHistoryEntry]:
    """Most recent searches for a session, newest first."""
    response = (
        client.table(TABLE)
        .select("id, session_id, query, page_id, created_at")
        .eq("session_id", session_id)
        .order("created_at", desc=True)
        .limit(limit)
        .execute()
    )
    return [SearchHistoryEntry.model_validate(row) for row in response.data or []]


class SupabaseHistoryStore:
    def __init__(self, client: Client):
        self.client = client

    async def add(self, session_id: str, query: str, page_id: str) -> None:
        await asyncio.to_thread(add_history, self.client, session_id, query, page_id)

    async def list_for_session(self, session_id: str, limit: int = 20) -> list[SearchHistoryEntry]:
        return await asyncio.to_thread(list_history, self.client, session_id, limit)
