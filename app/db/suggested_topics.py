"""Suggested topic database operations."""

import asyncio

from supabase import Client

from app.core.schemas_pages import SuggestedTopic


def list_active_topics(client: Client) -> list[SuggestedTopic]:
    """Active topics in display order."""
    response = (
        client.table("suggested_topics")
        .select("id, title, description, query, display_order")
        .eq("active", True)
        .order("display_order")
        .execute()
    )
    return [SuggestedTopic.model_validate(row) for row in response.data or []]


class SupabaseTopicStore:
    def __init__(self, client: Client):
        self.client = client

    async def list_active(self) -> list[SuggestedTopic]:
        return await asyncio.to_thread(list_active_topics, self.client)
