"""Image blob storage on Supabase Storage."""

import asyncio

from supabase import Client

from app.core.logging import get_logger

logger = get_logger(__name__)


def upload_blob(client: Client, bucket: str, key: str, data: bytes, content_type: str) -> str:
    """Upload bytes (overwriting) and return the public URL."""
    client.storage.from_(bucket).upload(
        path=key,
        file=data,
        file_options={"content-type": content_type, "upsert": "true"},
    )
    return client.storage.from_(bucket).get_public_url(key)


class SupabaseBlobStore:
    def __init__(self, client: Client, bucket: str):
        self.client = client
        self.bucket = bucket

    async def put(self, key: str, data: bytes, content_type: str) -> str:
        url = await asyncio.to_thread(upload_blob, self.client, self.bucket, key, data, content_type)
        logger.debug(f"Stored blob {key} ({len(data)} bytes)")
        return url
