"""OpenAI embeddings generation with validation."""

import asyncio

from openai import AsyncOpenAI

from app.core.logging import get_logger

logger = get_logger(__name__)

BATCH_DELAY_SECONDS = 0.1


class OpenAIEmbedder:
    """Embedder backed by the OpenAI embeddings endpoint."""

    def __init__(
        self,
        client: AsyncOpenAI,
        model: str = "text-embedding-3-small",
        dimensions: int = 1536,
        batch_size: int = 100,
    ):
        self.client = client
        self.model = model
        self.dimensions = dimensions
        self.batch_size = batch_size

    @classmethod
    def from_settings(cls, settings, client: AsyncOpenAI | None = None) -> "OpenAIEmbedder":
        return cls(
            client=client or AsyncOpenAI(api_key=settings.OPENAI_API_KEY, max_retries=0),
            model=settings.EMBEDDING_MODEL,
            dimensions=settings.EMBEDDING_DIM,
            batch_size=settings.EMBEDDING_BATCH_SIZE,
        )

    async def embed(self, text: str) -> list[float]:
        vectors = await self._create([text])
        return vectors[0]

    async def embed_batch(self, texts: list[str]) -> list[list[float]]:
        """
        Embed many texts, batch_size texts per request.

        Args:
            texts: Texts to embed

        Returns:
            Vectors in the same order as texts

        Raises:
            ValueError: If a returned vector has the wrong dimension
        """
        if not texts:
            return []

        vectors: list[list[float]] = []
        for start in range(0, len(texts), self.batch_size):
            if start:
                await asyncio.sleep(BATCH_DELAY_SECONDS)
            vectors.extend(await self._create(texts[start : start + self.batch_size]))

        logger.info(f"Generated {len(vectors)} embeddings using {self.model}")
        return vectors

    async def _create(self, texts: list[str]) -> list[list[float]]:
        response = await self.client.embeddings.create(model=self.model, input=texts)

        # The API may return items out of order; index is authoritative
        ordered = sorted(response.data, key=lambda item: item.index)
        embeddings: list[list[float]] = []
        for i, item in enumerate(ordered):
            if len(item.embedding) != self.dimensions:
                raise ValueError(
                    f"Embedding dimension mismatch for text {i}: "
                    f"expected {self.dimensions}, got {len(item.embedding)}"
                )
            embeddings.append(item.embedding)
        return embeddings

    async def close(self) -> None:
        await self.client.close()
