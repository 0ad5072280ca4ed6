"""Search the catalog of existing images.

Queries carrying a product model code (A3500, E310, ...) are answered by a
direct alt-text lookup; everything else goes through the image vector index.
"""

import re

from app.core.errors import ImageSearchError
from app.core.interfaces import Embedder, ImageCatalog, VectorIndex
from app.core.logging import get_logger
from app.core.retry import RetryPolicy, call_remote
from app.core.schemas_images import ImageMatch

logger = get_logger(__name__)

MODEL_CODE_PATTERN = re.compile(r"([AaEe]\d{3,4})")


def extract_model_code(text: str | None) -> str | None:
    """First product model code in text, uppercased."""
    if not text:
        return None
    match = MODEL_CODE_PATTERN.search(text)
    return match.group(1).upper() if match else None


def _match_from_metadata(match_id: str, score: float, meta: dict) -> ImageMatch | None:
    url = meta.get("url") or meta.get("r2_url")
    if not url:
        return None
    return ImageMatch(
        id=match_id,
        url=url,
        alt=meta.get("alt_text") or meta.get("alt"),
        type=meta.get("image_type") or meta.get("type"),
        context=meta.get("context"),
        source_title=meta.get("source_title"),
        score=max(0.0, min(1.0, score)),
    )


class ImageSearcher:
    """Similarity search over indexed images."""

    def __init__(
        self,
        embedder: Embedder,
        index: VectorIndex,
        catalog: ImageCatalog,
        policy: RetryPolicy | None = None,
        timeout: float | None = 10.0,
    ):
        self.embedder = embedder
        self.index = index
        self.catalog = catalog
        self.policy = policy or RetryPolicy()
        self.timeout = timeout

    async def search(
        self,
        query: str,
        limit: int = 5,
        threshold: float = 0.6,
        image_type: str | None = None,
    ) -> list[ImageMatch]:
        """
        Find images for a query.

        Args:
            query: Free-text description or product name
            limit: Maximum results
            threshold: Minimum similarity for vector results
            image_type: Restrict vector results to this image type

        Returns:
            Matches, best first, every one at or above threshold

        Raises:
            ImageSearchError: If the index cannot be reached after retries
        """
        model_code = extract_model_code(query)
        if model_code:
            try:
                direct = await call_remote(
                    "image_lookup",
                    lambda: self.catalog.find_by_model_code(model_code, limit),
                    self.policy,
                    self.timeout,
                )
            except Exception as e:
                logger.warning(f"Model-code image lookup failed for {model_code}: {e}")
                direct = []
            if direct:
                logger.debug(f"Found {len(direct)} images for model {model_code} via alt text")
                return direct[:limit]

        try:
            vector = await call_remote(
                "embed_image_query",
                lambda: self.embedder.embed(query),
                self.policy,
                self.timeout,
            )
            raw = await call_remote(
                "image_vector_search",
                lambda: self.index.query(
                    vector,
                    limit * 2,
                    metadata_filter={"image_type": image_type} if image_type else None,
                    min_score=threshold,
                ),
                self.policy,
                self.timeout,
            )
        except Exception as e:
            raise ImageSearchError(f"Image search failed for '{query[:40]}': {e}") from e

        matches: list[ImageMatch] = []
        for hit in sorted(raw, key=lambda h: h.score, reverse=True):
            if hit.score < threshold:
                continue
            if image_type and hit.metadata.get("image_type") != image_type:
                continue
            match = _match_from_metadata(hit.id, hit.score, hit.metadata)
            if match is not None:
                matches.append(match)
        return matches[:limit]
