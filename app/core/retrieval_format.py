"""Format retrieved chunks into a grounding block for the content model."""

from dataclasses import dataclass, field
from typing import Any

from app.core.schemas_retrieval import SourceImage, SourceImageGroup, VectorMatch

CONTEXT_HEADER = "REFERENCE DATA (use for accurate information):"


@dataclass
class RetrievedChunk:
    """A vector match flattened into the fields the formatter needs."""

    chunk_id: str
    source_id: str
    text: str
    content_type: str
    title: str
    similarity: float
    url: str | None = None
    metadata: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_match(cls, match: VectorMatch) -> "RetrievedChunk":
        meta = match.metadata
        return cls(
            chunk_id=match.id,
            source_id=str(meta.get("source_id") or match.id),
            text=meta.get("chunk_text") or meta.get("text") or "",
            content_type=meta.get("content_type") or "page",
            title=meta.get("title") or "",
            similarity=match.score,
            url=meta.get("url"),
            metadata=meta.get("metadata") or {},
        )


def preferred_image(images: list[SourceImage]) -> SourceImage | None:
    """Product or hero shot first, else the first image."""
    for image in images:
        if image.type in ("product", "hero"):
            return image
    return images[0] if images else None


def images_by_title(source_images: list[SourceImageGroup]) -> dict[str, str]:
    """Lowercased source title -> preferred image URL."""
    lookup: dict[str, str] = {}
    for group in source_images:
        image = preferred_image(group.images)
        if group.title and image and image.url:
            lookup[group.title.lower()] = image.url
    return lookup


def format_grounding_context(
    chunks: list[RetrievedChunk], source_images: list[SourceImageGroup]
) -> str:
    """
    Render chunks and their source images as a numbered reference block.

    Args:
        chunks: Matches in relevance order
        source_images: Images grouped per source

    Returns:
        Context text, or "" when there are no chunks
    """
    if not chunks:
        return ""

    title_images = images_by_title(source_images)
    lines: list[str] = ["", CONTEXT_HEADER, ""]

    for n, chunk in enumerate(chunks, start=1):
        lines.append(f"[{n}] {chunk.content_type.upper()}: {chunk.title}")
        lines.append(chunk.text)

        meta = chunk.metadata
        for label, key in (("Price", "price"), ("Model", "model"), ("Series", "series")):
            if meta.get(key):
                lines.append(f"{label}: {meta[key]}")

        image_url = meta.get("image_url") or title_images.get(chunk.title.lower())
        if image_url:
            lines.append(f"Product Image URL: {image_url}")
        if chunk.url:
            lines.append(f"Product Page: {chunk.url}")

        lines.append(f"(Relevance: {round(chunk.similarity * 100)}%)")
        lines.append("")

    if source_images:
        lines.append("PRODUCT IMAGES (use these exact URLs for comparison items):")
        for group in source_images:
            image = preferred_image(group.images)
            if image and image.url:
                lines.append(f"- {group.title}: {image.url}")
        lines.append("")

    lines.append(
        "IMPORTANT: Prioritize the above reference data for product specs, prices, and features."
    )
    lines.append(
        "CRITICAL: For comparison items, use the exact Product Image URLs from above - "
        "do NOT use image_prompt for products."
    )
    return "\n".join(lines) + "\n"
