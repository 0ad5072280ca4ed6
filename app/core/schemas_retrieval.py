"""Pydantic schemas for query classification and context retrieval."""

from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field

QueryType = Literal["product", "recipe", "blog", "support", "commercial", "general"]


class Classification(BaseModel):
    """Deterministic classification of a query string."""

    model_config = ConfigDict(frozen=True)

    type: QueryType = "general"
    confidence: float = Field(default=0.0, ge=0.0, le=1.0)
    keywords: tuple[str, ...] = ()
    needs_product_images: bool = False
    needs_recipe_images: bool = False
    scores: dict[str, float] = Field(default_factory=dict, description="Per-category raw scores")


class RetrievalOptions(BaseModel):
    """Similarity search parameters tuned per classification."""

    threshold: float = 0.65
    limit: int = 5
    preferred_types: tuple[str, ...] = ()
    skip_cache: bool = False


class SourceImage(BaseModel):
    url: str
    alt: str | None = None
    type: str | None = None
    context: str | None = None


class SourceImageGroup(BaseModel):
    """Images associated with one retrieved source."""

    source_id: str
    title: str = ""
    page_type: str | None = None
    images: list[SourceImage] = Field(default_factory=list)


class SourceRecord(BaseModel):
    """Source row joined to vector matches."""

    id: str
    title: str = ""
    url: str | None = None
    content_type: str | None = None
    images: list[SourceImage] = Field(default_factory=list)


class VectorMatch(BaseModel):
    """One hit from a vector index."""

    id: str
    score: float
    metadata: dict[str, Any] = Field(default_factory=dict)


class CacheEntry(BaseModel):
    """Memoized retrieval payload; never includes the classification."""

    context: str = ""
    source_ids: list[str] = Field(default_factory=list)
    source_images: list[SourceImageGroup] = Field(default_factory=list)

    @property
    def is_trivial(self) -> bool:
        return not self.context and not self.source_ids


class RetrievalResult(BaseModel):
    context: str = ""
    source_ids: list[str] = Field(default_factory=list)
    source_images: list[SourceImageGroup] = Field(default_factory=list)
    classification: Classification
    cached: bool = False
