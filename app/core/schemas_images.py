"""Pydantic schemas for hybrid image resolution."""

from typing import Literal

from pydantic import BaseModel, Field

ImageSource = Literal["generate", "rag", "rag_or_generate"]

PromptType = Literal[
    "hero",
    "feature",
    "comparison",
    "guide_product",
    "recipe",
    "product",
    "related_recipe",
    "related_product",
]


class ImageMatch(BaseModel):
    """An indexed image that matched a search."""

    id: str
    url: str
    alt: str | None = None
    type: str | None = None
    context: str | None = None
    source_title: str | None = None
    score: float = Field(..., ge=0.0, le=1.0)


class ImageStrategy(BaseModel):
    """Where each image-bearing role gets its image from."""

    hero: ImageSource = "generate"
    features: ImageSource = "generate"
    products: ImageSource = "rag"
    recipes: ImageSource = "rag"
    comparison: ImageSource = "rag"
    guide: ImageSource = "rag"

    def uses_retrieval(self, role: str) -> bool:
        return getattr(self, role) in ("rag", "rag_or_generate")


class ImageMatches(BaseModel):
    """Search results per role; list entries stay aligned with item indices."""

    hero: ImageMatch | None = None
    features: list[ImageMatch | None] = Field(default_factory=list)
    comparison: list[ImageMatch | None] = Field(default_factory=list)
    guide: list[ImageMatch | None] = Field(default_factory=list)
    recipe: ImageMatch | None = None
    product: ImageMatch | None = None

    def has_any(self) -> bool:
        return bool(
            self.hero
            or self.recipe
            or self.product
            or any(self.features)
            or any(self.comparison)
            or any(self.guide)
        )

    def count(self) -> int:
        singles = sum(1 for m in (self.hero, self.recipe, self.product) if m)
        lists = sum(1 for m in [*self.features, *self.comparison, *self.guide] if m)
        return singles + lists


class RemainingPrompt(BaseModel):
    """An image that still has to be synthesized."""

    type: PromptType
    index: int | None = None
    prompt: str


class GeneratedImage(BaseModel):
    """Outcome of synthesizing one remaining prompt."""

    type: PromptType
    index: int | None = None
    url: str | None = None
    error: str | None = None

    @property
    def ok(self) -> bool:
        return bool(self.url)

