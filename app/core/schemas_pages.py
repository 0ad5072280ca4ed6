"""Pydantic schemas for persisted pages and the page API."""

from datetime import datetime, timezone
from enum import Enum
from typing import Any
from uuid import uuid4

from pydantic import BaseModel, Field, model_validator

from app.core.schemas_content import ContentAtom, PageMetadata
from app.core.schemas_images import RemainingPrompt
from app.core.schemas_layout import LayoutBlock


class PageShape(str, Enum):
    """Storage shape of a page, fixed when the page is created."""

    ATOMS = "atoms"
    LEGACY = "legacy"


class ImageStatus(str, Enum):
    READY = "ready"
    PENDING = "pending"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (ImageStatus.READY, ImageStatus.FAILED)


def normalize_query(query: str) -> str:
    """Lowercase, trim and collapse whitespace; the page cache key."""
    return " ".join(str(query).lower().split())


def _now() -> datetime:
    return datetime.now(timezone.utc)


class GeneratedPage(BaseModel):
    """The persisted page aggregate."""

    id: str = Field(default_factory=lambda: str(uuid4()))
    query: str
    normalized_query: str = ""
    content_type: str = "general"
    keywords: list[str] = Field(default_factory=list)
    metadata: PageMetadata = Field(default_factory=PageMetadata)
    content_atoms: list[ContentAtom] = Field(default_factory=list)
    layout_blocks: list[LayoutBlock] = Field(default_factory=list)
    page_shape: PageShape = PageShape.ATOMS
    images_ready: bool = False
    image_status: ImageStatus = ImageStatus.PENDING
    rag_source_ids: list[str] = Field(default_factory=list)
    session_id: str | None = None
    created_at: datetime = Field(default_factory=_now)

    @model_validator(mode="after")
    def _default_normalized(self) -> "GeneratedPage":
        if not self.normalized_query:
            self.normalized_query = normalize_query(self.query)
        return self

    def to_row(self) -> dict[str, Any]:
        """Serialize for the pages table."""
        return self.model_dump(mode="json")


class SearchHistoryEntry(BaseModel):
    id: str | None = None
    session_id: str
    query: str
    page_id: str
    created_at: datetime | None = None


class SuggestedTopic(BaseModel):
    id: str | None = None
    title: str
    description: str | None = None
    query: str
    display_order: int = 0


# =======================
# API request/response models
# =======================


class GeneratePageRequest(BaseModel):
    query: str = Field(..., max_length=500, description="Free-text search query")
    session_id: str | None = Field(default=None, description="Browser session id for history")


class GeneratePageResponse(BaseModel):
    page: GeneratedPage
    cached: bool = False
    remaining_prompts: list[RemainingPrompt] = Field(default_factory=list)


class GenerateImagesRequest(BaseModel):
    page_id: str
    prompts: list[dict[str, Any]] = Field(default_factory=list)


class GenerateImagesResponse(BaseModel):
    page_id: str
    generated: int
    failed: int
    images_ready: bool


class HistoryResponse(BaseModel):
    session_id: str
    entries: list[SearchHistoryEntry]
