"""Pydantic schemas for layout selection."""

from typing import Literal

from pydantic import BaseModel, ConfigDict, Field


class LayoutBlock(BaseModel):
    """A presentation block plus its slot-to-atom-path mapping."""

    block_type: str
    atom_mappings: dict[str, str] = Field(default_factory=dict)


class LayoutSelection(BaseModel):
    blocks: list[LayoutBlock] = Field(default_factory=list)
    rationale: str = ""
    source: Literal["model", "hints", "fallback"] = "fallback"


class LayoutModelOutput(BaseModel):
    """Raw JSON the layout model is asked to return."""

    model_config = ConfigDict(extra="ignore")

    layout_rationale: str = ""
    blocks: list[LayoutBlock] = Field(default_factory=list)
