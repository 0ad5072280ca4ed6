"""Pydantic schemas for generated page content (content atoms)."""

from typing import Annotated, Any, Literal, Union

from pydantic import BaseModel, BeforeValidator, ConfigDict, Field

Scalar = Union[str, int, float, None]

# null from the model is stored as ""
OptionalText = Annotated[str, BeforeValidator(lambda v: "" if v is None else v)]

# =======================
# Atom sub-items
# =======================


class _Item(BaseModel):
    """Base for atom sub-items; unknown fields are kept for the renderer."""

    model_config = ConfigDict(extra="allow")


class Feature(_Item):
    title: OptionalText = ""
    description: OptionalText = ""
    image_prompt: str | None = None
    image_url: str | None = None
    cta_text: str | None = None


class FAQ(_Item):
    question: str
    answer: OptionalText = ""


class Step(_Item):
    instruction: str
    tip: str | None = None


class Product(_Item):
    """A product in a comparison atom."""

    name: str
    series: str | None = None
    price: Scalar = None
    specs: dict[str, Any] = Field(default_factory=dict)
    image_prompt: str | None = None
    image_url: str | None = None


class CTAButton(_Item):
    text: str
    style: str = "primary"
    url: str | None = None


class RelatedTopic(_Item):
    title: str
    description: OptionalText = ""


class GuideProduct(_Item):
    name: OptionalText = ""
    series: str | None = None
    price: Scalar = None
    specs: Any = None
    image_url: str | None = None


class GuidePick(_Item):
    tab_label: OptionalText = ""
    tab_icon: str | None = None
    product: GuideProduct = Field(default_factory=GuideProduct)


class RelatedRecipe(_Item):
    name: OptionalText = ""
    image_url: str | None = None
    image_prompt: str | None = None


class RelatedProduct(_Item):
    name: OptionalText = ""
    image_url: str | None = None
    image_prompt: str | None = None


# =======================
# Atoms
# =======================


class _Atom(BaseModel):
    model_config = ConfigDict(extra="allow")


class HeadingAtom(_Atom):
    type: Literal["heading"] = "heading"
    level: int = 1
    text: str


class ParagraphAtom(_Atom):
    type: Literal["paragraph"] = "paragraph"
    text: str


class FeatureSetAtom(_Atom):
    type: Literal["feature_set"] = "feature_set"
    items: list[Feature] = Field(default_factory=list)


class FAQSetAtom(_Atom):
    type: Literal["faq_set"] = "faq_set"
    items: list[FAQ] = Field(default_factory=list)


class StepsAtom(_Atom):
    type: Literal["steps"] = "steps"
    items: list[Step] = Field(default_factory=list)


class TableAtom(_Atom):
    type: Literal["table"] = "table"
    title: str | None = None
    headers: list[str] = Field(default_factory=list)
    rows: list[list[Scalar]] = Field(default_factory=list)


class ComparisonAtom(_Atom):
    type: Literal["comparison"] = "comparison"
    items: list[Product] = Field(default_factory=list)


class CTAAtom(_Atom):
    type: Literal["cta"] = "cta"
    title: OptionalText = ""
    description: str | None = None
    buttons: list[CTAButton] = Field(default_factory=list)


class RelatedAtom(_Atom):
    type: Literal["related"] = "related"
    items: list[RelatedTopic] = Field(default_factory=list)


class ListAtom(_Atom):
    type: Literal["list"] = "list"
    style: Literal["bullet", "numbered"] = "bullet"
    items: list[str] = Field(default_factory=list)


class InteractiveGuideAtom(_Atom):
    type: Literal["interactive_guide"] = "interactive_guide"
    title: str | None = None
    subtitle: str | None = None
    picks: list[GuidePick] = Field(default_factory=list)


class RecipeDetailAtom(_Atom):
    type: Literal["recipe_detail"] = "recipe_detail"
    name: str
    description: str | None = None
    image_url: str | None = None
    ingredients: list[Any] = Field(default_factory=list)
    directions: list[Any] = Field(default_factory=list)
    total_time: str | None = None
    servings: Scalar = None
    difficulty: str | None = None
    nutrition: dict[str, Any] | None = None
    related_recipes: list[RelatedRecipe] = Field(default_factory=list)


class ProductDetailAtom(_Atom):
    type: Literal["product_detail"] = "product_detail"
    name: str
    series: str | None = None
    tagline: str | None = None
    description: str | None = None
    price: Scalar = None
    original_price: Scalar = None
    image_url: str | None = None
    url: str | None = None
    warranty: str | None = None
    highlights: list[str] = Field(default_factory=list)
    specs: dict[str, Any] = Field(default_factory=dict)
    related_products: list[RelatedProduct] = Field(default_factory=list)


ContentAtom = Annotated[
    Union[
        HeadingAtom,
        ParagraphAtom,
        FeatureSetAtom,
        FAQSetAtom,
        StepsAtom,
        TableAtom,
        ComparisonAtom,
        CTAAtom,
        RelatedAtom,
        ListAtom,
        InteractiveGuideAtom,
        RecipeDetailAtom,
        ProductDetailAtom,
    ],
    Field(discriminator="type"),
]

ATOM_TYPES: tuple[str, ...] = (
    "heading",
    "paragraph",
    "feature_set",
    "faq_set",
    "steps",
    "table",
    "comparison",
    "cta",
    "related",
    "list",
    "interactive_guide",
    "recipe_detail",
    "product_detail",
)


class PageMetadata(BaseModel):
    """Page-level metadata produced alongside the atoms."""

    model_config = ConfigDict(extra="allow")

    title: OptionalText = ""
    description: str | None = None
    primary_image_prompt: str | None = None
    image_url: str | None = None


class ContentResult(BaseModel):
    """Validated output of the content model."""

    model_config = ConfigDict(extra="ignore")

    content_atoms: list[ContentAtom] = Field(default_factory=list)
    content_type: str = Field(default="general", description="Model's own content type label")
    metadata: PageMetadata = Field(default_factory=PageMetadata)
    keywords: list[str] = Field(default_factory=list)
    layout_hints: list[dict[str, Any]] | None = Field(
        default=None, description="Optional block list the model suggests"
    )


def atom_types(atoms: list[ContentAtom]) -> set[str]:
    """Set of atom type tags present."""
    return {atom.type for atom in atoms}


def find_atom(atoms: list[ContentAtom], atom_type: str):
    """First atom of the given type, or None."""
    for atom in atoms:
        if atom.type == atom_type:
            return atom
    return None


def count_atoms(atoms: list[ContentAtom], atom_type: str) -> int:
    return sum(1 for atom in atoms if atom.type == atom_type)
