"""Catalog of presentation blocks the layout selector may choose from."""

from dataclasses import dataclass, field

MAX_BLOCKS = 8


@dataclass(frozen=True)
class BlockSpec:
    """A layout block and the atom it needs to render."""

    name: str
    required_atom: str | None
    priority: int
    description: str
    default_mappings: dict[str, str] = field(default_factory=dict)

    def is_satisfied_by(self, atom_types: set[str]) -> bool:
        return self.required_atom is None or self.required_atom in atom_types


BLOCKS: dict[str, BlockSpec] = {
    spec.name: spec
    for spec in (
        BlockSpec(
            "hero-banner",
            None,
            100,
            "Full-width hero section with title, subtitle, and optional image. "
            "Renders from the first heading, or the page title when there is none",
            {
                "title": "heading.text",
                "subtitle": "paragraph.text",
                "image": "metadata.primary_image_prompt",
            },
        ),
        BlockSpec(
            "interactive-guide",
            "interactive_guide",
            95,
            "Tab-based selection guide with 2-4 curated product picks organized by intent "
            "(e.g. Best Value, High-Tech), each with specs and actions",
            {
                "title": "interactive_guide.title",
                "subtitle": "interactive_guide.subtitle",
                "picks": "interactive_guide.picks",
            },
        ),
        BlockSpec(
            "comparison-cards",
            "comparison",
            95,
            "Interactive card grid with product images and prices; best for browsing "
            "and comparing 3+ products",
            {"items": "comparison.items"},
        ),
        BlockSpec(
            "recipe-detail",
            "recipe_detail",
            92,
            "Full recipe card: image, timing, servings, ingredients, directions, nutrition",
            {"recipe": "recipe_detail"},
        ),
        BlockSpec(
            "product-detail",
            "product_detail",
            92,
            "Single product showcase: image, price, highlights, specs, related products",
            {"product": "product_detail"},
        ),
        BlockSpec(
            "specs-table",
            "table",
            90,
            "Structured specification table",
            {"title": "table.title", "headers": "table.headers", "rows": "table.rows"},
        ),
        BlockSpec(
            "step-by-step",
            "steps",
            90,
            "Numbered step-by-step instructions with optional tips",
            {"items": "steps.items"},
        ),
        BlockSpec(
            "feature-cards",
            "feature_set",
            80,
            "Grid of feature cards with images, titles, and descriptions",
            {"items": "feature_set.items"},
        ),
        BlockSpec(
            "text-section",
            "paragraph",
            75,
            "Large text section for detailed explanations",
            {"paragraphs": "paragraph"},
        ),
        BlockSpec(
            "comparison-table",
            "comparison",
            70,
            "Horizontal table for quick spec comparison of 2-3 products",
            {"items": "comparison.items"},
        ),
        BlockSpec(
            "faq-accordion",
            "faq_set",
            70,
            "Expandable FAQ section",
            {"items": "faq_set.items"},
        ),
        BlockSpec(
            "bullet-list",
            "list",
            65,
            "Bulleted or numbered list of key points",
            {"items": "list.items", "style": "list.style"},
        ),
        BlockSpec(
            "cta-section",
            "cta",
            60,
            "Call-to-action with headline, description, and buttons",
            {"title": "cta.title", "description": "cta.description", "buttons": "cta.buttons"},
        ),
        BlockSpec(
            "related-topics",
            "related",
            50,
            "Grid of related topic cards for continued exploration",
            {"items": "related.items"},
        ),
    )
}

HERO = "hero-banner"
CLOSING_BLOCKS: tuple[str, ...] = ("cta-section", "related-topics")

HERO_TITLE_FALLBACK = "metadata.title"


def hero_mappings(atom_types: set[str]) -> dict[str, str]:
    """Hero slots, pointing at metadata when the atom set has no heading."""
    mappings = dict(BLOCKS[HERO].default_mappings)
    if "heading" not in atom_types:
        mappings["title"] = HERO_TITLE_FALLBACK
    if "paragraph" not in atom_types:
        mappings["subtitle"] = "metadata.description"
    return mappings


def describe_catalog() -> str:
    """One line per block, for the layout model prompt."""
    lines = []
    for spec in sorted(BLOCKS.values(), key=lambda s: -s.priority):
        needs = spec.required_atom or "nothing"
        lines.append(f"- {spec.name} (requires: {needs}, priority {spec.priority}): {spec.description}")
    return "\n".join(lines)
