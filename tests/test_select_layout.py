"""Tests for layout selection, fallback and rule enforcement."""

import json

import pytest

from app.chains.select_layout import (
    enforce_layout_rules,
    get_fallback_layout,
    select_layout,
    wants_table,
)
from app.core.block_catalog import BLOCKS, MAX_BLOCKS, hero_mappings
from app.core.schemas_content import ContentResult
from app.core.schemas_layout import LayoutBlock
from tests.fakes.fake_services import FakeTextModel
from tests.fixtures_pages import (
    FAST_POLICY,
    LAYOUT_MODEL,
    PRODUCT_CONTENT,
    PRODUCT_LAYOUT,
    RECIPE_CONTENT,
    content_result,
)


def atoms_of(*payloads: dict) -> list:
    return ContentResult.model_validate({"content_atoms": list(payloads)}).content_atoms


def names(blocks: list[LayoutBlock]) -> list[str]:
    return [b.block_type for b in blocks]


def test_wants_table():
    assert wants_table("A3500 vs E310 specs table")
    assert wants_table("show me a chart")
    assert not wants_table("which blender should I buy")


@pytest.mark.parametrize("payload", [PRODUCT_CONTENT, RECIPE_CONTENT])
def test_fallback_layout_is_valid(payload):
    atoms = content_result(payload).content_atoms

    selection = get_fallback_layout(atoms, payload["content_type"])

    assert selection.source == "fallback"
    assert selection.blocks[0].block_type == "hero-banner"
    assert len(selection.blocks) <= MAX_BLOCKS
    types = {a.type for a in atoms}
    for block in selection.blocks:
        assert BLOCKS[block.block_type].is_satisfied_by(types)


def test_fallback_for_empty_atoms_is_hero_from_metadata():
    selection = get_fallback_layout([], "general")

    assert names(selection.blocks) == ["hero-banner"]
    assert selection.blocks[0].atom_mappings["title"] == "metadata.title"


def test_hero_mappings_fall_back_to_metadata():
    mappings = hero_mappings({"feature_set"})
    assert mappings["title"] == "metadata.title"
    assert mappings["subtitle"] == "metadata.description"


def test_enforce_drops_unknown_and_unsatisfied_blocks():
    atoms = atoms_of({"type": "heading", "text": "Hi"}, {"type": "faq_set", "items": []})
    proposed = [
        LayoutBlock(block_type="hero-banner"),
        LayoutBlock(block_type="carousel"),
        LayoutBlock(block_type="feature-cards"),
        LayoutBlock(block_type="faq-accordion"),
    ]

    assert names(enforce_layout_rules(proposed, atoms)) == ["hero-banner", "faq-accordion"]


def test_enforce_puts_guide_first_and_closers_last():
    atoms = atoms_of(
        {"type": "heading", "text": "Which blender?"},
        {"type": "feature_set", "items": []},
        {"type": "interactive_guide", "picks": []},
        {"type": "cta", "title": "Shop"},
        {"type": "related", "items": []},
    )
    proposed = [
        LayoutBlock(block_type="related-topics"),
        LayoutBlock(block_type="feature-cards"),
        LayoutBlock(block_type="hero-banner"),
    ]

    result = names(enforce_layout_rules(proposed, atoms))

    assert result == [
        "hero-banner",
        "interactive-guide",
        "feature-cards",
        "cta-section",
        "related-topics",
    ]


def test_enforce_swaps_in_comparison_table_on_request():
    atoms = atoms_of({"type": "heading", "text": "x"}, {"type": "comparison", "items": []})
    proposed = [LayoutBlock(block_type="hero-banner"), LayoutBlock(block_type="comparison-cards")]

    result = names(enforce_layout_rules(proposed, atoms, query="A3500 vs E310 comparison table"))

    assert result == ["hero-banner", "comparison-table"]


def test_enforce_inserts_specs_table_for_table_atom():
    atoms = atoms_of({"type": "heading", "text": "x"}, {"type": "table", "headers": ["a"]})

    result = names(enforce_layout_rules([LayoutBlock(block_type="hero-banner")], atoms))

    assert result == ["hero-banner", "specs-table"]


def test_comparison_table_does_not_stand_in_for_table_atom():
    atoms = atoms_of(
        {"type": "heading", "text": "x"},
        {"type": "table", "headers": ["Model", "Watts"], "rows": [["A3500", "1640"]]},
        {"type": "comparison", "items": []},
        {"type": "cta", "title": "c"},
    )
    proposed = [
        LayoutBlock(block_type="hero-banner", atom_mappings={"title": "heading.text"}),
        LayoutBlock(block_type="comparison-table", atom_mappings={"items": "comparison.items"}),
    ]

    result = enforce_layout_rules(proposed, atoms)

    assert names(result) == ["hero-banner", "specs-table", "comparison-table", "cta-section"]
    table_sources = [
        source
        for block in result
        for source in block.atom_mappings.values()
        if source.startswith("table.")
    ]
    assert table_sources


def test_specs_table_with_foreign_mappings_is_repaired():
    atoms = atoms_of({"type": "heading", "text": "x"}, {"type": "table", "headers": ["a"]})
    proposed = [LayoutBlock(block_type="specs-table", atom_mappings={"rows": "heading.text"})]

    result = enforce_layout_rules(proposed, atoms)

    assert names(result) == ["hero-banner", "specs-table"]
    assert result[1].atom_mappings == BLOCKS["specs-table"].default_mappings


def test_enforce_caps_blocks_and_keeps_mandatory():
    atoms = atoms_of(
        {"type": "heading", "text": "x"},
        {"type": "paragraph", "text": "p"},
        {"type": "interactive_guide", "picks": []},
        {"type": "comparison", "items": []},
        {"type": "table", "headers": []},
        {"type": "steps", "items": []},
        {"type": "feature_set", "items": []},
        {"type": "faq_set", "items": []},
        {"type": "list", "items": []},
        {"type": "cta", "title": "c"},
        {"type": "related", "items": []},
    )
    proposed = [
        LayoutBlock(block_type=n)
        for n in (
            "hero-banner",
            "text-section",
            "comparison-cards",
            "step-by-step",
            "feature-cards",
            "faq-accordion",
            "bullet-list",
        )
    ]

    result = names(enforce_layout_rules(proposed, atoms))

    assert len(result) == MAX_BLOCKS
    assert result[0] == "hero-banner"
    assert result[1] == "interactive-guide"
    assert "specs-table" in result
    assert result[-2:] == ["cta-section", "related-topics"]


@pytest.mark.asyncio
async def test_select_layout_uses_model_output():
    result = content_result(PRODUCT_CONTENT)
    model = FakeTextModel({LAYOUT_MODEL: [json.dumps(PRODUCT_LAYOUT)]})

    selection = await select_layout(
        result.content_atoms,
        result.content_type,
        result.metadata,
        model,
        query="Compare Ascent A3500 vs Explorian E310",
        model_name=LAYOUT_MODEL,
        policy=FAST_POLICY,
    )

    assert selection.source == "model"
    assert names(selection.blocks) == [
        "hero-banner",
        "comparison-cards",
        "feature-cards",
        "cta-section",
        "related-topics",
    ]


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "response", ["not json at all", '{"layout_rationale": "x", "blocks": []}', ConnectionError("down")]
)
async def test_select_layout_falls_back_on_bad_model_output(response):
    result = content_result(PRODUCT_CONTENT)
    model = FakeTextModel({LAYOUT_MODEL: [response]})

    selection = await select_layout(
        result.content_atoms,
        result.content_type,
        result.metadata,
        model,
        model_name=LAYOUT_MODEL,
        policy=FAST_POLICY,
    )

    assert selection.source == "fallback"
    assert selection.blocks[0].block_type == "hero-banner"


@pytest.mark.asyncio
async def test_layout_hints_skip_the_model():
    result = content_result(RECIPE_CONTENT)
    model = FakeTextModel()

    selection = await select_layout(
        result.content_atoms,
        result.content_type,
        result.metadata,
        model,
        layout_hints=[{"block_type": "hero-banner"}, {"block_type": "recipe-detail"}],
    )

    assert selection.source == "hints"
    assert names(selection.blocks) == ["hero-banner", "recipe-detail"]
    assert model.calls == []
