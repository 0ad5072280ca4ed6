"""Select an ordered list of layout blocks for a page's content atoms.

The model proposes a layout; a deterministic rule pass then repairs it so
every page starts with the hero, renders mandatory atoms, and closes with
the call-to-action and related topics. When the model is unavailable or its
output is unusable the same rules build a layout from scratch.
"""

import json
import re

from pydantic import ValidationError

from app.core.block_catalog import (
    BLOCKS,
    CLOSING_BLOCKS,
    HERO,
    MAX_BLOCKS,
    describe_catalog,
    hero_mappings,
)
from app.core.errors import LayoutSelectionError
from app.core.interfaces import GenerativeTextModel
from app.core.llm import parse_llm_json
from app.core.logging import get_logger
from app.core.retry import RetryPolicy, call_remote
from app.core.schemas_content import ContentAtom, PageMetadata, atom_types, count_atoms
from app.core.schemas_layout import LayoutBlock, LayoutModelOutput, LayoutSelection

logger = get_logger(__name__)

_TABLE_REQUEST = re.compile(r"\b(table|chart|specs?|specifications?)\b", re.IGNORECASE)


# ruff: noqa: E501
LAYOUT_SYSTEM_PROMPT = f"""You are a layout selector for adaptive web pages. Analyze the content atoms and select the optimal sequence of blocks to display them.

AVAILABLE BLOCKS:
{describe_catalog()}

LAYOUT RULES:
1. Always start with 'hero-banner' for the main heading.
2. CRITICAL: if an 'interactive_guide' atom is present you MUST include 'interactive-guide' immediately after 'hero-banner'.
3. Place the most important content early.
4. End with 'cta-section' followed by 'related-topics'.
5. Recipes: include 'step-by-step' or 'recipe-detail' before the CTA.
6. When a 'table' atom is present ALWAYS include 'specs-table' to render it ('comparison-table' only renders comparison atoms).
7. Comparisons: prefer 'comparison-cards' for browsing, 'comparison-table' when the visitor asks for a table, chart, or specs.
8. Use 'text-section' when there are multiple paragraphs.
9. Include 'feature-cards' for feature_set atoms and 'faq-accordion' for faq_set atoms.
10. Never select a block whose required atom is missing.
11. Maximum {MAX_BLOCKS} blocks.

RESPONSE FORMAT - respond with ONLY valid JSON:
{{
  "layout_rationale": "Brief explanation",
  "blocks": [
    {{"block_type": "hero-banner", "atom_mappings": {{"title": "heading.text", "subtitle": "paragraph.text", "image": "metadata.primary_image_prompt"}}}}
  ]
}}

atom_mappings map block slots to atom paths such as heading.text, paragraph.text, feature_set.items, faq_set.items, steps.items, table.headers, table.rows, table.title, comparison.items, cta.title, cta.description, cta.buttons, related.items, list.items, list.style, interactive_guide.picks, recipe_detail, product_detail, metadata.title, metadata.primary_image_prompt."""


def wants_table(query: str) -> bool:
    return bool(query and _TABLE_REQUEST.search(query))


def summarize_atoms(atoms: list[ContentAtom]) -> str:
    """Human-readable digest of the atoms for the layout prompt."""
    lines = []
    for atom in atoms:
        t = atom.type
        if t == "heading":
            lines.append(f'- heading (level {atom.level}): "{atom.text[:50]}"')
        elif t == "paragraph":
            lines.append(f'- paragraph: "{atom.text[:80]}"')
        elif t == "table":
            lines.append(f'- table: "{atom.title or ""}" with {len(atom.rows)} rows')
        elif t == "cta":
            lines.append(f'- cta: "{atom.title}"')
        elif t == "list":
            lines.append(f"- list ({atom.style}): {len(atom.items)} items")
        elif t == "interactive_guide":
            lines.append(
                f'- interactive_guide: "{atom.title or ""}" with {len(atom.picks)} picks '
                "(MANDATORY interactive-guide block)"
            )
        elif t in ("recipe_detail", "product_detail"):
            lines.append(f'- {t}: "{atom.name}"')
        else:
            lines.append(f"- {t}: {len(getattr(atom, 'items', []))} items")
    return "\n".join(lines)


def _block(name: str, types: set[str]) -> LayoutBlock:
    if name == HERO:
        return LayoutBlock(block_type=HERO, atom_mappings=hero_mappings(types))
    return LayoutBlock(block_type=name, atom_mappings=dict(BLOCKS[name].default_mappings))


def _renders(block: LayoutBlock, atom_type: str) -> bool:
    """Whether any of the block's slots reads from the given atom type."""
    return any(source.split(".", 1)[0] == atom_type for source in block.atom_mappings.values())


def _index_of(blocks: list[LayoutBlock], name: str) -> int:
    for i, block in enumerate(blocks):
        if block.block_type == name:
            return i
    return -1


def enforce_layout_rules(
    blocks: list[LayoutBlock], atoms: list[ContentAtom], query: str = ""
) -> list[LayoutBlock]:
    """
    Repair a candidate block list so it satisfies the structural rules.

    Unknown blocks and blocks whose required atom is absent are dropped,
    mandatory blocks are inserted at their fixed positions, and the list is
    capped at MAX_BLOCKS without dropping mandatory blocks.

    Args:
        blocks: Candidate blocks, in proposed order
        atoms: The page's content atoms
        query: Visitor query (table/chart/spec requests)

    Returns:
        A new, valid block list starting with the hero
    """
    types = atom_types(atoms)

    seen: set[str] = set()
    body: list[LayoutBlock] = []
    for block in blocks:
        spec = BLOCKS.get(block.block_type)
        if spec is None or not spec.is_satisfied_by(types) or block.block_type in seen:
            continue
        seen.add(block.block_type)
        if block.block_type in (HERO, *CLOSING_BLOCKS):
            continue
        mappings = block.atom_mappings or dict(spec.default_mappings)
        body.append(LayoutBlock(block_type=block.block_type, atom_mappings=mappings))

    mandatory: set[str] = set()

    if "interactive_guide" in types:
        i = _index_of(body, "interactive-guide")
        guide = body.pop(i) if i >= 0 else _block("interactive-guide", types)
        body.insert(0, guide)
        mandatory.add("interactive-guide")

    after_lead = 1 if "interactive_guide" in types else 0

    if "comparison" in types and wants_table(query) and _index_of(body, "comparison-table") < 0:
        i = _index_of(body, "comparison-cards")
        if i >= 0:
            body[i] = _block("comparison-table", types)
        else:
            body.insert(after_lead, _block("comparison-table", types))

    if "table" in types:
        if not any(_renders(b, "table") for b in body):
            i = _index_of(body, "specs-table")
            if i >= 0:
                body[i] = _block("specs-table", types)
            else:
                body.insert(after_lead, _block("specs-table", types))
        mandatory.update(b.block_type for b in body if _renders(b, "table"))
    if "comparison" in types and wants_table(query):
        mandatory.add("comparison-table")

    closers = [_block(name, types) for name in CLOSING_BLOCKS if BLOCKS[name].is_satisfied_by(types)]

    room = MAX_BLOCKS - 1 - len(closers)
    while len(body) > room:
        droppable = [i for i, b in enumerate(body) if b.block_type not in mandatory]
        if not droppable:
            break
        body.pop(droppable[-1])

    hero = next((b for b in blocks if b.block_type == HERO and b.atom_mappings), None)
    if hero is None or "heading" not in types:
        hero = _block(HERO, types)

    return [hero, *body, *closers]


def get_fallback_layout(
    atoms: list[ContentAtom], content_type: str = "general", query: str = ""
) -> LayoutSelection:
    """
    Deterministic rule-based layout.

    Args:
        atoms: The page's content atoms
        content_type: Page content type (rationale only)
        query: Visitor query

    Returns:
        LayoutSelection with source="fallback"
    """
    types = atom_types(atoms)
    names = [HERO]
    if count_atoms(atoms, "paragraph") > 1:
        names.append("text-section")
    names += ["interactive-guide", "recipe-detail", "product-detail"]
    names.append("comparison-table" if wants_table(query) else "comparison-cards")
    names += [
        "specs-table",
        "step-by-step",
        "feature-cards",
        "faq-accordion",
        "bullet-list",
        *CLOSING_BLOCKS,
    ]

    candidates = [_block(n, types) for n in names if BLOCKS[n].is_satisfied_by(types)]
    blocks = enforce_layout_rules(candidates, atoms, query)
    return LayoutSelection(
        blocks=blocks,
        rationale=f"Fallback layout for {content_type} with {len(blocks)} blocks",
        source="fallback",
    )


def _layout_from_hints(
    hints: list[dict], atoms: list[ContentAtom], query: str
) -> LayoutSelection | None:
    try:
        proposed = [LayoutBlock.model_validate(h) for h in hints]
    except ValidationError:
        logger.warning("Ignoring malformed layout hints from content model")
        return None
    if not proposed:
        return None
    return LayoutSelection(
        blocks=enforce_layout_rules(proposed, atoms, query),
        rationale="Layout suggested by content model",
        source="hints",
    )


async def select_layout(
    atoms: list[ContentAtom],
    content_type: str,
    metadata: PageMetadata,
    model: GenerativeTextModel | None,
    *,
    query: str = "",
    layout_hints: list[dict] | None = None,
    model_name: str | None = None,
    max_tokens: int | None = None,
    policy: RetryPolicy | None = None,
    timeout: float | None = None,
) -> LayoutSelection:
    """
    Choose a layout for the atoms. Never raises.

    Args:
        atoms: The page's content atoms
        content_type: Page content type
        metadata: Page metadata (title used in the prompt)
        model: Layout model; None skips straight to the fallback
        query: Visitor query
        layout_hints: Blocks proposed by the content model, used instead of a model call
        model_name: Model override
        max_tokens: Output token cap
        policy: Retry policy
        timeout: Per-attempt deadline in seconds

    Returns:
        A structurally valid LayoutSelection
    """
    if layout_hints:
        selection = _layout_from_hints(layout_hints, atoms, query)
        if selection is not None:
            return selection

    if model is None:
        return get_fallback_layout(atoms, content_type, query)

    user_message = (
        f'Query: "{query}"\n'
        f"Content type: {content_type}\n"
        f"Page title: {metadata.title}\n\n"
        f"CONTENT ATOMS:\n{summarize_atoms(atoms)}\n\n"
        "Select the block layout. Respond with ONLY valid JSON."
    )

    try:
        raw_output = await call_remote(
            "select_layout",
            lambda: model.complete(
                LAYOUT_SYSTEM_PROMPT, user_message, model=model_name, max_tokens=max_tokens
            ),
            policy or RetryPolicy(),
            timeout,
        )
        try:
            output = parse_llm_json(raw_output, LayoutModelOutput)
        except (json.JSONDecodeError, ValueError, ValidationError) as e:
            raise LayoutSelectionError("Layout model returned invalid JSON") from e
        if not output.blocks:
            raise LayoutSelectionError("Layout model returned no blocks")
    except Exception as e:
        logger.warning(f"Layout selection fell back to rules: {e}")
        return get_fallback_layout(atoms, content_type, query)

    blocks = enforce_layout_rules(output.blocks, atoms, query)
    logger.info(f"Selected {len(blocks)} blocks: {', '.join(b.block_type for b in blocks)}")
    return LayoutSelection(
        blocks=blocks,
        rationale=output.layout_rationale or "Layout selected by model",
        source="model",
    )
