"""LLM chain that generates page content atoms from a classified query."""

import json

from pydantic import ValidationError

from app.core.errors import ContentGenerationError, DeadlineExceededError
from app.core.interfaces import GenerativeTextModel
from app.core.llm import parse_llm_json
from app.core.logging import get_logger
from app.core.retry import RetryPolicy, call_remote
from app.core.schemas_content import ContentResult
from app.core.schemas_retrieval import Classification

logger = get_logger(__name__)


# ruff: noqa: E501
SYSTEM_PROMPT = """You are a content generator for a premium blender brand's adaptive website. Each visitor query becomes a page built from typed "content atoms". Create engaging, helpful, accurate content about blenders, recipes, and cooking techniques.

PRODUCT KNOWLEDGE:
- Ascent Series: A2300, A2500, A3300, A3500 (Self-Detect containers, wireless connectivity, touchscreen on A3500)
- Explorian Series: E310, E320 (great value, professional-grade power)
- Propel Series: entry-level, powerful 2.2 HP motor
- Professional Series: 750, 300 (commercial-grade)
- Containers: 64oz standard, 48oz wet/dry, 20oz personal cup

BRAND VOICE: helpful, expert, approachable; whole-food nutrition; versatility and durability.

You MUST output ONLY valid JSON matching this exact schema. No text before or after it.

{
  "content_type": "product|recipe|comparison|guide|support|commercial|general",
  "keywords": ["string"],
  "metadata": {
    "title": "string - page title (max 60 chars)",
    "description": "string - one sentence summary (max 160 chars)",
    "primary_image_prompt": "string - detailed hero image description"
  },
  "content_atoms": [
    {"type": "heading", "level": 1, "text": "string"},
    {"type": "paragraph", "text": "string"},
    {"type": "feature_set", "items": [{"title": "string", "description": "string", "image_prompt": "string", "cta_text": "string"}]},
    {"type": "faq_set", "items": [{"question": "string", "answer": "string"}]},
    {"type": "steps", "items": [{"instruction": "string", "tip": "string|null"}]},
    {"type": "table", "title": "string", "headers": ["string"], "rows": [["string"]]},
    {"type": "comparison", "items": [{"name": "string", "series": "string", "price": "string", "specs": {"key": "value"}, "image_url": "string|null", "image_prompt": "string|null"}]},
    {"type": "cta", "title": "string", "description": "string", "buttons": [{"text": "string", "style": "primary|secondary"}]},
    {"type": "related", "items": [{"title": "string", "description": "string"}]},
    {"type": "list", "style": "bullet|numbered", "items": ["string"]},
    {"type": "interactive_guide", "title": "string", "subtitle": "string", "picks": [{"tab_label": "string", "tab_icon": "string", "product": {"name": "string", "series": "string", "price": "string", "specs": "string", "image_url": "string|null"}}]},
    {"type": "recipe_detail", "name": "string", "description": "string", "total_time": "string", "servings": "string", "difficulty": "string", "ingredients": ["string"], "directions": ["string"], "nutrition": {"calories": "string"}, "image_url": "string - image prompt or null", "related_recipes": [{"name": "string", "image_prompt": "string"}]},
    {"type": "product_detail", "name": "string", "series": "string", "tagline": "string", "price": "string", "highlights": ["string"], "specs": {"key": "value"}, "url": "string|null", "image_url": "string|null", "related_products": [{"name": "string", "image_prompt": "string"}]}
  ],
  "layout_hints": null
}

RULES:
- Only include the atom types that serve the query. Always include one heading, at least one paragraph, a cta and a related atom.
- Comparisons: include a comparison atom listing exactly the products the visitor asked about. Add a table atom when the visitor asks for a table, chart, or specs.
- "Which should I buy" style queries: include an interactive_guide atom with 2-4 picks.
- Recipes: include steps or a recipe_detail atom; image prompts describe appetizing food photography.
- Use product facts, prices and exact image URLs from the REFERENCE DATA when present. Never invent prices.
- Leave "layout_hints" null unless you are certain of the block order."""


def build_user_message(query: str, classification: Classification, context: str) -> str:
    """User turn: query, classification hint, grounding, format reminder."""
    keywords = ", ".join(classification.keywords) or "none"
    parts = [
        f'Generate page content for this query: "{query}"',
        f"Query category: {classification.type} (confidence {classification.confidence:.2f}); keywords: {keywords}",
    ]
    if context:
        parts.append(context)
    parts.append("Remember to respond with ONLY valid JSON matching the schema. No explanations or markdown.")
    return "\n".join(parts)


async def generate_content(
    query: str,
    classification: Classification,
    context: str,
    model: GenerativeTextModel,
    *,
    model_name: str | None = None,
    max_tokens: int | None = None,
    policy: RetryPolicy | None = None,
    timeout: float | None = None,
) -> ContentResult:
    """
    Generate content atoms for a query.

    Args:
        query: Visitor query
        classification: Classification of the query
        context: Grounding context (may be empty)
        model: Text model to call
        model_name: Model override
        max_tokens: Output token cap
        policy: Retry policy for transient transport errors
        timeout: Per-attempt deadline in seconds

    Returns:
        Validated ContentResult

    Raises:
        ContentGenerationError: On model failure, deadline overrun, or any
            output that is not valid JSON matching the schema
    """
    user_message = build_user_message(query, classification, context)

    try:
        raw_output = await call_remote(
            "generate_content",
            lambda: model.complete(
                SYSTEM_PROMPT, user_message, model=model_name, max_tokens=max_tokens
            ),
            policy or RetryPolicy(),
            timeout,
        )
    except DeadlineExceededError as e:
        raise ContentGenerationError(f"Content generation timed out: {e}") from e
    except Exception as e:
        logger.error(f"Content model call failed: {e}")
        raise ContentGenerationError("Content model is unavailable") from e

    if not raw_output or not raw_output.strip():
        raise ContentGenerationError("Content model returned no text")

    try:
        result = parse_llm_json(raw_output, ContentResult)
    except (json.JSONDecodeError, ValueError, ValidationError) as e:
        # Do NOT leak raw model output in exception
        logger.error(f"Content model output failed validation: {type(e).__name__}")
        raise ContentGenerationError("Invalid JSON response from content model") from e

    if not result.content_atoms:
        raise ContentGenerationError("Content model returned no content atoms")

    logger.info(
        f"Generated {len(result.content_atoms)} content atoms",
        extra={"extra_data": {"content_type": result.content_type}},
    )
    return result
