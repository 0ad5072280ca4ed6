"""Hybrid image resolution: reuse indexed photos where accurate, generate the rest.

Product imagery prefers retrieval (a generated blender is a wrong blender),
recipe imagery prefers generation, and whatever retrieval cannot resolve is
returned as a list of prompts for the background image synthesizer.
"""

import asyncio
import re
from collections.abc import Awaitable
from dataclasses import dataclass, field

from app.core.image_search import ImageSearcher
from app.core.logging import get_logger
from app.core.schemas_content import ContentAtom, PageMetadata, find_atom
from app.core.schemas_images import ImageMatch, ImageMatches, ImageStrategy, RemainingPrompt
from app.core.schemas_pages import GeneratedPage, ImageStatus
from app.core.schemas_retrieval import Classification

logger = get_logger(__name__)

HERO_THRESHOLD = 0.6
FEATURE_THRESHOLD = 0.55
PRODUCT_THRESHOLD = 0.4
RECIPE_THRESHOLD = 0.55
PRODUCT_CANDIDATES = 3

_LOOSE_MODEL_CODE = re.compile(r"([AaEe]?\d{3,4})")


def _is_url(value: str | None) -> bool:
    return bool(value) and value.startswith("http")


def determine_image_strategy(
    classification: Classification,
    atoms: list[ContentAtom] | None = None,
    metadata: PageMetadata | None = None,
) -> ImageStrategy:
    """
    Decide, per image role, whether to retrieve or generate.

    Args:
        classification: Query classification
        atoms: Content atoms (unused by the current rules)
        metadata: Page metadata (unused by the current rules)

    Returns:
        ImageStrategy for the page
    """
    strategy = ImageStrategy()

    if classification.type == "product" or classification.needs_product_images:
        strategy.hero = "rag_or_generate"
        strategy.features = "rag_or_generate"

    if classification.type == "recipe" or classification.needs_recipe_images:
        strategy.hero = "generate"
        strategy.recipes = "generate"
        strategy.features = "generate"

    if classification.type in ("blog", "general"):
        strategy.hero = "generate"
        strategy.features = "generate"

    return strategy


def product_search_query(name: str, series: str | None) -> tuple[str, str | None]:
    """Search text for a product plus the model code used for exact preference."""
    match = _LOOSE_MODEL_CODE.search(name or "")
    model_code = match.group(1).upper() if match else None
    if model_code and series:
        return f"{model_code} {series}", model_code
    if model_code:
        return model_code, model_code
    return name or "", None


def pick_best(
    candidates: list[ImageMatch], threshold: float, model_code: str | None = None
) -> ImageMatch | None:
    """
    Best candidate at or above threshold.

    An exact model-code substring in the alt text beats raw similarity rank.
    """
    eligible = [c for c in candidates if c.score >= threshold]
    if not eligible:
        return None
    if model_code and len(eligible) > 1:
        for candidate in eligible:
            if candidate.alt and model_code in candidate.alt.upper():
                return candidate
    return eligible[0]


@dataclass
class ImageResolution:
    page: GeneratedPage
    strategy: ImageStrategy
    matches: ImageMatches
    remaining_prompts: list[RemainingPrompt] = field(default_factory=list)


class HybridImageResolver:
    """Finds reusable images for a page and lists what still needs generating."""

    def __init__(self, searcher: ImageSearcher | None):
        self.searcher = searcher

    async def _search_one(
        self,
        query: str,
        *,
        limit: int,
        threshold: float,
        image_type: str | None = None,
        model_code: str | None = None,
    ) -> ImageMatch | None:
        if not query or self.searcher is None:
            return None
        try:
            results = await self.searcher.search(
                query, limit=limit, threshold=threshold, image_type=image_type
            )
        except Exception as e:
            logger.warning(f"Image search failed for '{query[:40]}': {e}")
            return None
        return pick_best(results, threshold, model_code)

    def _product_search(self, name: str, series: str | None) -> Awaitable[ImageMatch | None]:
        query, model_code = product_search_query(name, series)
        return self._search_one(
            query, limit=PRODUCT_CANDIDATES, threshold=PRODUCT_THRESHOLD, model_code=model_code
        )

    async def find_matching_images(
        self,
        atoms: list[ContentAtom],
        metadata: PageMetadata,
        classification: Classification,
        strategy: ImageStrategy | None = None,
    ) -> ImageMatches:
        """
        Search for images for every retrieval-eligible role.

        All per-item searches within a role run concurrently; results are
        placed back by item index, so completion order never affects output.

        Args:
            atoms: Content atoms
            metadata: Page metadata (hero search uses the title)
            classification: Query classification
            strategy: Precomputed strategy; derived when omitted

        Returns:
            ImageMatches aligned with the atoms' item lists
        """
        strategy = strategy or determine_image_strategy(classification, atoms, metadata)
        matches = ImageMatches()
        if self.searcher is None:
            return matches

        async def none() -> None:
            return None

        async def gather_list(calls: list[Awaitable[ImageMatch | None]]) -> list[ImageMatch | None]:
            return list(await asyncio.gather(*calls)) if calls else []

        hero_call: Awaitable[ImageMatch | None] | None = None
        if metadata.title and classification.type != "recipe" and strategy.uses_retrieval("hero"):
            hero_call = self._search_one(metadata.title, limit=1, threshold=HERO_THRESHOLD)

        feature_calls: list[Awaitable[ImageMatch | None]] = []
        features = find_atom(atoms, "feature_set")
        if features is not None and strategy.uses_retrieval("features"):
            feature_calls = [
                self._search_one(
                    item.title or item.description, limit=1, threshold=FEATURE_THRESHOLD
                )
                for item in features.items
            ]

        comparison_calls: list[Awaitable[ImageMatch | None]] = []
        comparison = find_atom(atoms, "comparison")
        if comparison is not None and strategy.uses_retrieval("comparison"):
            comparison_calls = [
                self._product_search(item.name, item.series) for item in comparison.items
            ]

        guide_calls: list[Awaitable[ImageMatch | None]] = []
        guide = find_atom(atoms, "interactive_guide")
        if guide is not None and strategy.uses_retrieval("guide"):
            guide_calls = [
                self._product_search(pick.product.name or pick.tab_label, pick.product.series)
                for pick in guide.picks
            ]

        recipe_call: Awaitable[ImageMatch | None] | None = None
        recipe = find_atom(atoms, "recipe_detail")
        if recipe is not None and recipe.name and strategy.uses_retrieval("recipes"):
            recipe_call = self._search_one(
                recipe.name, limit=1, threshold=RECIPE_THRESHOLD, image_type="recipe"
            )

        product_call: Awaitable[ImageMatch | None] | None = None
        product = find_atom(atoms, "product_detail")
        if product is not None and product.name and strategy.uses_retrieval("products"):
            product_call = self._product_search(product.name, product.series)

        (
            matches.hero,
            matches.features,
            matches.comparison,
            matches.guide,
            matches.recipe,
            matches.product,
        ) = await asyncio.gather(
            hero_call or none(),
            gather_list(feature_calls),
            gather_list(comparison_calls),
            gather_list(guide_calls),
            recipe_call or none(),
            product_call or none(),
        )

        logger.info(f"Image search found {matches.count()} reusable images")
        return matches

    async def resolve(self, page: GeneratedPage, classification: Classification) -> ImageResolution:
        """Search and apply in one step."""
        strategy = determine_image_strategy(classification, page.content_atoms, page.metadata)
        matches = await self.find_matching_images(
            page.content_atoms, page.metadata, classification, strategy
        )
        resolved, remaining = apply_matched_images(page, matches, strategy)
        return ImageResolution(
            page=resolved, strategy=strategy, matches=matches, remaining_prompts=remaining
        )


def apply_matched_images(
    page: GeneratedPage, matches: ImageMatches, strategy: ImageStrategy
) -> tuple[GeneratedPage, list[RemainingPrompt]]:
    """
    Write matched image URLs into a copy of the page and list what is left.

    Only image_url fields change; atom structure and order are untouched.

    Args:
        page: Page to update (not modified)
        matches: Search results from find_matching_images
        strategy: Per-role strategy

    Returns:
        (updated page, remaining prompts for synthesis)
    """
    result = page.model_copy(deep=True)
    metadata = result.metadata
    remaining: list[RemainingPrompt] = []

    for atom in result.content_atoms:
        if atom.type == "feature_set":
            use = strategy.uses_retrieval("features")
            for i, item in enumerate(atom.items):
                match = matches.features[i] if i < len(matches.features) else None
                if match and use:
                    item.image_url = match.url
                elif item.image_prompt and not _is_url(item.image_url):
                    remaining.append(RemainingPrompt(type="feature", index=i, prompt=item.image_prompt))

        elif atom.type == "comparison":
            use = strategy.uses_retrieval("comparison")
            for i, item in enumerate(atom.items):
                match = matches.comparison[i] if i < len(matches.comparison) else None
                if match and use:
                    item.image_url = match.url
                elif item.image_prompt and not _is_url(item.image_url):
                    remaining.append(
                        RemainingPrompt(type="comparison", index=i, prompt=item.image_prompt)
                    )

        elif atom.type == "interactive_guide":
            use = strategy.uses_retrieval("guide")
            for i, pick in enumerate(atom.picks):
                match = matches.guide[i] if i < len(matches.guide) else None
                if match and use:
                    pick.product.image_url = match.url
                elif pick.product.image_url and not _is_url(pick.product.image_url):
                    # The model writes a prompt here when it has no real URL
                    remaining.append(
                        RemainingPrompt(type="guide_product", index=i, prompt=pick.product.image_url)
                    )

        elif atom.type == "recipe_detail":
            if strategy.recipes == "generate":
                prompt = atom.image_url if atom.image_url and not _is_url(atom.image_url) else None
                prompt = prompt or metadata.primary_image_prompt
                if prompt:
                    remaining.append(RemainingPrompt(type="recipe", prompt=prompt))
            elif matches.recipe:
                atom.image_url = matches.recipe.url
                metadata.image_url = matches.recipe.url
            elif atom.image_url and not _is_url(atom.image_url):
                remaining.append(RemainingPrompt(type="recipe", prompt=atom.image_url))
            for i, related in enumerate(atom.related_recipes):
                if related.image_prompt and not _is_url(related.image_url):
                    remaining.append(
                        RemainingPrompt(type="related_recipe", index=i, prompt=related.image_prompt)
                    )

        elif atom.type == "product_detail":
            if matches.product and strategy.uses_retrieval("products"):
                atom.image_url = matches.product.url
                metadata.image_url = matches.product.url
            elif atom.image_url and not _is_url(atom.image_url):
                remaining.append(RemainingPrompt(type="product", prompt=atom.image_url))
            for i, related in enumerate(atom.related_products):
                if related.image_prompt and not _is_url(related.image_url):
                    remaining.append(
                        RemainingPrompt(type="related_product", index=i, prompt=related.image_prompt)
                    )

    if matches.hero and strategy.uses_retrieval("hero"):
        metadata.image_url = matches.hero.url
    elif metadata.primary_image_prompt and not _is_url(metadata.image_url):
        remaining.insert(0, RemainingPrompt(type="hero", prompt=metadata.primary_image_prompt))

    result.images_ready = not remaining
    result.image_status = ImageStatus.READY if result.images_ready else ImageStatus.PENDING
    return result, remaining


def collect_image_prompts(page: GeneratedPage, strategy: ImageStrategy) -> list[RemainingPrompt]:
    """All prompts a page needs when no images can be retrieved."""
    _, remaining = apply_matched_images(page, ImageMatches(), strategy)
    return remaining
