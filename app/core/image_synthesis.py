"""Background synthesis of page images that retrieval could not supply."""

import asyncio
import base64
import logging
import re
from typing import Any

from openai import AsyncOpenAI
from pydantic import ValidationError

from app.core.errors import ImageSynthesisError
from app.core.interfaces import BlobStore, GenerativeImageModel, PageStore
from app.core.logging import get_logger, log_with_context
from app.core.retry import RetryPolicy, call_remote
from app.core.schemas_content import find_atom
from app.core.schemas_images import GeneratedImage, RemainingPrompt
from app.core.schemas_pages import GeneratedPage, ImageStatus

logger = get_logger(__name__)

_BRAND_TERMS = re.compile(r"vitamix|blender", re.IGNORECASE)

FALLBACK_PROMPTS = {
    "hero": (
        "Professional food photography: Fresh colorful fruits and vegetables arranged "
        "beautifully on a clean white marble counter. Bright natural lighting, appetizing "
        "composition. No kitchen appliances."
    ),
    "comparison": (
        "Professional food photography: Fresh healthy smoothie in a glass with colorful "
        "fruits and ingredients around it. Clean white studio background, professional "
        "lighting with soft shadows. No kitchen appliances."
    ),
    "default": (
        "Professional food photography: Fresh healthy ingredients including berries, leafy "
        "greens, and citrus fruits. Clean modern presentation with soft natural lighting. "
        "Appetizing and vibrant colors. No kitchen appliances."
    ),
}

_SIZES = {"16:9": "1536x1024", "4:3": "1536x1024", "1:1": "1024x1024"}


def enhance_prompt(prompt: str, image_type: str) -> str:
    """Wrap a raw prompt in a photography template, minus brand/appliance terms."""
    cleaned = " ".join(_BRAND_TERMS.sub("", prompt).split())
    if image_type == "comparison":
        return (
            f"Professional product photography: {cleaned}. Clean white or light gray studio "
            "background, professional lighting with soft shadows, high-resolution shot. "
            "Modern, premium feel. No text, watermarks, or kitchen appliances."
        )
    return (
        f"Professional food photography: {cleaned}. High-quality, appetizing composition with "
        "beautiful lighting. Fresh ingredients, vibrant colors, clean modern presentation. "
        "Shallow depth of field. Do not include any kitchen appliances."
    )


def aspect_ratio_for(image_type: str) -> str:
    return "16:9" if image_type == "hero" else "4:3"


def blob_key(page_id: str, image_type: str, index: int | None, ext: str = "png") -> str:
    suffix = f"-{index}" if index is not None else ""
    return f"{page_id}/{image_type}{suffix}.{ext}"


def validate_prompts(raw: list[dict[str, Any]]) -> list[RemainingPrompt]:
    """Keep only well-formed prompt entries."""
    valid: list[RemainingPrompt] = []
    for entry in raw:
        try:
            prompt = RemainingPrompt.model_validate(entry)
        except ValidationError:
            continue
        if prompt.prompt.strip():
            valid.append(prompt)
    return valid


class OpenAIImageModel:
    """GenerativeImageModel backed by the OpenAI Images API."""

    def __init__(self, client: AsyncOpenAI, model: str = "gpt-image-1"):
        self.client = client
        self.model = model

    @classmethod
    def from_settings(cls, settings) -> "OpenAIImageModel":
        return cls(AsyncOpenAI(api_key=settings.OPENAI_API_KEY, max_retries=0), settings.IMAGE_MODEL)

    async def generate(self, prompt: str, aspect_ratio: str) -> bytes:
        response = await self.client.images.generate(
            model=self.model,
            prompt=prompt,
            size=_SIZES.get(aspect_ratio, "1024x1024"),
            n=1,
        )
        if not response.data or not response.data[0].b64_json:
            raise ImageSynthesisError("No image in model response")
        return base64.b64decode(response.data[0].b64_json)

    async def close(self) -> None:
        await self.client.close()


class ImageSynthesizer:
    """Generates images for remaining prompts and stores them as blobs."""

    def __init__(
        self,
        model: GenerativeImageModel,
        blobs: BlobStore,
        policy: RetryPolicy | None = None,
        timeout: float | None = 120.0,
    ):
        self.model = model
        self.blobs = blobs
        self.policy = policy or RetryPolicy()
        self.timeout = timeout

    async def _render(self, page_id: str, prompt: RemainingPrompt, text: str) -> str:
        data = await call_remote(
            "generate_image",
            lambda: self.model.generate(text, aspect_ratio_for(prompt.type)),
            self.policy,
            self.timeout,
        )
        return await self.blobs.put(
            blob_key(page_id, prompt.type, prompt.index), data, "image/png"
        )

    async def _one(self, page_id: str, prompt: RemainingPrompt) -> GeneratedImage:
        try:
            url = await self._render(page_id, prompt, enhance_prompt(prompt.prompt, prompt.type))
            return GeneratedImage(type=prompt.type, index=prompt.index, url=url)
        except Exception as e:
            logger.warning(f"Image {prompt.type}[{prompt.index}] failed, trying fallback: {e}")

        fallback = FALLBACK_PROMPTS.get(prompt.type, FALLBACK_PROMPTS["default"])
        try:
            url = await self._render(page_id, prompt, fallback)
            return GeneratedImage(type=prompt.type, index=prompt.index, url=url)
        except Exception as e:
            logger.error(f"Fallback image {prompt.type}[{prompt.index}] failed: {e}")
            return GeneratedImage(type=prompt.type, index=prompt.index, error=str(e))

    async def synthesize(self, page_id: str, prompts: list[RemainingPrompt]) -> list[GeneratedImage]:
        """
        Generate all prompts concurrently.

        Args:
            page_id: Page the images belong to (blob key prefix)
            prompts: Remaining prompts

        Returns:
            One GeneratedImage per prompt, in prompt order; failures carry `error`
        """
        if not prompts:
            return []
        return list(await asyncio.gather(*(self._one(page_id, p) for p in prompts)))


def apply_generated_images(page: GeneratedPage, images: list[GeneratedImage]) -> GeneratedPage:
    """Copy of the page with generated image URLs written to their slots."""
    result = page.model_copy(deep=True)
    atoms = result.content_atoms

    def item_at(items: list, index: int | None):
        if index is None or index < 0 or index >= len(items):
            return None
        return items[index]

    for image in images:
        if not image.ok:
            continue
        if image.type == "hero":
            result.metadata.image_url = image.url
            continue

        target = None
        if image.type == "feature":
            atom = find_atom(atoms, "feature_set")
            target = item_at(atom.items, image.index) if atom else None
        elif image.type == "comparison":
            atom = find_atom(atoms, "comparison")
            target = item_at(atom.items, image.index) if atom else None
        elif image.type == "guide_product":
            atom = find_atom(atoms, "interactive_guide")
            pick = item_at(atom.picks, image.index) if atom else None
            target = pick.product if pick else None
        elif image.type == "recipe":
            target = find_atom(atoms, "recipe_detail")
        elif image.type == "product":
            target = find_atom(atoms, "product_detail")
        elif image.type == "related_recipe":
            atom = find_atom(atoms, "recipe_detail")
            target = item_at(atom.related_recipes, image.index) if atom else None
        elif image.type == "related_product":
            atom = find_atom(atoms, "product_detail")
            target = item_at(atom.related_products, image.index) if atom else None

        if target is None:
            logger.warning(f"No slot for generated image {image.type}[{image.index}]")
            continue
        target.image_url = image.url

    return result


def image_update_fields(page: GeneratedPage) -> dict[str, Any]:
    """The page fields an image backfill may change."""
    dumped = page.model_dump(mode="json", include={"metadata", "content_atoms"})
    dumped["images_ready"] = page.images_ready
    dumped["image_status"] = page.image_status.value
    return dumped


async def run_image_backfill(
    page_id: str,
    prompts: list[RemainingPrompt],
    synthesizer: ImageSynthesizer,
    pages: PageStore,
    max_attempts: int = 2,
) -> ImageStatus:
    """
    Synthesize a page's remaining images and write them back.

    Each attempt retries only the prompts still missing. When every prompt
    has an image the page becomes images_ready; when the attempt budget is
    spent the page is marked image_status=failed and left as is.

    Args:
        page_id: Persisted page id
        prompts: Remaining prompts for the page
        synthesizer: Image synthesizer
        pages: Page store
        max_attempts: Attempt budget

    Returns:
        Terminal image status of the page
    """
    pending = list(prompts)
    attempt = 0

    while pending and attempt < max(1, max_attempts):
        attempt += 1
        try:
            results = await synthesizer.synthesize(page_id, pending)
        except Exception as e:
            logger.error(f"Image synthesis attempt {attempt} crashed for page {page_id}: {e}")
            continue

        done = [r for r in results if r.ok]
        pending = [p for p, r in zip(pending, results) if not r.ok]
        if not done:
            continue

        page = await pages.get(page_id)
        if page is None:
            logger.warning(f"Page {page_id} vanished during image synthesis")
            return ImageStatus.FAILED
        page = apply_generated_images(page, done)
        if not pending:
            page.images_ready = True
            page.image_status = ImageStatus.READY
        await pages.update(page_id, image_update_fields(page))

    if not pending:
        log_with_context(logger, logging.INFO, "Image synthesis complete", page_id=page_id, attempts=attempt)
        return ImageStatus.READY

    log_with_context(
        logger,
        logging.ERROR,
        "Image synthesis gave up",
        page_id=page_id,
        attempts=attempt,
        missing=len(pending),
    )
    try:
        await pages.update(page_id, {"image_status": ImageStatus.FAILED.value})
    except Exception as e:
        logger.error(f"Failed to mark page {page_id} image status: {e}")
    return ImageStatus.FAILED
