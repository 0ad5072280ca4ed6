"""Generative text model client and strict JSON parsing of its output."""

import json
import re
from typing import TypeVar

from anthropic import AsyncAnthropic
from pydantic import BaseModel

from app.core.logging import get_logger

logger = get_logger(__name__)

T = TypeVar("T", bound=BaseModel)


def _strip_llm_fences(raw_output: str) -> str:
    """Strip markdown code fences from LLM output.

    Handles: ```json ... ```, ``` ... ```, leading/trailing whitespace.
    """
    cleaned = raw_output.strip()

    fence_match = re.search(r"```(?:json)?\s*\n?(.*?)```", cleaned, re.DOTALL)
    if fence_match:
        return fence_match.group(1).strip()

    # Unterminated fence
    if cleaned.startswith("```json"):
        cleaned = cleaned[7:]
    elif cleaned.startswith("```"):
        cleaned = cleaned[3:]
    if cleaned.endswith("```"):
        cleaned = cleaned[:-3]
    return cleaned.strip()


def parse_llm_json(raw_output: str, model: type[T]) -> T:
    """
    Parse LLM output as JSON and validate against a Pydantic model.

    Args:
        raw_output: Raw string from LLM response
        model: Pydantic model class to validate against

    Returns:
        Validated Pydantic model instance

    Raises:
        json.JSONDecodeError: If JSON parsing fails after cleanup
        pydantic.ValidationError: If parsed JSON doesn't match schema
    """
    return model.model_validate(parse_llm_json_dict(raw_output))


def parse_llm_json_dict(raw_output: str) -> dict:
    """
    Parse LLM output as a JSON object.

    Raises:
        json.JSONDecodeError: If JSON parsing fails after cleanup
        ValueError: If the JSON is not an object
    """
    parsed = json.loads(_strip_llm_fences(raw_output))
    if not isinstance(parsed, dict):
        raise ValueError(f"Expected a JSON object, got {type(parsed).__name__}")
    return parsed


class AnthropicTextModel:
    """GenerativeTextModel backed by the Anthropic Messages API.

    The system instruction is sent as a cached block so the large fixed
    prompts are billed and processed once per cache window.
    """

    def __init__(
        self,
        client: AsyncAnthropic,
        default_model: str,
        default_max_tokens: int = 4096,
        temperature: float = 0.3,
    ):
        self.client = client
        self.default_model = default_model
        self.default_max_tokens = default_max_tokens
        self.temperature = temperature

    @classmethod
    def from_settings(cls, settings) -> "AnthropicTextModel":
        return cls(
            client=AsyncAnthropic(api_key=settings.ANTHROPIC_API_KEY, max_retries=0),
            default_model=settings.CONTENT_MODEL,
            default_max_tokens=settings.CONTENT_MAX_TOKENS,
        )

    async def complete(
        self,
        system_instruction: str,
        user_message: str,
        *,
        model: str | None = None,
        max_tokens: int | None = None,
    ) -> str:
        response = await self.client.messages.create(
            model=model or self.default_model,
            max_tokens=max_tokens or self.default_max_tokens,
            temperature=self.temperature,
            system=[
                {
                    "type": "text",
                    "text": system_instruction,
                    "cache_control": {"type": "ephemeral"},
                }
            ],
            messages=[{"role": "user", "content": user_message}],
        )

        text_parts = [
            block.text for block in response.content if getattr(block, "type", None) == "text"
        ]
        usage = getattr(response, "usage", None)
        if usage is not None:
            logger.debug(
                f"Model {model or self.default_model} usage: "
                f"in={getattr(usage, 'input_tokens', '?')} "
                f"out={getattr(usage, 'output_tokens', '?')} "
                f"cache_read={getattr(usage, 'cache_read_input_tokens', 0)}"
            )
        return "".join(text_parts)

    async def close(self) -> None:
        await self.client.close()
