"""Tests for content generation and LLM JSON parsing."""

import json
from unittest.mock import AsyncMock, MagicMock

import pytest
from pydantic import ValidationError

from app.chains.generate_content import build_user_message, generate_content
from app.core.errors import ContentGenerationError
from app.core.llm import AnthropicTextModel, parse_llm_json, parse_llm_json_dict
from app.core.query_classifier import classify_query
from app.core.schemas_content import ContentResult, HeadingAtom
from tests.fakes.fake_services import FakeTextModel
from tests.fixtures_pages import CONTENT_MODEL, FAST_POLICY, PRODUCT_CONTENT, PRODUCT_QUERY


async def run(model: FakeTextModel, context: str = "", timeout: float | None = 5.0) -> ContentResult:
    return await generate_content(
        PRODUCT_QUERY,
        classify_query(PRODUCT_QUERY),
        context,
        model,
        model_name=CONTENT_MODEL,
        policy=FAST_POLICY,
        timeout=timeout,
    )


# =======================
# parse_llm_json
# =======================


def test_parse_strips_code_fences():
    raw = '```json\n{"content_atoms": [{"type": "heading", "text": "Hi"}]}\n```'
    result = parse_llm_json(raw, ContentResult)
    assert isinstance(result.content_atoms[0], HeadingAtom)


def test_parse_rejects_non_object():
    with pytest.raises(ValueError):
        parse_llm_json_dict("[1, 2, 3]")


def test_parse_rejects_unknown_atom_type():
    with pytest.raises(ValidationError):
        parse_llm_json('{"content_atoms": [{"type": "video", "src": "x"}]}', ContentResult)


# =======================
# generate_content
# =======================


@pytest.mark.asyncio
async def test_generate_content_validates_atoms():
    model = FakeTextModel({CONTENT_MODEL: [json.dumps(PRODUCT_CONTENT)]})

    result = await run(model)

    assert [a.type for a in result.content_atoms] == [
        "heading",
        "paragraph",
        "comparison",
        "feature_set",
        "cta",
        "related",
    ]
    assert result.metadata.title == "Ascent A3500 vs Explorian E310"
    assert result.content_atoms[2].items[0].price == 649.95


@pytest.mark.asyncio
async def test_null_prose_fields_do_not_fail_the_page():
    payload = {
        "metadata": {"title": None, "description": None},
        "content_atoms": [
            {"type": "heading", "text": "Blenders"},
            {"type": "feature_set", "items": [{"title": "Speed", "description": None}]},
            {"type": "faq_set", "items": [{"question": "Ice?", "answer": None}]},
            {"type": "cta", "title": None, "buttons": []},
            {"type": "related", "items": [{"title": "Soups", "description": None}]},
        ],
    }
    model = FakeTextModel({CONTENT_MODEL: [json.dumps(payload)]})

    result = await run(model)

    features, faqs, cta, related = result.content_atoms[1:]
    assert features.items[0].description == ""
    assert faqs.items[0].answer == ""
    assert cta.title == ""
    assert related.items[0].description == ""
    assert result.metadata.title == ""


@pytest.mark.asyncio
async def test_grounding_context_reaches_the_model():
    model = FakeTextModel({CONTENT_MODEL: [json.dumps(PRODUCT_CONTENT)]})

    await run(model, context="REFERENCE DATA (use for accurate information):\n[1] PRODUCT: A3500")

    message = model.calls[0]["user_message"]
    assert PRODUCT_QUERY in message
    assert "[1] PRODUCT: A3500" in message


def test_user_message_without_context():
    message = build_user_message("soup", classify_query("soup"), "")
    assert "REFERENCE DATA" not in message
    assert "Query category: recipe" in message


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "raw",
    [
        "Sure! Here is your page.",
        "",
        '{"content_atoms": []}',
        '{"content_atoms": [{"type": "heading"}]}',
    ],
)
async def test_unusable_output_raises(raw):
    model = FakeTextModel({CONTENT_MODEL: [raw]})

    with pytest.raises(ContentGenerationError):
        await run(model)


@pytest.mark.asyncio
async def test_transient_failure_is_retried():
    model = FakeTextModel(
        {CONTENT_MODEL: [ConnectionError("reset"), json.dumps(PRODUCT_CONTENT)]}
    )

    result = await run(model)

    assert len(model.calls) == 2
    assert result.content_atoms


@pytest.mark.asyncio
async def test_persistent_failure_raises_content_error():
    model = FakeTextModel({CONTENT_MODEL: [ConnectionError("down")]})

    with pytest.raises(ContentGenerationError):
        await run(model)

    assert len(model.calls) == FAST_POLICY.max_attempts


@pytest.mark.asyncio
async def test_deadline_raises_content_error():
    model = FakeTextModel({CONTENT_MODEL: [json.dumps(PRODUCT_CONTENT)]}, delay=0.5)

    with pytest.raises(ContentGenerationError, match="timed out"):
        await run(model, timeout=0.05)


# =======================
# AnthropicTextModel
# =======================


@pytest.mark.asyncio
async def test_anthropic_model_sends_cached_system_block():
    client = MagicMock()
    text_block = MagicMock(type="text", text='{"ok": true}')
    client.messages.create = AsyncMock(return_value=MagicMock(content=[text_block]))
    model = AnthropicTextModel(client, default_model="default-model", default_max_tokens=100)

    text = await model.complete("SYSTEM", "hello", model="layout-model")

    assert text == '{"ok": true}'
    kwargs = client.messages.create.call_args.kwargs
    assert kwargs["model"] == "layout-model"
    assert kwargs["max_tokens"] == 100
    assert kwargs["system"][0]["cache_control"] == {"type": "ephemeral"}
    assert kwargs["messages"] == [{"role": "user", "content": "hello"}]
