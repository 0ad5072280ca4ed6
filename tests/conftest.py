"""Pytest configuration and fixtures."""

import os

import pytest

from tests.fakes.fake_services import FakeTextModel, RecordingProgressSink
from tests.fixtures_pages import (
    CONTENT_MODEL,
    LAYOUT_MODEL,
    PRODUCT_CONTENT,
    PRODUCT_LAYOUT,
    as_json,
)


@pytest.fixture(scope="session", autouse=True)
def setup_test_env():
    """Set up test environment variables."""
    os.environ["SUPABASE_URL"] = "https://test.supabase.co"
    os.environ["SUPABASE_SERVICE_ROLE_KEY"] = "test-key"
    os.environ["OPENAI_API_KEY"] = "test-openai-key"
    os.environ["ANTHROPIC_API_KEY"] = "test-anthropic-key"
    os.environ["PAGE_ENGINE_ENV"] = "test"


@pytest.fixture
def product_text_model() -> FakeTextModel:
    return FakeTextModel(
        {
            CONTENT_MODEL: [as_json(PRODUCT_CONTENT)],
            LAYOUT_MODEL: [as_json(PRODUCT_LAYOUT)],
        }
    )


@pytest.fixture
def sink() -> RecordingProgressSink:
    return RecordingProgressSink()
