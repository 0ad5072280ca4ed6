"""Configuration management for the Adaptive Page Engine."""

from functools import lru_cache

from dotenv import load_dotenv
from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

# Load environment variables from .env file (only if accessible)
try:
    load_dotenv()
except (PermissionError, OSError):
    # Sandboxed environments may not expose .env; rely on the process env
    pass


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        case_sensitive=True,
        extra="ignore",
    )

    # Supabase configuration (required)
    SUPABASE_URL: str = Field(..., description="Supabase project URL")
    SUPABASE_SERVICE_ROLE_KEY: str = Field(..., description="Supabase service role key")

    # Model provider keys
    OPENAI_API_KEY: str = Field(..., description="OpenAI API key (embeddings, images)")
    ANTHROPIC_API_KEY: str = Field(default="", description="Anthropic API key (content, layout)")

    # Environment
    PAGE_ENGINE_ENV: str = Field(default="dev", description="Environment: dev, staging, prod, test")

    # Embedding configuration
    EMBEDDING_MODEL: str = Field(
        default="text-embedding-3-small", description="OpenAI embedding model"
    )
    EMBEDDING_DIM: int = Field(default=1536, description="Embedding vector dimension")
    EMBEDDING_BATCH_SIZE: int = Field(default=100, description="Texts per embedding request")

    # Content generation
    CONTENT_MODEL: str = Field(
        default="claude-sonnet-4-20250514", description="Model for page content generation"
    )
    CONTENT_MAX_TOKENS: int = Field(default=8192, description="Max output tokens for content")

    # Layout selection
    LAYOUT_MODEL: str = Field(
        default="claude-3-5-haiku-20241022", description="Model for layout selection"
    )
    LAYOUT_MAX_TOKENS: int = Field(default=2048, description="Max output tokens for layout")

    # Image synthesis
    IMAGE_MODEL: str = Field(default="gpt-image-1", description="OpenAI image model")
    IMAGE_BUCKET: str = Field(default="generated-images", description="Storage bucket for images")
    IMAGE_SYNTHESIS_MAX_ATTEMPTS: int = Field(
        default=2, description="Background synthesis attempts before giving up"
    )

    # Caching
    RAG_CACHE_TTL_SECONDS: int = Field(default=3600, description="Retrieval cache TTL")
    RAG_CACHE_MAX_ENTRIES: int = Field(default=1000, description="Retrieval cache capacity (LRU)")
    PAGE_CACHE_HOURS: int = Field(default=24, description="Reuse persisted pages this recent")

    # Per-call deadlines
    EMBEDDING_TIMEOUT_SECONDS: float = Field(default=10.0)
    VECTOR_SEARCH_TIMEOUT_SECONDS: float = Field(default=10.0)
    CONTENT_TIMEOUT_SECONDS: float = Field(default=90.0)
    LAYOUT_TIMEOUT_SECONDS: float = Field(default=30.0)
    IMAGE_SEARCH_TIMEOUT_SECONDS: float = Field(default=10.0)
    PERSIST_TIMEOUT_SECONDS: float = Field(
        default=15.0, description="Request timeout for page store reads and writes"
    )
    REQUEST_DEADLINE_SECONDS: float = Field(
        default=150.0, description="Overall deadline for one page request"
    )

    # Retry policy for transient transport errors
    RETRY_MAX_ATTEMPTS: int = Field(default=3)
    RETRY_BASE_DELAY_SECONDS: float = Field(default=0.5)
    RETRY_MAX_DELAY_SECONDS: float = Field(default=4.0)

    # Rate limiting on generation endpoints
    GENERATION_RATE_PER_MINUTE: float = Field(default=10.0)
    GENERATION_BURST: int = Field(default=15)


@lru_cache
def get_settings() -> Settings:
    """
    Get cached settings instance.

    Returns:
        Settings instance

    Raises:
        ValidationError: If required environment variables are missing
    """
    return Settings()
