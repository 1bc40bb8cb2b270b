"""Configuration management for Counsel Engine."""

from functools import lru_cache

from dotenv import load_dotenv
from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

# Load environment variables from .env file (only if accessible)
try:
    load_dotenv()
except (PermissionError, OSError):
    # Environment variables should be set directly
    pass


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        case_sensitive=True,
        extra="ignore",
    )

    # OpenAI configuration (required)
    OPENAI_API_KEY: str = Field(..., description="OpenAI API key")

    # Supabase configuration (only needed for the supabase backend)
    SUPABASE_URL: str = Field(default="", description="Supabase project URL")
    SUPABASE_SERVICE_ROLE_KEY: str = Field(default="", description="Supabase service role key")

    # Environment
    REVIEW_ENGINE_ENV: str = Field(default="dev", description="Environment: dev, staging, prod")
    STORE_BACKEND: str = Field(
        default="supabase",
        description="Persistence backend: supabase, or memory (development and tests only)",
    )

    # Generation configuration
    REVIEW_MODEL: str = Field(default="gpt-4o", description="Model for pipeline stages")
    RETRIEVAL_MODEL: str = Field(
        default="gpt-4o", description="Model for query expansion and context compression"
    )
    LLM_TEMPERATURE: float = Field(default=0.3, description="Default sampling temperature")
    LLM_MAX_TOKENS: int = Field(default=4096, description="Default completion token cap")

    # Embedding configuration
    EMBEDDING_MODEL: str = Field(
        default="text-embedding-3-small", description="OpenAI embedding model"
    )
    EMBEDDING_DIM: int = Field(default=1536, description="Embedding vector dimension")

    # Pipeline pacing and batching
    STAGE_PACING_SECONDS: float = Field(
        default=0.8, description="Delay between marking a stage running and invoking it"
    )
    ISSUE_STREAM_DELAY_SECONDS: float = Field(
        default=0.15, description="Delay between streamed issue writes"
    )
    RESEARCH_BATCH_SIZE: int = Field(default=3, description="Issues researched concurrently")
    DRAFTING_BATCH_SIZE: int = Field(default=4, description="Issues drafted concurrently")
    MAX_DOCUMENT_CHARS: int = Field(
        default=200_000, description="Max document text characters accepted"
    )

    # Knowledge-base ingestion
    INGEST_BATCH_SIZE: int = Field(default=50, description="Chunks embedded per request")
    INGEST_BATCH_DELAY_SECONDS: float = Field(
        default=0.2, description="Delay between embedding batches"
    )
    INGEST_DOCUMENT_DELAY_SECONDS: float = Field(
        default=0.3, description="Delay between documents in a batch ingest"
    )


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
