"""Typed settings configuration - single source of truth."""

from functools import lru_cache
from typing import Literal

from pydantic import SecretStr
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    # Database
    database_url: str | None = None

    # Logging
    log_level: str = "INFO"

    # Model providers ("stub" runs fully offline)
    llm_provider: Literal["openai", "stub"] = "stub"
    openai_api_key: SecretStr | None = None
    openai_chat_model: str = "gpt-4o-mini"
    openai_embedding_model: str = "text-embedding-3-small"
    embedding_dimensions: int = 1536

    # Object storage
    storage_root: str = "data/uploads"
    storage_base_url: str | None = None

    # Chunking
    chunk_size: int = 1000
    chunk_overlap: int = 200
    min_chunk_chars: int = 10

    # Ingestion batching
    page_insert_batch_size: int = 50
    embedding_batch_size: int = 5
    progress_every_pages: int = 5

    # Retrieval
    page_similarity_threshold: float = 0.5
    page_max_results: int = 5
    book_similarity_threshold: float = 0.3
    book_max_results: int = 10
    # Score given to keyword fallback hits; not a cosine similarity
    keyword_match_score: float = 0.7
    min_keyword_length: int = 3

    # Whole-document material when retrieval finds nothing and no page is given
    document_context_max_chars: int = 12000

    # Quiz
    quiz_default_questions: int = 3
    quiz_max_questions: int = 10

    # Timeouts (seconds)
    download_timeout_s: float = 30.0
    embedding_timeout_s: float = 20.0
    generation_timeout_s: float = 60.0

    # Retry with exponential backoff (milliseconds)
    retry_max_attempts: int = 3
    retry_base_delay_ms: int = 500
    retry_max_delay_ms: int = 8000

    # Retry jitter (milliseconds)
    retry_jitter_min_ms: int = 0
    retry_jitter_max_ms: int = 250


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
