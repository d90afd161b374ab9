"""Settings for the indexing service.

Values come from (highest priority first) keyword arguments, environment
variables named ``POSTINDEX_SECTION__KEY`` (e.g.
``POSTINDEX_STORE__BACKEND=postgrest``), a ``.env`` file, and defaults.
"""

from __future__ import annotations

from typing import Literal

from pydantic import BaseModel, Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class EmbeddingSettings(BaseModel):
    """Which model turns post content into vectors."""

    provider: Literal["sentence-transformers", "openai"] = Field(
        default="sentence-transformers", description="Embedding backend"
    )
    model_name: str = Field(default="all-MiniLM-L6-v2", description="Model identifier")
    dimensions: int = Field(default=384, gt=0, description="Vector length the store expects")
    max_tokens: int | None = Field(
        default=None, gt=0, description="Truncate inputs beyond this many tokens"
    )
    device: str | None = Field(default=None, description="Torch device for local models")
    eager_load: bool = Field(default=True, description="Load the model at startup")
    openai_api_key: str | None = Field(default=None, description="Falls back to OPENAI_API_KEY")


class StoreSettings(BaseModel):
    """Where embeddings are written."""

    backend: Literal["database", "postgrest", "local"] = Field(default="database")
    database_url: str = Field(
        default="sqlite+aiosqlite:///postindex.db", description="SQLAlchemy async URL"
    )
    create_tables: bool = Field(default=False, description="Create tables on connect")
    enforce_ownership: bool = Field(default=True, description="Only post owners may index")
    url: str | None = Field(default=None, description="Hosted backend project URL")
    api_key: str | None = Field(default=None, description="Hosted backend API key")
    table: str = Field(default="post_embeddings")
    match_function: str = Field(default="match_post_embeddings")
    timeout: float = Field(default=10.0, gt=0)
    local_dir: str | None = Field(default=None, description="Persistence directory for the local store")


class ServerSettings(BaseModel):
    host: str = "127.0.0.1"
    port: int = 8000


class Settings(BaseSettings):
    """Root configuration for postindex."""

    embedding: EmbeddingSettings = Field(default_factory=EmbeddingSettings)
    store: StoreSettings = Field(default_factory=StoreSettings)
    server: ServerSettings = Field(default_factory=ServerSettings)
    log_level: str = Field(default="INFO")

    model_config = SettingsConfigDict(
        extra="ignore",
        env_prefix="POSTINDEX_",
        env_nested_delimiter="__",
        env_file=".env",
    )
