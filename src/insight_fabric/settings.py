from __future__ import annotations

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class GraphSettings(BaseSettings):
    """Unified configuration for Insight Fabric.

    Environment variables are prefixed with INSIGHT_FABRIC_.
    """

    model_config = SettingsConfigDict(env_prefix="INSIGHT_FABRIC_", env_file=".env", extra="ignore")

    # HTTP
    bind_host: str = "0.0.0.0"
    bind_port: int = 8090

    # Logging
    log_level: str = Field(default="INFO", description="Python logging level")

    # Auth
    api_key: str | None = Field(default=None, description="If set, require X-API-Key")

    # Storage
    store: str = Field(default="memory", description="memory|sqlite")
    sqlite_path: str = Field(default="~/.insight_fabric/graph.sqlite")

    # Embeddings
    embedding_dim: int = 384
    st_model: str | None = Field(
        default=None,
        description="sentence-transformers model name (optional). If unset, use stub embedder.",
    )

    # Path narration (OpenAI-compatible chat completions endpoint)
    reasoning_url: str | None = Field(default=None, description="Base URL, e.g. https://api.openai.com/v1")
    reasoning_api_key: str | None = None
    reasoning_model: str = "gpt-4o-mini"
    reasoning_timeout_s: float = 20.0

    # Concurrency
    conflict_retries: int = Field(default=3, ge=1)
    snapshot_workers: int = Field(default=2, ge=1)

    # Listing
    default_page_size: int = Field(default=20, ge=1)
    max_page_size: int = Field(default=100, ge=1)
    audit_page_size: int = Field(default=50, ge=1)


settings = GraphSettings()
