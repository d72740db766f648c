"""Shared configuration loaded from environment / .env file."""

from __future__ import annotations

from pathlib import Path

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application-wide settings, populated from ``POSTMARKS_*`` env vars or a .env file."""

    # Storage
    data_dir: Path = Field(default=Path("data/owners"), description="Directory holding one SQLite file per owner")
    step_log_path: Path = Field(default=Path("data/runs.sqlite3"), description="SQLite database for the run step log")

    # Chunking
    chunk_size: int = 2000
    chunk_overlap: int = 50
    max_chunks: int = Field(
        default=40,
        description="Upper bound on chunks per document; the tail beyond it is dropped.",
    )

    # Orchestration
    fan_out_concurrency: int = 8
    step_max_attempts: int = 5
    step_base_delay: float = 1.0
    step_max_delay: float = 30.0
    step_timeout: float = 60.0

    # Content fetching
    fetch_timeout: float = 30.0
    fetch_user_agent: str = "postmarks/0.1 (+https://github.com/postmarks)"

    # Vector store
    chroma_host: str = "localhost"
    chroma_port: int = 8000
    chroma_collection: str = "postmarks"

    # Embedding
    embedding_model: str = "BAAI/bge-large-en-v1.5"

    # Notifications
    postmark_server_token: str = ""
    postmark_api_url: str = "https://api.postmarkapp.com/email"
    from_email: str = ""
    reply_to_email: str = ""

    log_level: str = "INFO"

    model_config = SettingsConfigDict(env_prefix="POSTMARKS_", env_file=".env", env_file_encoding="utf-8")


# Module-level singleton; import `settings` wherever needed.
settings = Settings()
