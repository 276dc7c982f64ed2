"""Configuration management."""

from pathlib import Path
from typing import Literal

from pydantic import computed_field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings."""

    # Database (PostgreSQL) - constructed from parts
    db_host: str = "localhost"
    db_port: str = "5432"
    db_name: str = "chatstream"
    db_user: str = "chatstream"
    db_password: str = ""

    @computed_field
    @property
    def database_url(self) -> str:
        """Construct database URL from parts."""
        return f"postgresql://{self.db_user}:{self.db_password}@{self.db_host}:{self.db_port}/{self.db_name}"

    # "postgres" for asyncpg, "memory" for the in-process store
    store_backend: Literal["postgres", "memory"] = "postgres"

    # Providers
    openai_base_url: str | None = None
    openrouter_base_url: str = "https://openrouter.ai/api/v1"
    provider_timeout_seconds: float = 600.0
    openai_api_key: str = ""  # Server-side key, only used for title generation

    # Turn engine
    default_model: str = "gpt-4.1"
    max_message_size: int = 50 * 1024
    history_window: int = 20
    file_search_max_results: int = 10

    # Titles
    title_model: str = "gpt-4.1-nano"
    title_delay_seconds: float = 5.0

    # Uploads
    max_files: int = 10
    max_file_size: int = 10 * 1024 * 1024
    blob_root: Path = Path("/var/lib/chatstream/blobs")

    # Server
    host: str = "0.0.0.0"
    port: int = 8000

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
    )


# Global settings instance
settings = Settings()
