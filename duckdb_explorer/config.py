"""Application configuration using pydantic-settings."""

from pathlib import Path

from pydantic import AliasChoices, Field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """
    Application settings loaded from environment variables.

    All settings can be configured via:
    1. Environment variables (e.g., DB_DATA_DIR=/my/path)
    2. .env file in the project root

    The backup directory is derived from the data directory by default but can
    be overridden.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # API settings
    api_title: str = "DuckDB Explorer API"
    api_version: str = "0.1.0"
    api_prefix: str = "/api/db"
    debug: bool = True  # Default to True for development

    # Server settings
    host: str = "0.0.0.0"
    port: int = 8000

    # Storage paths
    data_dir: Path = Field(
        default=Path("./data"),
        validation_alias=AliasChoices("db_data_dir", "data_dir"),
    )
    meta_dir: Path | None = None

    # Connection pool
    max_pool_size: int = 10
    idle_timeout_seconds: float = 15 * 60
    reaper_interval_seconds: float | None = None  # None -> idle timeout / 3
    exclusive_active_database: bool = True

    # Uploads
    upload_max_bytes: int = 100 * 1024 * 1024  # 100MB
    allowed_upload_extensions: tuple[str, ...] = (".duckdb", ".db")

    @model_validator(mode="after")
    def set_default_paths(self) -> "Settings":
        """Set default paths based on data_dir if not explicitly provided."""
        if self.meta_dir is None:
            self.meta_dir = self.data_dir / "meta"
        return self


# Global settings instance
settings = Settings()
