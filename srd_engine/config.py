"""
Configuration settings for the SRD engine.

Uses Pydantic Settings to load environment variables for the storage backend,
the Open5e content provider, sync policy, search limits and logging.
"""
from __future__ import annotations

from functools import lru_cache
from pathlib import Path
from typing import Literal, Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    # Storage
    storage_backend: Literal["memory", "json", "postgres"] = Field(
        "json", alias="SRD_STORAGE_BACKEND"
    )
    data_dir: Path = Field(Path("data/srd"), alias="SRD_DATA_DIR")

    # Database (postgres backend only)
    db_host: str = Field("localhost", alias="DB_HOST")
    db_port: int = Field(5432, alias="DB_PORT")
    db_user: str = Field("postgres", alias="DB_USER")
    db_password: str = Field("postgres", alias="DB_PASSWORD")
    db_name: str = Field("srd", alias="DB_NAME")
    db_pool_min_size: int = Field(1, alias="DB_POOL_MIN_SIZE", ge=0)
    db_pool_max_size: int = Field(5, alias="DB_POOL_MAX_SIZE", gt=0)

    # Content provider
    provider_base_url: str = Field("https://api.open5e.com/v1", alias="OPEN5E_BASE_URL")
    provider_page_size: int = Field(100, alias="OPEN5E_PAGE_SIZE", gt=0)
    provider_max_pages: int = Field(100, alias="OPEN5E_MAX_PAGES", gt=0)
    provider_timeout_seconds: float = Field(30.0, alias="OPEN5E_TIMEOUT_SECONDS", gt=0)
    provider_page_delay_seconds: float = Field(0.1, alias="OPEN5E_PAGE_DELAY_SECONDS", ge=0)
    provider_retry_attempts: int = Field(3, alias="OPEN5E_RETRY_ATTEMPTS", ge=1)
    provider_retry_backoff_seconds: float = Field(1.0, alias="OPEN5E_RETRY_BACKOFF_SECONDS", ge=0)

    # Sync policy
    sync_freshness_hours: float = Field(24.0, alias="SRD_SYNC_FRESHNESS_HOURS", ge=0)
    sync_type_timeout_seconds: float = Field(300.0, alias="SRD_SYNC_TYPE_TIMEOUT_SECONDS", gt=0)

    # Search
    search_default_limit: int = Field(100, alias="SRD_SEARCH_DEFAULT_LIMIT", gt=0)
    search_max_limit: int = Field(1000, alias="SRD_SEARCH_MAX_LIMIT", gt=0)
    search_max_query_length: int = Field(200, alias="SRD_SEARCH_MAX_QUERY_LENGTH", gt=0)

    # Access
    admin_token: Optional[str] = Field(None, alias="SRD_ADMIN_TOKEN")

    # Application
    app_env: str = Field("development", alias="APP_ENV")
    log_level: str = Field("INFO", alias="LOG_LEVEL")
    log_json: bool = Field(False, alias="LOG_JSON")

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        populate_by_name=True,
    )


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """
    Retrieve a cached instance of Settings to avoid repeated env parsing.
    """
    return Settings()


__all__ = ["Settings", "get_settings"]
