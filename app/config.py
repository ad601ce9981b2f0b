"""Application configuration models."""

from __future__ import annotations

from functools import lru_cache
from typing import Literal

from pydantic import Field, HttpUrl, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


MEGABYTE = 1024 * 1024
DEFAULT_CACHE_MAX_BYTES = 500 * MEGABYTE
DEFAULT_CACHE_MAX_AGE_SECONDS = 7 * 24 * 60 * 60


class Settings(BaseSettings):
    """Settings loaded from environment variables or a .env file."""

    app_name: str = Field(default="Kioskplay", alias="APP_NAME")
    server_host: str = Field(default="0.0.0.0", alias="HOST")
    server_port: int = Field(default=3000, alias="PORT")
    log_level: str = Field(default="INFO", alias="LOG_LEVEL")

    catalog_api_url: HttpUrl = Field(
        default="https://mupa.app/api/1.1/wf/get_medias_all",
        alias="CATALOG_API_URL",
    )
    catalog_api_token: str | None = Field(default=None, alias="CATALOG_API_TOKEN")
    catalog_page_size: int = Field(
        default=100, alias="CATALOG_PAGE_SIZE", ge=1, le=1_000
    )
    catalog_request_timeout: float = Field(
        default=30.0, alias="CATALOG_REQUEST_TIMEOUT", gt=0
    )
    catalog_page_delay: float = Field(
        default=2.0, alias="CATALOG_PAGE_DELAY", ge=0
    )

    sync_batch_size: int = Field(default=50, alias="SYNC_BATCH_SIZE", ge=1, le=1_000)
    sync_freshness_seconds: int = Field(
        default=3_600, alias="SYNC_FRESHNESS", ge=1
    )
    sync_interval_seconds: int = Field(
        default=3_600, alias="SYNC_INTERVAL", ge=60
    )
    sync_on_startup: bool = Field(default=True, alias="SYNC_ON_STARTUP")

    database_url: str = Field(
        default="sqlite+aiosqlite:///./kioskplay.db", alias="DATABASE_URL"
    )
    cache_database_url: str = Field(
        default="sqlite+aiosqlite:///./kioskplay-cache.db",
        alias="CACHE_DATABASE_URL",
    )
    cache_max_bytes: int = Field(
        default=DEFAULT_CACHE_MAX_BYTES, alias="CACHE_MAX_BYTES", ge=MEGABYTE
    )
    cache_max_age_seconds: int = Field(
        default=DEFAULT_CACHE_MAX_AGE_SECONDS, alias="CACHE_MAX_AGE", ge=60
    )
    cache_fetch_timeout: float = Field(
        default=60.0, alias="CACHE_FETCH_TIMEOUT", gt=0
    )
    cache_cleanup_interval_seconds: int = Field(
        default=3_600, alias="CACHE_CLEANUP_INTERVAL", ge=0
    )

    image_duration_seconds: float = Field(
        default=8.0, alias="IMAGE_DURATION", gt=0
    )
    device_heartbeat_ttl_seconds: int = Field(
        default=30, alias="DEVICE_HEARTBEAT_TTL", ge=1
    )

    player_api_url: HttpUrl = Field(
        default="http://127.0.0.1:3000", alias="PLAYER_API_URL"
    )
    player_refresh_seconds: int = Field(
        default=300, alias="PLAYER_REFRESH_INTERVAL", ge=10
    )
    player_heartbeat_seconds: int = Field(
        default=15, alias="PLAYER_HEARTBEAT_INTERVAL", ge=1
    )

    environment: Literal["development", "production"] = Field(
        default="development", alias="ENVIRONMENT"
    )

    @field_validator("catalog_api_token", mode="before")
    @classmethod
    def _strip_token(cls, value: object) -> object:
        """Treat blank tokens as missing."""

        if isinstance(value, str):
            stripped = value.strip()
            return stripped or None
        return value

    @field_validator("log_level", mode="before")
    @classmethod
    def _normalise_log_level(cls, value: object) -> str:
        if value is None or value == "":
            return "INFO"
        level = str(value).strip().upper()
        if level not in {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}:
            raise ValueError("LOG_LEVEL must be a standard logging level name")
        return level

    @property
    def cache_max_megabytes(self) -> float:
        """Return the cache ceiling in megabytes for status payloads."""

        return round(self.cache_max_bytes / MEGABYTE, 2)

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8")


@lru_cache
def get_settings() -> Settings:
    """Return a cached settings instance."""

    return Settings()  # type: ignore[call-arg]


settings = get_settings()
