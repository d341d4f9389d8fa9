"""Application configuration models."""

from __future__ import annotations

from functools import lru_cache
from typing import Literal

from pydantic import AliasChoices, Field, HttpUrl, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Settings loaded from environment variables or a .env file."""

    app_name: str = Field(default="Master Order", alias="APP_NAME")
    server_host: str = Field(default="0.0.0.0", alias="HOST")
    server_port: int = Field(default=3001, alias="PORT")

    database_url: str = Field(
        default="sqlite+aiosqlite:///./masterorder.db", alias="DATABASE_URL"
    )

    metadata_addon_url: HttpUrl | None = Field(
        default=None,
        alias="METADATA_ADDON_URL",
        validation_alias=AliasChoices("METADATA_ADDON_URL", "CINEMETA_API_URL"),
    )
    comicvine_api_key: str | None = Field(default=None, alias="COMICVINE_API_KEY")
    comicvine_api_url: HttpUrl = Field(
        default="https://comicvine.gamespot.com/api", alias="COMICVINE_API_URL"
    )

    enrichment_timeout_seconds: float = Field(
        default=3.0, alias="ENRICHMENT_TIMEOUT", gt=0, le=60
    )
    metadata_cache_seconds: int = Field(
        default=86_400, alias="METADATA_CACHE_TTL", ge=0
    )

    environment: Literal["development", "production"] = Field(
        default="development", alias="ENVIRONMENT"
    )

    @field_validator("comicvine_api_key", mode="before")
    @classmethod
    def _blank_key_is_missing(cls, value: object) -> object:
        """Treat whitespace-only API keys as unset."""

        if isinstance(value, str) and not value.strip():
            return None
        if isinstance(value, str):
            return value.strip()
        return value

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8")


@lru_cache
def get_settings() -> Settings:
    """Return a cached settings instance."""

    return Settings()  # type: ignore[call-arg]


settings = get_settings()
