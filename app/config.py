"""Application configuration models."""

from __future__ import annotations

from functools import lru_cache
from typing import Literal

from pydantic import Field, HttpUrl, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

# AniList rejects compound queries above this many aliased Media lookups.
MAX_BATCH_SIZE = 12


class Settings(BaseSettings):
    """Settings loaded from environment variables or a .env file."""

    app_name: str = Field(default="AniPicks", alias="APP_NAME")
    server_host: str = Field(default="0.0.0.0", alias="HOST")
    server_port: int = Field(default=3000, alias="PORT")

    anilist_api_url: HttpUrl = Field(
        default="https://graphql.anilist.co", alias="ANILIST_API_URL"
    )
    anilist_access_token: str | None = Field(
        default=None, alias="ANILIST_ACCESS_TOKEN"
    )
    anilist_timeout_seconds: float = Field(
        default=20.0, alias="ANILIST_TIMEOUT", gt=0
    )
    anilist_retry_limit: int = Field(
        default=4, alias="ANILIST_RETRY_LIMIT", ge=0, le=10
    )
    anilist_backoff_base: float = Field(
        default=1.5, alias="ANILIST_BACKOFF_BASE", ge=0
    )
    anilist_backoff_cap: float = Field(
        default=30.0, alias="ANILIST_BACKOFF_CAP", ge=0
    )

    recommendation_batch_size: int = Field(
        default=MAX_BATCH_SIZE,
        alias="RECOMMENDATION_BATCH_SIZE",
        ge=1,
        le=MAX_BATCH_SIZE,
    )
    recommendations_per_source: int = Field(
        default=15, alias="RECOMMENDATIONS_PER_SOURCE", ge=1, le=25
    )
    max_favourite_sources: int = Field(
        default=15, alias="MAX_FAVOURITE_SOURCES", ge=0, le=100
    )
    max_top_rated_sources: int = Field(
        default=10, alias="MAX_TOP_RATED_SOURCES", ge=0, le=100
    )
    weight_favourite: float = Field(default=2.0, alias="WEIGHT_FAVOURITE", gt=0)
    weight_top_rated: float = Field(default=1.0, alias="WEIGHT_TOP_RATED", gt=0)

    tag_bonus: float = Field(default=0.5, alias="TAG_BONUS", ge=0)
    genre_bonus: float = Field(default=0.3, alias="GENRE_BONUS", ge=0)
    max_scored_tags: int = Field(default=3, alias="MAX_SCORED_TAGS", ge=0)
    max_displayed_tags: int = Field(default=5, alias="MAX_DISPLAYED_TAGS", ge=0)
    max_scored_genres: int = Field(default=3, alias="MAX_SCORED_GENRES", ge=0)
    top_genre_count: int = Field(default=10, alias="TOP_GENRE_COUNT", ge=1)
    diversity_cap: int = Field(default=5, alias="DIVERSITY_CAP", ge=1)

    response_cache_seconds: int = Field(
        default=86_400, alias="CACHE_TTL", ge=60
    )

    database_url: str = Field(
        default="sqlite+aiosqlite:///./anipicks.db", alias="DATABASE_URL"
    )

    environment: Literal["development", "production"] = Field(
        default="development", alias="ENVIRONMENT"
    )

    @field_validator("anilist_access_token", mode="before")
    @classmethod
    def _strip_blank_token(cls, value: object) -> object:
        """Treat blank tokens from the environment as missing."""

        if isinstance(value, str):
            stripped = value.strip()
            return stripped or None
        return value

    @model_validator(mode="after")
    def _check_weight_classes(self) -> "Settings":
        """Favourite seeds must always outweigh top-rated seeds."""

        if self.weight_top_rated >= self.weight_favourite:
            raise ValueError(
                "WEIGHT_TOP_RATED must be lower than WEIGHT_FAVOURITE"
            )
        return self

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8")


@lru_cache
def get_settings() -> Settings:
    """Return a cached settings instance."""

    return Settings()  # type: ignore[call-arg]


settings = get_settings()
