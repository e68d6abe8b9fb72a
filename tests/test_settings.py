"""Configuration settings behaviour tests."""

from __future__ import annotations

import pytest

from app.config import MAX_BATCH_SIZE, Settings


def test_defaults_match_recommendation_tuning() -> None:
    """Defaults should reflect the documented scoring constants."""

    settings = Settings(_env_file=None)

    assert settings.weight_favourite == 2.0
    assert settings.weight_top_rated == 1.0
    assert settings.max_favourite_sources == 15
    assert settings.max_top_rated_sources == 10
    assert settings.recommendation_batch_size == MAX_BATCH_SIZE == 12
    assert settings.recommendations_per_source == 15
    assert settings.tag_bonus == 0.5
    assert settings.genre_bonus == 0.3
    assert settings.diversity_cap == 5
    assert settings.response_cache_seconds == 86_400
    assert settings.anilist_retry_limit == 4


def test_blank_access_token_is_treated_as_missing() -> None:
    """Whitespace-only tokens should not be sent as credentials."""

    settings = Settings(_env_file=None, ANILIST_ACCESS_TOKEN="   ")

    assert settings.anilist_access_token is None


def test_batch_size_cannot_exceed_query_limit() -> None:
    """AniList compound queries are limited to twelve aliases."""

    with pytest.raises(ValueError):
        Settings(_env_file=None, RECOMMENDATION_BATCH_SIZE=13)


def test_favourite_weight_must_dominate() -> None:
    """Top-rated seeds may never weigh as much as favourites."""

    with pytest.raises(ValueError, match="WEIGHT_TOP_RATED must be lower"):
        Settings(_env_file=None, WEIGHT_FAVOURITE=1.0, WEIGHT_TOP_RATED=1.0)


def test_cache_ttl_reads_from_environment(monkeypatch: pytest.MonkeyPatch) -> None:
    """The cache lifetime is configured through CACHE_TTL."""

    monkeypatch.setenv("CACHE_TTL", "3600")

    settings = Settings(_env_file=None)

    assert settings.response_cache_seconds == 3600
