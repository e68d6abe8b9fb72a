"""Pytest configuration and test helpers."""

from __future__ import annotations

import sys
from pathlib import Path
from typing import Any, Sequence

import pytest

# Ensure the application package is importable when running tests without an
# editable install. This mirrors the expected runtime layout where ``app`` sits
# at the project root.
ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from app.config import Settings  # noqa: E402
from app.models import FavouriteTitle, ListEntry, MediaTag, Title  # noqa: E402
from app.services.anilist import AniListError, ProtocolError  # noqa: E402


@pytest.fixture
def anyio_backend() -> str:
    """Force AnyIO tests to run on asyncio without requiring trio."""

    return "asyncio"


def build_settings(**overrides: Any) -> Settings:
    """Return a settings object with defaults suitable for tests."""

    base: dict[str, Any] = {"ANILIST_BACKOFF_BASE": 0, "ANILIST_BACKOFF_CAP": 0}
    base.update(overrides)
    return Settings(_env_file=None, **base)  # type: ignore[arg-type]


def make_title(
    media_id: int,
    *,
    genres: Sequence[str] = (),
    tags: Sequence[tuple[str, int]] = (),
    english: str | None = None,
    media_format: str | None = "TV",
) -> Title:
    return Title(
        id=media_id,
        title={"english": english or f"Show {media_id}", "romaji": f"Shou {media_id}"},
        genres=list(genres),
        tags=[MediaTag(name=name, rank=rank) for name, rank in tags],
        format=media_format,
    )


def make_entry(
    media_id: int,
    *,
    score: float = 0,
    status: str = "COMPLETED",
    genres: Sequence[str] = (),
    tags: Sequence[tuple[str, int]] = (),
) -> ListEntry:
    return ListEntry(
        media_id=media_id,
        status=status,
        score=score,
        title=f"Entry {media_id}",
        genres=list(genres),
        tags=[MediaTag(name=name, rank=rank) for name, rank in tags],
    )


class FakeAniListClient:
    """In-memory stand-in for the AniList client used by pipeline tests."""

    def __init__(
        self,
        *,
        favourites: Sequence[FavouriteTitle] = (),
        entries: Sequence[ListEntry] = (),
        recommendations: dict[int, list[Title]] | None = None,
        failing_ids: set[int] | None = None,
        error: AniListError | None = None,
        batch_size: int = 12,
    ):
        self.favourites = list(favourites)
        self.entries = list(entries)
        self.recommendations = recommendations or {}
        self.failing_ids = failing_ids or set()
        self.error = error
        self.batch_size = batch_size
        self.batches: list[list[int]] = []
        self.list_calls = 0
        self.planning: list[int] = []

    async def fetch_favourites(self, username: str) -> list[FavouriteTitle]:
        if self.error is not None:
            raise self.error
        return list(self.favourites)

    async def fetch_full_list(self, username: str) -> list[ListEntry]:
        self.list_calls += 1
        if self.error is not None:
            raise self.error
        return list(self.entries)

    async def fetch_recommendation_batch(
        self, media_ids: Sequence[int]
    ) -> dict[int, list[Title]]:
        self.batches.append(list(media_ids))
        if self.failing_ids.intersection(media_ids):
            raise ProtocolError("batch rejected")
        return {media_id: list(self.recommendations.get(media_id, [])) for media_id in media_ids}

    async def save_planning(self, media_id: int) -> dict[str, Any]:
        self.planning.append(media_id)
        return {"id": 99, "status": "PLANNING"}

    async def fetch_viewer(self) -> dict[str, Any]:
        return {"id": 1, "name": "viewer"}
