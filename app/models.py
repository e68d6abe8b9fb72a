"""Pydantic models and pipeline records describing AniList payloads."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator

ListStatus = Literal[
    "CURRENT", "PLANNING", "COMPLETED", "DROPPED", "PAUSED", "REPEATING"
]
SeedKind = Literal["favourite", "top_rated"]

PLANNING_STATUS: ListStatus = "PLANNING"


def _none_to_list(value: object) -> object:
    return [] if value is None else value


class TitleNames(BaseModel):
    """Localised and romanised names of a title."""

    romaji: str | None = None
    english: str | None = None
    native: str | None = None


class MediaTag(BaseModel):
    """A tag attached to a title with its relevance rank (0-100)."""

    name: str
    rank: int = Field(default=0, ge=0, le=100)

    @field_validator("rank", mode="before")
    @classmethod
    def _coerce_rank(cls, value: object) -> object:
        return 0 if value is None else value


class CoverImage(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    large: str | None = None
    extra_large: str | None = Field(default=None, alias="extraLarge")


class Title(BaseModel):
    """Represents a single anime as returned by AniList."""

    model_config = ConfigDict(populate_by_name=True)

    id: int
    title: TitleNames = Field(default_factory=TitleNames)
    genres: list[str] = Field(default_factory=list)
    tags: list[MediaTag] = Field(default_factory=list)
    format: str | None = None
    mean_score: int | None = Field(default=None, alias="meanScore")
    cover_image: CoverImage | None = Field(default=None, alias="coverImage")
    episodes: int | None = None
    season: str | None = None
    season_year: int | None = Field(default=None, alias="seasonYear")
    site_url: str | None = Field(default=None, alias="siteUrl")

    @field_validator("genres", "tags", mode="before")
    @classmethod
    def _coerce_lists(cls, value: object) -> object:
        return _none_to_list(value)

    @field_validator("title", mode="before")
    @classmethod
    def _coerce_title(cls, value: object) -> object:
        return {} if value is None else value

    @property
    def primary_genre(self) -> str | None:
        return self.genres[0] if self.genres else None

    def display_title(self) -> str:
        """Return the localised name, falling back to romaji then the id."""

        return display_name(self.title, self.id)

    def to_payload(self) -> dict[str, Any]:
        """Return the camelCase payload served to clients."""

        return self.model_dump(mode="json", by_alias=True)


def display_name(names: TitleNames | None, media_id: int) -> str:
    """Pick the preferred display name for a title."""

    if names is not None:
        for candidate in (names.english, names.romaji):
            if candidate and candidate.strip():
                return candidate.strip()
    return f"#{media_id}"


class ListEntry(BaseModel):
    """One entry of a user's anime list, flattened from its status bucket."""

    media_id: int
    status: ListStatus
    score: float = Field(default=0.0, ge=0, le=10)
    title: str
    genres: list[str] = Field(default_factory=list)
    tags: list[MediaTag] = Field(default_factory=list)
    format: str | None = None

    @field_validator("genres", "tags", mode="before")
    @classmethod
    def _coerce_lists(cls, value: object) -> object:
        return _none_to_list(value)

    @field_validator("score", mode="before")
    @classmethod
    def _coerce_score(cls, value: object) -> object:
        return 0.0 if value is None else value

    @property
    def is_planning(self) -> bool:
        return self.status == PLANNING_STATUS

    @property
    def is_rated(self) -> bool:
        return self.score > 0


@dataclass(slots=True, frozen=True)
class FavouriteTitle:
    """A favourite anime in the order AniList returns them."""

    id: int
    display_name: str


@dataclass(slots=True, frozen=True)
class Seed:
    """A user-owned title whose recommendations feed the fan-out."""

    media_id: int
    weight: float
    source_title: str
    kind: SeedKind


@dataclass(slots=True, frozen=True)
class Reason:
    """Provenance of one seed's contribution to a candidate."""

    source_title: str
    kind: SeedKind
    weight: float

    def to_payload(self) -> dict[str, Any]:
        return {
            "sourceTitle": self.source_title,
            "type": self.kind,
            "weight": self.weight,
        }


@dataclass(slots=True, frozen=True)
class CommonTag:
    """A tag shared between a candidate and the user's profile."""

    name: str
    strength: int


@dataclass(slots=True)
class CandidateEntry:
    """Mutable accumulator for a recommended title during one pipeline run."""

    media: Title
    base_score: float = 0.0
    reasons: list[Reason] = field(default_factory=list)
    common_tags: list[CommonTag] = field(default_factory=list)
    matched_genres: list[str] = field(default_factory=list)
    tag_bonus: float = 0.0
    score: float = 0.0
    is_planning: bool = False

    @property
    def media_id(self) -> int:
        return self.media.id

    @property
    def primary_genre(self) -> str | None:
        return self.media.primary_genre

    def add_contribution(self, seed: Seed) -> None:
        """Fold one recommending seed into the running score."""

        self.base_score += seed.weight
        self.reasons.append(
            Reason(source_title=seed.source_title, kind=seed.kind, weight=seed.weight)
        )

    def to_payload(self) -> dict[str, Any]:
        return {
            "media": self.media.to_payload(),
            "title": self.media.display_title(),
            "score": self.score,
            "baseScore": self.base_score,
            "tagBonus": self.tag_bonus,
            "reasons": [reason.to_payload() for reason in self.reasons],
            "commonTags": [
                {"name": tag.name, "strength": tag.strength}
                for tag in self.common_tags
            ],
            "matchedGenres": list(self.matched_genres),
            "isPlanning": self.is_planning,
        }
