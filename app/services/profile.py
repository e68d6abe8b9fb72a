"""Tag and genre affinity profile built from a user's anime list."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Iterable

from ..models import ListEntry
from ..utils import round_half_up


@dataclass(slots=True)
class TagStat:
    total_rank: int = 0
    count: int = 0

    @property
    def average_rank(self) -> int:
        return round_half_up(self.total_rank / self.count) if self.count else 0


@dataclass(slots=True)
class UserProfile:
    """Aggregate tag ranks and genre frequencies for one pipeline run."""

    tags: dict[str, TagStat] = field(default_factory=dict)
    genre_counts: dict[str, int] = field(default_factory=dict)

    def average_rank(self, tag_name: str) -> int | None:
        """Return the rounded mean rank of ``tag_name`` or ``None`` if unseen."""

        stat = self.tags.get(tag_name)
        if stat is None:
            return None
        return stat.average_rank

    def top_genres(self, k: int = 10) -> list[str]:
        """Return the ``k`` most frequent genres, ties in first-seen order."""

        ranked = sorted(self.genre_counts.items(), key=lambda item: item[1], reverse=True)
        return [genre for genre, _ in ranked[:k]]

    def describe_tags(self, limit: int = 15) -> list[tuple[str, int, int]]:
        """Return ``(name, average rank, count)`` for the strongest tags."""

        described = [
            (name, stat.average_rank, stat.count) for name, stat in self.tags.items()
        ]
        described.sort(key=lambda item: item[1], reverse=True)
        return described[:limit]

    def is_empty(self) -> bool:
        return not (self.tags or self.genre_counts)


def build_profile(entries: Iterable[ListEntry]) -> UserProfile:
    """Walk every list entry once, whatever its status."""

    profile = UserProfile()
    for entry in entries:
        for tag in entry.tags:
            stat = profile.tags.get(tag.name)
            if stat is None:
                stat = profile.tags[tag.name] = TagStat()
            stat.total_rank += tag.rank
            stat.count += 1
        for genre in entry.genres:
            profile.genre_counts[genre] = profile.genre_counts.get(genre, 0) + 1
    return profile
