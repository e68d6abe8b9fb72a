"""Seen-title filtering and tag/genre affinity bonuses."""

from __future__ import annotations

import logging
from typing import Mapping, Sequence

from ..config import Settings
from ..models import CandidateEntry, CommonTag, ListEntry
from ..utils import round_score
from .profile import UserProfile

logger = logging.getLogger(__name__)


def refine_candidates(
    candidates: Mapping[int, CandidateEntry],
    entries: Sequence[ListEntry],
    profile: UserProfile,
    settings: Settings,
) -> list[CandidateEntry]:
    """Drop seen titles and fold affinity bonuses into each remaining score.

    Titles only present on the planning list stay in the result, flagged
    with ``is_planning``. The returned list keeps the candidate map's order.
    """

    seen_ids = {entry.media_id for entry in entries if not entry.is_planning}
    planning_ids = {entry.media_id for entry in entries if entry.is_planning}
    top_genres = set(profile.top_genres(settings.top_genre_count))

    refined: list[CandidateEntry] = []
    for media_id, entry in candidates.items():
        if media_id in seen_ids:
            continue
        entry.is_planning = media_id in planning_ids
        apply_bonuses(entry, profile, top_genres, settings)
        refined.append(entry)

    logger.info(
        "Kept %s of %s candidates after removing seen titles",
        len(refined),
        len(candidates),
    )
    return refined


def apply_bonuses(
    entry: CandidateEntry,
    profile: UserProfile,
    top_genres: set[str],
    settings: Settings,
) -> None:
    """Compute shared tags and genres and the resulting final score."""

    common: list[CommonTag] = []
    for tag in entry.media.tags:
        strength = profile.average_rank(tag.name)
        if strength is not None:
            common.append(CommonTag(name=tag.name, strength=strength))
    common.sort(key=lambda tag: tag.strength, reverse=True)
    entry.common_tags = common[: settings.max_displayed_tags]

    entry.matched_genres = [genre for genre in entry.media.genres if genre in top_genres]

    # display list and scored matches use separate caps
    tag_bonus = min(len(common), settings.max_scored_tags) * settings.tag_bonus
    genre_bonus = min(len(entry.matched_genres), settings.max_scored_genres) * settings.genre_bonus

    entry.tag_bonus = round_score(tag_bonus + genre_bonus)
    entry.score = round_score(entry.base_score + tag_bonus + genre_bonus)
