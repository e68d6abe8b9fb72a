"""Selection of the seed titles that drive recommendation fan-out."""

from __future__ import annotations

import logging
from typing import Sequence

from ..config import Settings
from ..models import FavouriteTitle, ListEntry, Seed

logger = logging.getLogger(__name__)


def select_seeds(
    favourites: Sequence[FavouriteTitle],
    entries: Sequence[ListEntry],
    settings: Settings,
) -> list[Seed]:
    """Return favourite seeds followed by the best rated non-favourites.

    Favourites keep AniList's ordering and carry the favourite weight. Rated
    entries must be scored, must not be on the planning list and must not
    already be favourites; they are ordered by score (ties keep fetch order)
    and carry the lower top-rated weight.
    """

    seeds: list[Seed] = []
    used: set[int] = set()

    for favourite in favourites:
        if len(seeds) >= settings.max_favourite_sources:
            break
        if favourite.id in used:
            continue
        used.add(favourite.id)
        seeds.append(
            Seed(
                media_id=favourite.id,
                weight=settings.weight_favourite,
                source_title=favourite.display_name,
                kind="favourite",
            )
        )

    favourite_ids = {favourite.id for favourite in favourites}
    rated = [
        entry
        for entry in entries
        if entry.is_rated and not entry.is_planning and entry.media_id not in favourite_ids
    ]
    rated.sort(key=lambda entry: entry.score, reverse=True)

    top_rated = 0
    for entry in rated:
        if top_rated >= settings.max_top_rated_sources:
            break
        if entry.media_id in used:
            continue
        used.add(entry.media_id)
        top_rated += 1
        seeds.append(
            Seed(
                media_id=entry.media_id,
                weight=settings.weight_top_rated,
                source_title=entry.title,
                kind="top_rated",
            )
        )

    logger.info(
        "Selected %s favourite + %s top rated sources",
        len(seeds) - top_rated,
        top_rated,
    )
    return seeds
