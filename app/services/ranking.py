"""Score ordering with a per-primary-genre diversity cap."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Sequence

from ..models import CandidateEntry

UNKNOWN_GENRE = "Unknown"


@dataclass(slots=True)
class RankedResults:
    ordered: list[CandidateEntry] = field(default_factory=list)
    deferred_count: int = 0


def diversify(entries: Sequence[CandidateEntry], cap: int = 5) -> RankedResults:
    """Sort by score and push genre overflow behind everything else.

    One greedy pass over the score-sorted list: the first ``cap`` entries of
    each primary genre stay in place, later ones are deferred (never
    dropped) and appended in their score order.
    """

    ranked = sorted(entries, key=lambda entry: entry.score, reverse=True)

    kept: list[CandidateEntry] = []
    deferred: list[CandidateEntry] = []
    genre_counts: dict[str, int] = {}
    for entry in ranked:
        genre = entry.primary_genre or UNKNOWN_GENRE
        count = genre_counts.get(genre, 0)
        if count < cap:
            kept.append(entry)
            genre_counts[genre] = count + 1
        else:
            deferred.append(entry)

    return RankedResults(ordered=kept + deferred, deferred_count=len(deferred))
