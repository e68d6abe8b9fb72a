"""Batched recommendation fan-out merged into a single candidate map."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Callable, Protocol, Sequence

from ..models import CandidateEntry, Seed, Title
from ..utils import chunked
from .anilist import AniListError

logger = logging.getLogger(__name__)

BatchProgress = Callable[[int, int], None]


class RecommendationSource(Protocol):
    batch_size: int

    async def fetch_recommendation_batch(
        self, media_ids: Sequence[int]
    ) -> dict[int, list[Title]]: ...


@dataclass(slots=True)
class FanoutResult:
    """Candidates keyed by media id, in first-recommended order."""

    candidates: dict[int, CandidateEntry] = field(default_factory=dict)
    batches: int = 0
    failed_batches: int = 0


class FanoutAggregator:
    """Query every seed's recommendations and accumulate weighted hits."""

    def __init__(self, source: RecommendationSource, *, batch_size: int | None = None):
        self._source = source
        self._batch_size = batch_size or source.batch_size

    async def aggregate(
        self,
        seeds: Sequence[Seed],
        *,
        on_batch: BatchProgress | None = None,
    ) -> FanoutResult:
        """Run the batches one after another and merge their results.

        A batch that fails is logged and skipped; the run carries on with the
        remaining batches. A rejected token is dropped by the client before it
        raises, so later batches go out anonymously.
        """

        result = FanoutResult()
        done = 0
        for batch in chunked(seeds, self._batch_size):
            result.batches += 1
            try:
                recommendations = await self._source.fetch_recommendation_batch(
                    [seed.media_id for seed in batch]
                )
            except AniListError as exc:
                result.failed_batches += 1
                logger.warning(
                    "Recommendation batch %s (%s sources) failed, skipping: %s",
                    result.batches,
                    len(batch),
                    exc,
                )
            else:
                self._merge(result.candidates, batch, recommendations)

            done += len(batch)
            if on_batch is not None:
                on_batch(done, len(seeds))

        logger.info(
            "Fan-out over %s sources produced %s candidates (%s/%s batches failed)",
            len(seeds),
            len(result.candidates),
            result.failed_batches,
            result.batches,
        )
        return result

    @staticmethod
    def _merge(
        candidates: dict[int, CandidateEntry],
        batch: Sequence[Seed],
        recommendations: dict[int, list[Title]],
    ) -> None:
        for seed in batch:
            for media in recommendations.get(seed.media_id, []):
                entry = candidates.get(media.id)
                if entry is None:
                    entry = candidates[media.id] = CandidateEntry(media=media)
                entry.add_contribution(seed)
