"""High level orchestration of the recommendation pipeline."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable, Iterable, Sequence

from ..config import Settings
from ..models import CandidateEntry, Seed
from ..utils import normalize_username
from .anilist import AniListClient, AniListError, NotFound, SessionExpired
from .cache import CachedResults, ResultCache
from .fanout import FanoutAggregator
from .profile import build_profile
from .ranking import diversify
from .scoring import refine_candidates
from .sources import select_seeds

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[int, int, str], None]

PIPELINE_STEPS = 5
EMPTY_MESSAGE = "No recommendations yet. Add favourites or rate more anime!"


@dataclass(slots=True)
class EmptyResult:
    """The pipeline finished without a single candidate to show."""

    username: str
    message: str = EMPTY_MESSAGE

    def to_payload(self) -> dict[str, Any]:
        return {"username": self.username, "status": "empty", "message": self.message}


@dataclass(slots=True)
class RecommendationReport:
    """Outcome of one pipeline run."""

    username: str
    recommendations: list[CandidateEntry]
    seeds: list[Seed] = field(default_factory=list)
    favourite_count: int = 0
    deferred_count: int = 0
    failed_batches: int = 0
    top_genres: list[str] = field(default_factory=list)

    def to_payloads(self) -> list[dict[str, Any]]:
        return [entry.to_payload() for entry in self.recommendations]


@dataclass(slots=True)
class RecommendationResponse:
    """Ranked results served to clients, fresh or from the cache."""

    username: str
    results: list[dict[str, Any]]
    generated_at: datetime
    stale: bool = False
    from_cache: bool = False

    def age_hours(self, now: datetime | None = None) -> int:
        age = (now or datetime.utcnow()) - self.generated_at
        return max(0, round(age.total_seconds() / 3600))

    def to_payload(
        self,
        *,
        genre: str | None = None,
        media_format: str | None = None,
        limit: int | None = None,
    ) -> dict[str, Any]:
        filtered = filter_results(self.results, genre=genre, media_format=media_format)
        if limit is not None:
            filtered = filtered[:limit]
        genres, formats = available_filters(self.results)
        return {
            "username": self.username,
            "status": "ok",
            "generatedAt": self.generated_at.isoformat(),
            "stale": self.stale,
            "fromCache": self.from_cache,
            "ageHours": self.age_hours(),
            "total": len(self.results),
            "count": len(filtered),
            "genres": genres,
            "formats": formats,
            "results": filtered,
        }


class RecommendationPipeline:
    """Favourites and list in, ranked and diversified candidates out."""

    def __init__(self, settings: Settings, client: AniListClient):
        self._settings = settings
        self._client = client

    async def run(
        self,
        username: str,
        *,
        on_progress: ProgressCallback | None = None,
    ) -> RecommendationReport | EmptyResult:
        """Compute recommendations for ``username`` from scratch."""

        settings = self._settings
        progress = on_progress or _ignore_progress

        progress(1, PIPELINE_STEPS, "Fetching favourites and anime list")
        favourites, entries = await asyncio.gather(
            self._client.fetch_favourites(username),
            self._client.fetch_full_list(username),
        )

        seeds = select_seeds(favourites, entries, settings)
        profile = build_profile(entries)
        top_genres = profile.top_genres(settings.top_genre_count)
        if profile.is_empty():
            logger.info("No tags or genres on the list of %s, affinity bonuses stay at zero", username)
        else:
            logger.info("Genre profile for %s: %s", username, ", ".join(top_genres) or "-")
            logger.debug("Tag profile for %s: %s", username, profile.describe_tags())

        if not seeds:
            logger.info("No favourites or rated titles for %s", username)
            return EmptyResult(username=username)

        progress(2, PIPELINE_STEPS, f"Analysing {len(seeds)} sources")
        aggregator = FanoutAggregator(self._client, batch_size=settings.recommendation_batch_size)
        fanout = await aggregator.aggregate(
            seeds,
            on_batch=lambda done, total: progress(
                3, PIPELINE_STEPS, f"Recommendations: {done}/{total}"
            ),
        )

        progress(4, PIPELINE_STEPS, "Filtering seen titles, matching tags and genres")
        refined = refine_candidates(fanout.candidates, entries, profile, settings)

        progress(5, PIPELINE_STEPS, "Sorting and diversifying")
        ranked = diversify(refined, settings.diversity_cap)

        if not ranked.ordered:
            return EmptyResult(username=username)

        report = RecommendationReport(
            username=username,
            recommendations=ranked.ordered,
            seeds=seeds,
            favourite_count=len(favourites),
            deferred_count=ranked.deferred_count,
            failed_batches=fanout.failed_batches,
            top_genres=top_genres,
        )
        self._log_report(report)
        return report

    @staticmethod
    def _log_report(report: RecommendationReport) -> None:
        logger.info(
            "Recommendations for %s: %s sources, %s results, %s deferred for genre diversity",
            report.username,
            len(report.seeds),
            len(report.recommendations),
            report.deferred_count,
        )
        if not logger.isEnabledFor(logging.DEBUG):
            return
        for entry in report.recommendations[:30]:
            logger.debug(
                "%5.1f (base %.1f + %.1f) %-40s %-14s %s",
                entry.score,
                entry.base_score,
                entry.tag_bonus,
                entry.media.display_title()[:40],
                entry.primary_genre or "-",
                " | ".join(reason.source_title for reason in entry.reasons),
            )


class RecommendationService:
    """Serves cached recommendations and re-runs the pipeline when stale."""

    def __init__(
        self,
        settings: Settings,
        client: AniListClient,
        cache: ResultCache,
        pipeline: RecommendationPipeline | None = None,
    ):
        self._settings = settings
        self._client = client
        self._cache = cache
        self._pipeline = pipeline or RecommendationPipeline(settings, client)
        self._locks: dict[str, asyncio.Lock] = {}

    async def get_recommendations(
        self,
        username: str,
        *,
        force_refresh: bool = False,
        on_progress: ProgressCallback | None = None,
    ) -> RecommendationResponse | EmptyResult:
        """Return recommendations for ``username``, computing them if needed."""

        display_username = (username or "").strip()
        key = normalize_username(display_username)
        if not key:
            raise ValueError("An AniList user name is required")

        lock = self._locks.setdefault(key, asyncio.Lock())
        async with lock:
            cached = None if force_refresh else await self._cache.load(key)
            if cached is not None and not cached.is_stale(self._settings.response_cache_seconds):
                return self._from_cache(cached)

            try:
                outcome = await self._pipeline.run(display_username, on_progress=on_progress)
            except (NotFound, SessionExpired):
                raise
            except AniListError as exc:
                if cached is None:
                    raise
                logger.warning(
                    "Refresh for %s failed, serving stale results: %s", key, exc
                )
                return self._from_cache(cached)

            if isinstance(outcome, EmptyResult):
                return outcome
            stored = await self._cache.store(display_username, outcome.to_payloads())
            return RecommendationResponse(
                username=stored.username,
                results=stored.results,
                generated_at=stored.generated_at,
            )

    async def add_to_planning(self, media_id: int) -> dict[str, Any]:
        """Put a recommended title on the signed-in user's planning list."""

        entry = await self._client.save_planning(media_id)
        logger.info("Added media %s to the planning list", media_id)
        return entry

    async def viewer(self) -> dict[str, Any]:
        return await self._client.fetch_viewer()

    async def forget(self, username: str) -> None:
        """Drop the stored results for ``username``."""

        key = normalize_username(username)
        if not key:
            raise ValueError("An AniList user name is required")
        async with self._locks.setdefault(key, asyncio.Lock()):
            await self._cache.clear(key)
        logger.info("Cleared cached results for %s", key)

    def _from_cache(self, cached: CachedResults) -> RecommendationResponse:
        return RecommendationResponse(
            username=cached.username,
            results=cached.results,
            generated_at=cached.generated_at,
            stale=cached.is_stale(self._settings.response_cache_seconds),
            from_cache=True,
        )


def filter_results(
    results: Sequence[dict[str, Any]],
    *,
    genre: str | None = None,
    media_format: str | None = None,
) -> list[dict[str, Any]]:
    """Keep results having ``genre`` among their genres and the given format."""

    filtered: list[dict[str, Any]] = []
    for result in results:
        media = result.get("media") or {}
        if genre and genre not in (media.get("genres") or []):
            continue
        if media_format and media.get("format") != media_format:
            continue
        filtered.append(result)
    return filtered


def available_filters(results: Iterable[dict[str, Any]]) -> tuple[list[str], list[str]]:
    """Return the sorted genres and formats present in ``results``."""

    genres: set[str] = set()
    formats: set[str] = set()
    for result in results:
        media = result.get("media") or {}
        genres.update(genre for genre in media.get("genres") or [] if isinstance(genre, str))
        if isinstance(media.get("format"), str):
            formats.add(media["format"])
    return sorted(genres), sorted(formats)


def _ignore_progress(step: int, total: int, message: str) -> None:
    logger.debug("[%s/%s] %s", step, total, message)
