"""Timestamped storage of computed recommendation lists."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any

from sqlalchemy import delete
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from ..db_models import RecommendationCacheRecord
from ..utils import normalize_username

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class CachedResults:
    """A stored recommendation list and when it was computed."""

    username: str
    results: list[dict[str, Any]]
    generated_at: datetime

    def age(self, now: datetime | None = None) -> timedelta:
        return (now or datetime.utcnow()) - self.generated_at

    def is_stale(self, ttl_seconds: int, now: datetime | None = None) -> bool:
        return self.age(now) > timedelta(seconds=ttl_seconds)


class ResultCache:
    """Key to timestamped-result store keyed by the normalised user name."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self._session_factory = session_factory

    async def load(self, username: str) -> CachedResults | None:
        """Return the cached list for ``username`` regardless of its age."""

        key = normalize_username(username)
        async with self._session_factory() as session:
            record = await session.get(RecommendationCacheRecord, key)
            if record is None or not record.payload:
                return None
            cached = CachedResults(
                username=record.display_username,
                results=list(record.payload),
                generated_at=record.generated_at,
            )
        logger.debug(
            "Cache hit for %s: %s results (age %s)",
            key,
            len(cached.results),
            cached.age(),
        )
        return cached

    async def store(
        self,
        username: str,
        results: list[dict[str, Any]],
        *,
        generated_at: datetime | None = None,
    ) -> CachedResults:
        """Replace the cached list for ``username``."""

        key = normalize_username(username)
        timestamp = generated_at or datetime.utcnow()
        async with self._session_factory() as session:
            record = await session.get(RecommendationCacheRecord, key)
            if record is None:
                record = RecommendationCacheRecord(username=key)
                session.add(record)
            record.display_username = username.strip()
            record.payload = results
            record.result_count = len(results)
            record.generated_at = timestamp
            await session.commit()
        logger.info("Cached %s results for %s", len(results), key)
        return CachedResults(username=username.strip(), results=results, generated_at=timestamp)

    async def clear(self, username: str | None = None) -> None:
        """Forget one user's results, or every cached result."""

        async with self._session_factory() as session:
            stmt = delete(RecommendationCacheRecord)
            if username is not None:
                stmt = stmt.where(
                    RecommendationCacheRecord.username == normalize_username(username)
                )
            await session.execute(stmt)
            await session.commit()

