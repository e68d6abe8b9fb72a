"""Utilities for communicating with the AniList GraphQL API."""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Sequence

import httpx
from pydantic import ValidationError

from ..config import Settings
from ..models import FavouriteTitle, ListEntry, Title, TitleNames, display_name

logger = logging.getLogger(__name__)


class AniListError(Exception):
    """Base class for failures surfaced by the AniList boundary."""


class NotFound(AniListError):
    """The requested user (or media) does not exist on AniList."""


class RateLimited(AniListError):
    """AniList kept answering 429 after the retry budget was spent."""

    def __init__(self, message: str, *, retry_after: float | None = None):
        super().__init__(message)
        self.retry_after = retry_after


class SessionExpired(AniListError):
    """The held access token is missing, invalid or expired."""


class ProtocolError(AniListError):
    """AniList answered with something we could not interpret."""


FAVOURITES_QUERY = """
query ($username: String!, $page: Int) {
  User(name: $username) {
    favourites {
      anime(page: $page, perPage: 25) {
        pageInfo { hasNextPage }
        nodes {
          id
          title { romaji english }
        }
      }
    }
  }
}
"""

FULL_LIST_QUERY = """
query ($username: String!) {
  MediaListCollection(userName: $username, type: ANIME, sort: SCORE_DESC) {
    lists {
      status
      entries {
        mediaId
        score(format: POINT_10)
        status
        media {
          title { romaji english }
          format
          genres
          tags { name rank }
        }
      }
    }
  }
}
"""

VIEWER_QUERY = """
query {
  Viewer {
    id
    name
    avatar { medium large }
  }
}
"""

SAVE_PLANNING_MUTATION = """
mutation ($mediaId: Int!) {
  SaveMediaListEntry(mediaId: $mediaId, status: PLANNING) {
    id
    status
  }
}
"""

RECOMMENDATION_FIELDS = """
          mediaRecommendation {
            id
            title { romaji english }
            coverImage { large extraLarge }
            format
            episodes
            season
            seasonYear
            meanScore
            genres
            tags { name rank }
            siteUrl
          }
"""


class AniListClient:
    """Thin wrapper around the AniList GraphQL endpoint."""

    def __init__(self, settings: Settings, http_client: httpx.AsyncClient):
        self._settings = settings
        self._client = http_client
        self._access_token = settings.anilist_access_token
        self._max_retries = settings.anilist_retry_limit
        self._backoff_base = settings.anilist_backoff_base
        self._backoff_cap = settings.anilist_backoff_cap
        self._sleep = asyncio.sleep

    @property
    def access_token(self) -> str | None:
        return self._access_token

    @property
    def batch_size(self) -> int:
        return self._settings.recommendation_batch_size

    def invalidate_token(self) -> None:
        """Drop the held credential after AniList rejected it."""

        if self._access_token is not None:
            logger.info("Discarding rejected AniList access token")
        self._access_token = None

    def _headers(self) -> dict[str, str]:
        headers = {
            "Content-Type": "application/json",
            "Accept": "application/json",
            "User-Agent": f"{self._settings.app_name} (anipicks)",
        }
        if self._access_token:
            headers["Authorization"] = f"Bearer {self._access_token}"
        return headers

    async def fetch_favourites(self, username: str) -> list[FavouriteTitle]:
        """Fetch every favourite anime of ``username`` across all pages."""

        favourites: list[FavouriteTitle] = []
        page = 1
        while True:
            data = await self._execute(
                FAVOURITES_QUERY,
                {"username": username, "page": page},
                operation="favourites",
            )
            user = data.get("User")
            if user is None:
                raise NotFound(f'User "{username}" not found')
            connection = _dig(user, "favourites", "anime")
            if not isinstance(connection, dict):
                raise ProtocolError("Unexpected AniList favourites structure")
            nodes = connection.get("nodes") or []
            if not isinstance(nodes, list):
                raise ProtocolError("Unexpected AniList favourites structure")

            for node in nodes:
                if not isinstance(node, dict) or not isinstance(node.get("id"), int):
                    raise ProtocolError("Favourite entry without a numeric id")
                names = _parse_names(node.get("title"))
                favourites.append(
                    FavouriteTitle(id=node["id"], display_name=display_name(names, node["id"]))
                )

            page_info = connection.get("pageInfo") or {}
            if not page_info.get("hasNextPage"):
                break
            page += 1

        logger.debug("Fetched %s favourites for %s over %s page(s)", len(favourites), username, page)
        return favourites

    async def fetch_full_list(self, username: str) -> list[ListEntry]:
        """Fetch the user's whole anime list, every status bucket flattened."""

        data = await self._execute(
            FULL_LIST_QUERY, {"username": username}, operation="full list"
        )
        collection = data.get("MediaListCollection")
        if collection is None:
            raise NotFound(f'User "{username}" not found')
        lists = collection.get("lists") if isinstance(collection, dict) else None
        if not isinstance(lists, list):
            raise ProtocolError("Unexpected AniList list collection structure")

        entries: list[ListEntry] = []
        for bucket in lists:
            if not isinstance(bucket, dict):
                raise ProtocolError("Unexpected AniList list bucket")
            for raw in bucket.get("entries") or []:
                entries.append(self._parse_list_entry(raw, bucket.get("status")))

        entries.sort(key=lambda entry: entry.score, reverse=True)
        return entries

    async def fetch_recommendation_batch(
        self, media_ids: Sequence[int]
    ) -> dict[int, list[Title]]:
        """Fetch top recommendations for several titles in one round trip."""

        if not media_ids:
            return {}
        if len(media_ids) > self.batch_size:
            raise ValueError(
                f"At most {self.batch_size} titles can be batched, got {len(media_ids)}"
            )

        query = self.build_batch_query(
            media_ids, per_page=self._settings.recommendations_per_source
        )
        data = await self._execute(
            query, operation="recommendation batch", allow_missing=True
        )

        results: dict[int, list[Title]] = {}
        for index, media_id in enumerate(media_ids):
            nodes = _dig(data.get(f"m{index}"), "recommendations", "nodes")
            titles: list[Title] = []
            if isinstance(nodes, list):
                for node in nodes:
                    media = node.get("mediaRecommendation") if isinstance(node, dict) else None
                    if not media:
                        continue
                    try:
                        titles.append(Title.model_validate(media))
                    except ValidationError as exc:
                        raise ProtocolError(
                            f"Invalid recommendation payload for media {media_id}"
                        ) from exc
            results.setdefault(int(media_id), []).extend(titles)
        return results

    async def save_planning(self, media_id: int) -> dict[str, Any]:
        """Add ``media_id`` to the signed-in user's PLANNING list."""

        if not self._access_token:
            raise SessionExpired("Sign in to AniList to add titles to your list")
        data = await self._execute(
            SAVE_PLANNING_MUTATION, {"mediaId": int(media_id)}, operation="save planning"
        )
        entry = data.get("SaveMediaListEntry")
        if not isinstance(entry, dict):
            raise ProtocolError("Unexpected AniList mutation response")
        return entry

    async def fetch_viewer(self) -> dict[str, Any]:
        """Return the profile behind the held access token."""

        if not self._access_token:
            raise SessionExpired("No AniList access token configured")
        data = await self._execute(VIEWER_QUERY, operation="viewer")
        viewer = data.get("Viewer")
        if not isinstance(viewer, dict):
            raise ProtocolError("AniList returned no viewer")
        return viewer

    @staticmethod
    def build_batch_query(media_ids: Sequence[int], *, per_page: int) -> str:
        """Return a compound query with one aliased Media lookup per id."""

        fragments = [
            (
                f"  m{index}: Media(id: {int(media_id)}) {{\n"
                f"    recommendations(page: 1, perPage: {int(per_page)}, sort: RATING_DESC) {{\n"
                f"      nodes {{{RECOMMENDATION_FIELDS}      }}\n"
                "    }\n"
                "  }"
            )
            for index, media_id in enumerate(media_ids)
        ]
        return "query {\n" + "\n".join(fragments) + "\n}"

    def _backoff_delay(self, attempt: int) -> float:
        return min(self._backoff_base * (2**attempt), self._backoff_cap)

    @staticmethod
    def _retry_after(response: httpx.Response) -> float | None:
        header_value = response.headers.get("retry-after")
        if not header_value:
            return None
        try:
            value = float(header_value)
        except (TypeError, ValueError):
            return None
        return value if value > 0 else None

    async def _execute(
        self,
        query: str,
        variables: dict[str, Any] | None = None,
        *,
        operation: str,
        allow_missing: bool = False,
    ) -> dict[str, Any]:
        payload = {"query": query, "variables": variables or {}}
        attempt = 0
        while True:
            try:
                response = await self._client.post("/", json=payload, headers=self._headers())
            except httpx.HTTPError as exc:
                if attempt < self._max_retries:
                    backoff = self._backoff_delay(attempt)
                    attempt += 1
                    logger.info(
                        "Transient error talking to AniList (%s) during %s. Retrying in %.1fs",
                        exc.__class__.__name__,
                        operation,
                        backoff,
                    )
                    await self._sleep(backoff)
                    continue
                raise ProtocolError(f"AniList unreachable during {operation}: {exc}") from exc

            if response.status_code == 429:
                hint = self._retry_after(response)
                if attempt >= self._max_retries:
                    raise RateLimited(
                        "AniList API: Too Many Requests",
                        retry_after=hint or self._backoff_delay(attempt),
                    )
                backoff = hint or self._backoff_delay(attempt)
                attempt += 1
                logger.warning(
                    "AniList rate limit hit during %s, retry #%s in %.1fs",
                    operation,
                    attempt,
                    backoff,
                )
                await self._sleep(backoff)
                continue

            if 500 <= response.status_code < 600:
                if attempt < self._max_retries:
                    backoff = self._backoff_delay(attempt)
                    attempt += 1
                    logger.info(
                        "AniList %s during %s. Retrying in %.1fs",
                        response.status_code,
                        operation,
                        backoff,
                    )
                    await self._sleep(backoff)
                    continue
                raise ProtocolError(f"AniList API {response.status_code} during {operation}")
            break

        return self._parse_response(response, operation=operation, allow_missing=allow_missing)

    def _parse_response(
        self, response: httpx.Response, *, operation: str, allow_missing: bool
    ) -> dict[str, Any]:
        try:
            body = response.json()
        except ValueError as exc:
            raise ProtocolError(
                f"AniList API {response.status_code}: non-JSON response"
            ) from exc
        if not isinstance(body, dict):
            raise ProtocolError(f"Unexpected AniList response structure for {operation}")

        errors = body.get("errors") or []
        data = body.get("data")
        if errors:
            messages = [
                str(error.get("message"))
                for error in errors
                if isinstance(error, dict) and error.get("message")
            ]
            message = ", ".join(messages) or "unknown error"
            statuses = {
                error.get("status") for error in errors if isinstance(error, dict)
            }
            if response.status_code == 401 or "invalid token" in message.lower():
                self.invalidate_token()
                raise SessionExpired(message)
            if response.status_code == 404 or statuses == {404}:
                if allow_missing and isinstance(data, dict):
                    logger.warning("AniList skipped missing media during %s: %s", operation, message)
                    return data
                raise NotFound(message)
            raise ProtocolError(f"AniList API: {message}")

        if response.status_code == 401:
            self.invalidate_token()
            raise SessionExpired("AniList rejected the access token")
        if response.status_code >= 400:
            raise ProtocolError(f"AniList API {response.status_code} during {operation}")
        if not isinstance(data, dict):
            raise ProtocolError(f"AniList response for {operation} carried no data")
        return data

    @staticmethod
    def _parse_list_entry(raw: object, bucket_status: object) -> ListEntry:
        if not isinstance(raw, dict):
            raise ProtocolError("Unexpected AniList list entry")
        media = raw.get("media") or {}
        if not isinstance(media, dict):
            raise ProtocolError("Unexpected AniList list entry media")
        media_id = raw.get("mediaId")
        try:
            return ListEntry(
                media_id=media_id,
                status=raw.get("status") or bucket_status,
                score=raw.get("score"),
                title=display_name(_parse_names(media.get("title")), media_id),
                genres=media.get("genres"),
                tags=media.get("tags"),
                format=media.get("format"),
            )
        except (ValidationError, TypeError) as exc:
            raise ProtocolError(f"Invalid list entry for media {media_id}") from exc


def _parse_names(raw: object) -> TitleNames | None:
    if not isinstance(raw, dict):
        return None
    try:
        return TitleNames.model_validate(raw)
    except ValidationError:
        return None


def _dig(payload: object, *keys: str) -> object:
    current = payload
    for key in keys:
        if not isinstance(current, dict):
            return None
        current = current.get(key)
    return current
