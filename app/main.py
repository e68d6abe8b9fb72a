"""Entry point for the FastAPI-powered recommendation service."""

from __future__ import annotations

import logging
import math
from contextlib import AsyncExitStack, asynccontextmanager
from typing import Any

import httpx
from fastapi import FastAPI, HTTPException, Query
from fastapi.middleware.cors import CORSMiddleware

from . import __version__
from .config import settings
from .database import Database
from .services.anilist import (
    AniListClient,
    AniListError,
    NotFound,
    ProtocolError,
    RateLimited,
    SessionExpired,
)
from .services.cache import ResultCache
from .services.recommender import EmptyResult, RecommendationService

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

app: FastAPI


@asynccontextmanager
async def lifespan(fastapi_app: FastAPI):
    exit_stack = AsyncExitStack()
    anilist_http_client = await exit_stack.enter_async_context(
        httpx.AsyncClient(
            base_url=str(settings.anilist_api_url),
            timeout=httpx.Timeout(settings.anilist_timeout_seconds, connect=10.0),
        )
    )
    database = Database(settings.database_url)
    await database.create_all()

    anilist = AniListClient(settings, anilist_http_client)
    service = RecommendationService(
        settings, anilist, ResultCache(database.session_factory)
    )

    fastapi_app.state.recommendation_service = service
    fastapi_app.state.database = database

    try:
        yield
    finally:  # pragma: no cover - teardown path exercised at runtime
        await database.dispose()
        await exit_stack.aclose()


def create_app() -> FastAPI:
    fastapi_app = FastAPI(
        title=settings.app_name,
        description="Anime recommendations computed from your AniList favourites and ratings",
        version=__version__,
        lifespan=lifespan,
    )

    fastapi_app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_methods=["GET", "POST", "DELETE"],
        allow_headers=["*"],
    )

    register_routes(fastapi_app)
    return fastapi_app


def get_recommendation_service(app: FastAPI) -> RecommendationService:
    service = getattr(app.state, "recommendation_service", None)
    if not isinstance(service, RecommendationService):
        raise RuntimeError("Recommendation service not initialised")
    return service


def register_routes(fastapi_app: FastAPI) -> None:
    @fastapi_app.get("/healthz")
    async def healthcheck() -> dict[str, str]:
        return {"status": "ok"}

    @fastapi_app.get("/api/users/{username}/recommendations")
    async def recommendations(
        username: str,
        refresh: bool = False,
        genre: str | None = None,
        media_format: str | None = Query(default=None, alias="format"),
        limit: int | None = Query(default=None, ge=1, le=500),
    ) -> dict[str, Any]:
        service = get_recommendation_service(fastapi_app)
        try:
            outcome = await service.get_recommendations(username, force_refresh=refresh)
        except ValueError as exc:
            raise HTTPException(status_code=400, detail=str(exc)) from exc
        except AniListError as exc:
            raise _http_error(exc) from exc

        if isinstance(outcome, EmptyResult):
            return outcome.to_payload()
        return outcome.to_payload(genre=genre, media_format=media_format, limit=limit)

    @fastapi_app.delete("/api/users/{username}/cache")
    async def forget_results(username: str) -> dict[str, str]:
        service = get_recommendation_service(fastapi_app)
        try:
            await service.forget(username)
        except ValueError as exc:
            raise HTTPException(status_code=400, detail=str(exc)) from exc
        return {"status": "cleared"}

    @fastapi_app.post("/api/planning/{media_id}")
    async def add_to_planning(media_id: int) -> dict[str, Any]:
        service = get_recommendation_service(fastapi_app)
        try:
            entry = await service.add_to_planning(media_id)
        except AniListError as exc:
            raise _http_error(exc) from exc
        return {"id": entry.get("id"), "mediaId": media_id, "status": entry.get("status")}

    @fastapi_app.get("/api/viewer")
    async def viewer() -> dict[str, Any]:
        service = get_recommendation_service(fastapi_app)
        try:
            return await service.viewer()
        except AniListError as exc:
            raise _http_error(exc) from exc


def _http_error(exc: AniListError) -> HTTPException:
    """Translate an AniList failure into the matching HTTP error."""

    if isinstance(exc, NotFound):
        return HTTPException(status_code=404, detail=str(exc))
    if isinstance(exc, RateLimited):
        headers = None
        if exc.retry_after:
            headers = {"Retry-After": str(math.ceil(exc.retry_after))}
        return HTTPException(status_code=429, detail=str(exc), headers=headers)
    if isinstance(exc, SessionExpired):
        return HTTPException(status_code=401, detail=str(exc) or "Session expired")
    if isinstance(exc, ProtocolError):
        logger.warning("AniList protocol error: %s", exc)
        return HTTPException(status_code=502, detail=str(exc))
    logger.exception("Unexpected AniList failure: %s", exc)
    return HTTPException(status_code=502, detail=str(exc))


app = create_app()


def run() -> None:
    """Start the uvicorn server using the configured settings."""

    import uvicorn

    uvicorn.run(
        "app.main:app",
        host=settings.server_host,
        port=settings.server_port,
        reload=settings.environment == "development",
    )


if __name__ == "__main__":  # pragma: no cover - manual execution
    run()
