"""Fan-out aggregation of per-seed recommendations."""

from __future__ import annotations

import itertools
from typing import Any

import httpx
import pytest

from app.models import Seed
from app.services.anilist import AniListClient, SessionExpired
from app.services.fanout import FanoutAggregator
from conftest import FakeAniListClient, build_settings, make_title


def _seed(media_id: int, weight: float, kind: str = "favourite") -> Seed:
    return Seed(media_id=media_id, weight=weight, source_title=f"Source {media_id}", kind=kind)  # type: ignore[arg-type]


@pytest.mark.anyio("asyncio")
async def test_weights_and_reasons_accumulate_per_candidate() -> None:
    x, y = make_title(100), make_title(200)
    client = FakeAniListClient(recommendations={1: [x], 2: [x, y], 3: [y]})
    seeds = [_seed(1, 2), _seed(2, 2), _seed(3, 1, "top_rated")]

    result = await FanoutAggregator(client).aggregate(seeds)

    assert list(result.candidates) == [100, 200]
    assert result.candidates[100].base_score == 4
    assert result.candidates[200].base_score == 3
    assert [reason.source_title for reason in result.candidates[100].reasons] == [
        "Source 1",
        "Source 2",
    ]
    assert [reason.kind for reason in result.candidates[200].reasons] == [
        "favourite",
        "top_rated",
    ]


@pytest.mark.anyio("asyncio")
async def test_first_seen_payload_is_kept() -> None:
    first = make_title(100, english="First copy")
    second = make_title(100, english="Second copy")
    client = FakeAniListClient(recommendations={1: [first], 2: [second]})

    result = await FanoutAggregator(client).aggregate([_seed(1, 2), _seed(2, 1)])

    assert result.candidates[100].media.display_title() == "First copy"


@pytest.mark.anyio("asyncio")
async def test_base_score_is_independent_of_seed_order() -> None:
    titles = {index: make_title(index) for index in range(100, 104)}
    recommendations = {
        1: [titles[100], titles[101]],
        2: [titles[101], titles[102]],
        3: [titles[100], titles[103]],
        4: [titles[101]],
    }
    seeds = [_seed(1, 2), _seed(2, 2), _seed(3, 1, "top_rated"), _seed(4, 1, "top_rated")]

    totals = set()
    for ordering in itertools.permutations(seeds):
        client = FakeAniListClient(recommendations=recommendations, batch_size=2)
        result = await FanoutAggregator(client).aggregate(list(ordering))
        totals.add(
            tuple(sorted((media_id, entry.base_score) for media_id, entry in result.candidates.items()))
        )

    assert totals == {((100, 3.0), (101, 5.0), (102, 2.0), (103, 1.0))}


@pytest.mark.anyio("asyncio")
async def test_seeds_are_split_into_sequential_batches() -> None:
    client = FakeAniListClient(batch_size=12)
    seeds = [_seed(index, 1, "top_rated") for index in range(1, 26)]
    progress: list[tuple[int, int]] = []

    result = await FanoutAggregator(client).aggregate(
        seeds, on_batch=lambda done, total: progress.append((done, total))
    )

    assert [len(batch) for batch in client.batches] == [12, 12, 1]
    assert client.batches[0][0] == 1
    assert result.batches == 3
    assert progress == [(12, 25), (24, 25), (25, 25)]
    assert result.candidates == {}


@pytest.mark.anyio("asyncio")
async def test_failed_batch_is_skipped() -> None:
    client = FakeAniListClient(
        recommendations={1: [make_title(100)], 3: [make_title(300)]},
        failing_ids={1},
        batch_size=2,
    )
    seeds = [_seed(1, 2), _seed(2, 2), _seed(3, 1, "top_rated")]

    result = await FanoutAggregator(client).aggregate(seeds)

    assert result.failed_batches == 1
    assert list(result.candidates) == [300]


@pytest.mark.anyio("asyncio")
async def test_expired_session_in_one_batch_is_skipped() -> None:
    class ExpiringOnceClient(FakeAniListClient):
        async def fetch_recommendation_batch(self, media_ids):  # type: ignore[override]
            if not self.batches:
                self.batches.append(list(media_ids))
                raise SessionExpired("Invalid token")
            return await super().fetch_recommendation_batch(media_ids)

    client = ExpiringOnceClient(
        recommendations={1: [make_title(100)], 2: [make_title(100)], 3: [make_title(300)]},
        batch_size=1,
    )

    result = await FanoutAggregator(client).aggregate(
        [_seed(1, 2), _seed(2, 2), _seed(3, 1, "top_rated")]
    )

    assert result.failed_batches == 1
    assert result.batches == 3
    assert result.candidates[100].base_score == 2
    assert result.candidates[300].base_score == 1


@pytest.mark.anyio("asyncio")
async def test_rejected_token_is_dropped_and_later_batches_succeed() -> None:
    """After AniList rejects the token, the remaining batches go out without it."""

    seen_authorization: list[str | None] = []

    def handler(request: httpx.Request) -> httpx.Response:
        authorization = request.headers.get("authorization")
        seen_authorization.append(authorization)
        if authorization:
            return httpx.Response(200, json={"errors": [{"message": "Invalid token", "status": 400}]})
        node: dict[str, Any] = {"mediaRecommendation": {"id": 500, "title": {"romaji": "Mushishi"}}}
        return httpx.Response(200, json={"data": {"m0": {"recommendations": {"nodes": [node]}}}})

    http_client = httpx.AsyncClient(
        transport=httpx.MockTransport(handler), base_url="https://graphql.example"
    )
    client = AniListClient(
        build_settings(ANILIST_ACCESS_TOKEN="stale-token", RECOMMENDATION_BATCH_SIZE=1),
        http_client,
    )

    try:
        result = await FanoutAggregator(client).aggregate([_seed(1, 2), _seed(2, 2)])
    finally:
        await http_client.aclose()

    assert result.failed_batches == 1
    assert list(result.candidates) == [500]
    assert result.candidates[500].base_score == 2
    assert client.access_token is None
    assert seen_authorization == ["Bearer stale-token", None]
