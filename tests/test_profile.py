from __future__ import annotations

from app.services.profile import build_profile
from conftest import make_entry


def test_profile_accumulates_tags_across_all_statuses() -> None:
    entries = [
        make_entry(1, score=9, tags=[("Magic", 80), ("School", 40)]),
        make_entry(2, status="PLANNING", tags=[("Magic", 61)]),
        make_entry(3, status="DROPPED", tags=[("School", 45)]),
    ]

    profile = build_profile(entries)

    assert profile.tags["Magic"].total_rank == 141
    assert profile.tags["Magic"].count == 2
    # 70.5 rounds half up
    assert profile.average_rank("Magic") == 71
    assert profile.average_rank("School") == 43
    assert profile.average_rank("Mecha") is None


def test_top_genres_break_ties_by_first_seen_order() -> None:
    entries = [
        make_entry(1, genres=["Drama", "Comedy"]),
        make_entry(2, genres=["Action", "Comedy"]),
        make_entry(3, genres=["Action", "Romance"]),
    ]

    profile = build_profile(entries)

    assert profile.top_genres(3) == ["Comedy", "Action", "Drama"]
    assert profile.top_genres() == ["Comedy", "Action", "Drama", "Romance"]


def test_top_genres_limited_to_k() -> None:
    entries = [make_entry(index, genres=[f"G{index}"]) for index in range(15)]

    assert len(build_profile(entries).top_genres(10)) == 10


def test_describe_tags_orders_by_strength() -> None:
    profile = build_profile(
        [make_entry(1, tags=[("Low", 10), ("High", 95), ("Mid", 50)])]
    )

    assert [name for name, _, _ in profile.describe_tags(2)] == ["High", "Mid"]


def test_empty_list_gives_empty_profile() -> None:
    profile = build_profile([])

    assert profile.is_empty()
    assert profile.top_genres() == []
