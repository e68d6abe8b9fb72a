"""Utility helpers for the AniPicks service."""

from __future__ import annotations

import math
from decimal import ROUND_HALF_UP, Decimal
from typing import Iterator, Sequence, TypeVar

T = TypeVar("T")


def normalize_username(value: str) -> str:
    """Return the cache key used for an AniList user name."""

    return (value or "").strip().casefold()


def round_half_up(value: float) -> int:
    """Round to the nearest integer with halves rounded upwards."""

    return int(math.floor(value + 0.5))


def round_score(value: float) -> float:
    """Round a score to one decimal place, halves rounded away from zero."""

    quantized = Decimal(repr(value)).quantize(Decimal("0.1"), rounding=ROUND_HALF_UP)
    return float(quantized)


def chunked(items: Sequence[T], size: int) -> Iterator[list[T]]:
    """Yield consecutive slices of ``items`` holding at most ``size`` elements."""

    if size <= 0:
        raise ValueError("chunk size must be positive")
    for start in range(0, len(items), size):
        yield list(items[start : start + size])
