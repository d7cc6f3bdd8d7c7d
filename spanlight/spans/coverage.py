from __future__ import annotations

from dataclasses import dataclass

from spanlight.text.token_boundaries import range_overlaps


@dataclass(frozen=True)
class Interval:
    start: int
    end: int


def has_overlap(coverage: list[Interval], start: int, end: int) -> bool:
    """True when ``[start, end)`` intersects anything already covered."""
    return range_overlaps(coverage, start, end)


def add_to_coverage(coverage: list[Interval], start: int, end: int) -> None:
    coverage.append(Interval(start=start, end=end))
