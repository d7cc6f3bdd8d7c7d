from __future__ import annotations

import math
import re
from collections.abc import Iterable, Mapping
from dataclasses import dataclass

_WORD_CHAR = re.compile(r"\w")


@dataclass(frozen=True)
class SnappedRange:
    start: int
    end: int


def _is_word_char(char: str) -> bool:
    return bool(char) and _WORD_CHAR.match(char) is not None


def _as_finite_int(value: object) -> int | None:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return None
    if not math.isfinite(value):
        return None
    return int(value)


def is_word_boundary(text: str, index: int) -> bool:
    """True when ``index`` does not sit between two word characters."""
    if index <= 0 or index >= len(text):
        return True
    return not (_is_word_char(text[index - 1]) and _is_word_char(text[index]))


def snap_span_to_token_boundaries(text: str | None, start: object, end: object) -> SnappedRange | None:
    """Widen ``[start, end)`` outward until neither edge splits a word.

    Offsets are clamped into the text first. Returns ``None`` for empty
    text, non-numeric or non-finite offsets, and ranges that are empty
    after clamping.
    """
    if not text:
        return None
    raw_start = _as_finite_int(start)
    raw_end = _as_finite_int(end)
    if raw_start is None or raw_end is None:
        return None

    length = len(text)
    snapped_start = min(max(raw_start, 0), length)
    snapped_end = min(max(raw_end, 0), length)
    if snapped_end <= snapped_start:
        return None

    while snapped_start > 0 and not is_word_boundary(text, snapped_start):
        snapped_start -= 1
    while snapped_end < length and not is_word_boundary(text, snapped_end):
        snapped_end += 1

    if snapped_end <= snapped_start:
        return None
    return SnappedRange(start=snapped_start, end=snapped_end)


def _bounds(item: object) -> tuple[int, int]:
    if isinstance(item, Mapping):
        return item["start"], item["end"]
    if isinstance(item, tuple):
        return item[0], item[1]
    return item.start, item.end  # type: ignore[attr-defined]


def range_overlaps(ranges: Iterable[object], start: int, end: int) -> bool:
    """Half-open overlap test of ``[start, end)`` against stored ranges.

    Zero-width ranges, stored or queried, never overlap anything.
    """
    if end <= start:
        return False
    for item in ranges:
        range_start, range_end = _bounds(item)
        if range_end <= range_start:
            continue
        if range_start < end and start < range_end:
            return True
    return False
