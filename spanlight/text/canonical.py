"""
Canonical (NFC) text with grapheme and UTF-16 offset conversion.

Python string indices are code points. Browser editors count UTF-16 code
units and users perceive grapheme clusters, so spans crossing that boundary
need conversions in both directions.

Grapheme segmentation follows the UAX #29 rules that matter for prompt text:
CR LF, Hangul syllable sequences, combining and spacing marks, prepended
concatenation marks, ZWJ emoji sequences, skin-tone modifiers, emoji tag
sequences and regional-indicator pairs. The Indic conjunct rule (GB9c) is
not applied, and ZWJ joins whatever follows it rather than only
pictographs.
"""

from __future__ import annotations

import unicodedata
from bisect import bisect_right
from functools import cached_property

from spanlight.text.normalization import sanitize_text

_ZWJ = "\u200d"
_EXTEND_CATEGORIES = {"Mn", "Me", "Mc"}
# Spacing marks outside category Mc (Thai and Lao AM).
_SPACING_MARKS = {"\u0e33", "\u0eb3"}
_PREPEND_RANGES = (
    (0x0600, 0x0605),
    (0x06DD, 0x06DD),
    (0x070F, 0x070F),
    (0x0890, 0x0891),
    (0x08E2, 0x08E2),
    (0x110BD, 0x110BD),
    (0x110CD, 0x110CD),
    (0x111C2, 0x111C3),
)


def _is_regional_indicator(char: str) -> bool:
    return 0x1F1E6 <= ord(char) <= 0x1F1FF


def _is_extend(char: str) -> bool:
    code = ord(char)
    if char == _ZWJ:
        return True
    if 0x1F3FB <= code <= 0x1F3FF:
        return True
    if 0xE0020 <= code <= 0xE007F:
        return True
    if char in _SPACING_MARKS:
        return True
    return unicodedata.category(char) in _EXTEND_CATEGORIES


def _is_prepend(char: str) -> bool:
    return any(low <= ord(char) <= high for low, high in _PREPEND_RANGES)


def _hangul_type(char: str) -> str | None:
    code = ord(char)
    if 0x1100 <= code <= 0x115F or 0xA960 <= code <= 0xA97C:
        return "L"
    if 0x1160 <= code <= 0x11A7 or 0xD7B0 <= code <= 0xD7C6:
        return "V"
    if 0x11A8 <= code <= 0x11FF or 0xD7CB <= code <= 0xD7FB:
        return "T"
    if 0xAC00 <= code <= 0xD7A3:
        return "LV" if (code - 0xAC00) % 28 == 0 else "LVT"
    return None


def _joins_hangul(previous: str, char: str) -> bool:
    before = _hangul_type(previous)
    after = _hangul_type(char)
    if before is None or after is None:
        return False
    if before == "L":
        return after in ("L", "V", "LV", "LVT")
    if before in ("LV", "V"):
        return after in ("V", "T")
    return after == "T"


def grapheme_starts(text: str) -> list[int]:
    """Code point index of the first character of every grapheme cluster."""
    starts: list[int] = []
    regional_run = 0
    for index, char in enumerate(text):
        if index == 0:
            starts.append(0)
            regional_run = 1 if _is_regional_indicator(char) else 0
            continue
        previous = text[index - 1]
        if previous == "\r" and char == "\n":
            continue
        if previous in "\r\n" or char in "\r\n":
            starts.append(index)
            regional_run = 0
            continue
        if _is_extend(char):
            continue
        if previous == _ZWJ or _is_prepend(previous):
            continue
        if _joins_hangul(previous, char):
            continue
        if _is_regional_indicator(char):
            if regional_run % 2 == 1:
                regional_run += 1
                continue
            regional_run += 1
        else:
            regional_run = 0
        starts.append(index)
    return starts


class CanonicalText:
    """NFC text plus lazily built grapheme and UTF-16 lookup tables."""

    def __init__(self, text: object):
        self.text = sanitize_text(text)

    def __len__(self) -> int:
        return len(self.text)

    def __repr__(self) -> str:
        return f"CanonicalText(length={len(self.text)})"

    @cached_property
    def _grapheme_starts(self) -> list[int]:
        return grapheme_starts(self.text)

    @cached_property
    def _utf16_offsets(self) -> list[int]:
        offsets = [0]
        total = 0
        for char in self.text:
            total += 2 if ord(char) > 0xFFFF else 1
            offsets.append(total)
        return offsets

    @property
    def grapheme_length(self) -> int:
        return len(self._grapheme_starts)

    @property
    def utf16_length(self) -> int:
        return self._utf16_offsets[-1]

    def grapheme_index_for_offset(self, offset: int) -> int:
        """Index of the grapheme containing code point ``offset``.

        Negative offsets map to 0 and offsets at or past the end map to the
        grapheme count.
        """
        if offset <= 0:
            return 0
        if offset >= len(self.text):
            return self.grapheme_length
        return bisect_right(self._grapheme_starts, offset) - 1

    def offset_for_grapheme_index(self, grapheme_index: int) -> int:
        if grapheme_index <= 0:
            return 0
        if grapheme_index >= self.grapheme_length:
            return len(self.text)
        return self._grapheme_starts[grapheme_index]

    def slice_graphemes(self, start: int, end: int | None = None) -> str:
        start_offset = self.offset_for_grapheme_index(start)
        end_offset = len(self.text) if end is None else self.offset_for_grapheme_index(end)
        return self.text[start_offset:end_offset]

    def to_utf16(self, offset: int) -> int:
        """Code point offset to UTF-16 code unit offset (clamped)."""
        offset = min(max(offset, 0), len(self.text))
        return self._utf16_offsets[offset]

    def from_utf16(self, units: int) -> int:
        """UTF-16 code unit offset to code point offset (clamped).

        An offset that falls between the halves of a surrogate pair rounds
        down to the start of that character.
        """
        if units <= 0:
            return 0
        if units >= self.utf16_length:
            return len(self.text)
        return bisect_right(self._utf16_offsets, units) - 1
