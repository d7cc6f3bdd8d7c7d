"""
Relocate classifier quotes whose offsets drifted.

Language models quote text reliably but count characters badly, so when a
span's offsets do not point at its quote the quote is searched for in the
source: exact occurrences (closest to the claimed start), then a
case-insensitive match, then a fuzzy match scored by normalized
Levenshtein distance.
"""

from __future__ import annotations

import logging
import re
import unicodedata
from bisect import bisect_left
from dataclasses import dataclass, field

logger = logging.getLogger(__name__)

FUZZY_MAX_DISTANCE = 0.35
_ANCHOR_LENGTH = 6
_MAX_CANDIDATES = 120
_WINDOW_SLACK = 10
_QUOTE_CHARS = re.compile("[`\"'\u201c\u201d\u2018\u2019]")


@dataclass(frozen=True)
class MatchResult:
    start: int
    end: int


@dataclass
class MatchTelemetry:
    exact_matches: int = 0
    case_insensitive_matches: int = 0
    fuzzy_matches: int = 0
    failures: int = 0
    total_requests: int = 0


def _clean_for_match(value: object) -> str:
    if not isinstance(value, str):
        return ""
    decomposed = unicodedata.normalize("NFD", value)
    stripped = "".join(char for char in decomposed if not unicodedata.combining(char))
    stripped = _QUOTE_CHARS.sub("", stripped).replace("**", "")
    return re.sub(r"\s+", " ", stripped).lower().strip()


def levenshtein(a: str, b: str) -> int:
    if a == b:
        return 0
    if not a:
        return len(b)
    if not b:
        return len(a)
    previous = list(range(len(b) + 1))
    for i, char_a in enumerate(a):
        current = [i + 1]
        for j, char_b in enumerate(b):
            cost = 0 if char_a == char_b else 1
            current.append(min(current[j] + 1, previous[j + 1] + 1, previous[j] + cost))
        previous = current
    return previous[-1]


@dataclass
class SubstringPositionCache:
    """Occurrence lists per substring for the text currently being labeled."""

    telemetry: MatchTelemetry = field(default_factory=MatchTelemetry)
    _text: str | None = None
    _occurrences: dict[str, list[int]] = field(default_factory=dict)

    def clear(self) -> None:
        self._occurrences.clear()
        self._text = None

    def reset_telemetry(self) -> None:
        self.telemetry = MatchTelemetry()

    def _get_occurrences(self, text: str, substring: str) -> list[int]:
        if self._text != text:
            self._occurrences.clear()
            self._text = text
        cached = self._occurrences.get(substring)
        if cached is not None:
            return cached
        occurrences: list[int] = []
        index = text.find(substring)
        while index != -1:
            occurrences.append(index)
            index = text.find(substring, index + 1)
        self._occurrences[substring] = occurrences
        return occurrences

    def _fuzzy_find(self, text: str, substring: str) -> MatchResult | None:
        target = _clean_for_match(substring)
        if not target:
            return None
        lowered = text.lower()
        anchor = target[:_ANCHOR_LENGTH]

        candidates: list[int] = []
        index = lowered.find(anchor)
        while index != -1 and len(candidates) < _MAX_CANDIDATES:
            candidates.append(index)
            index = lowered.find(anchor, index + 1)
        if not candidates:
            step = max(1, len(target) // 4)
            for position in range(0, max(len(text) - len(target), 0) + 1, step):
                candidates.append(position)
                if len(candidates) >= _MAX_CANDIDATES:
                    break

        lengths = {len(substring), len(substring) + _WINDOW_SLACK // 2, max(1, len(substring) - _WINDOW_SLACK // 2)}
        best: tuple[float, int, int] | None = None
        for start in candidates:
            for length in sorted(lengths):
                window = text[start : min(len(text), start + length)]
                cleaned = _clean_for_match(window)
                if not cleaned:
                    continue
                score = levenshtein(target, cleaned) / max(len(target), len(cleaned))
                if best is None or score < best[0]:
                    best = (score, start, start + len(window))
        if best is None or best[0] > FUZZY_MAX_DISTANCE:
            return None
        return MatchResult(start=best[1], end=best[2])

    def find_best_match(self, text: str, substring: str, preferred_start: int | None = 0) -> MatchResult | None:
        if not substring:
            return None
        self.telemetry.total_requests += 1
        occurrences = self._get_occurrences(text, substring)

        if not occurrences:
            index = text.lower().find(substring.lower())
            if index != -1:
                self.telemetry.case_insensitive_matches += 1
                return MatchResult(start=index, end=index + len(substring))
            result = self._fuzzy_find(text, substring)
            if result is None:
                self.telemetry.failures += 1
                logger.warning("substring_match_failed", extra={"substring_preview": substring[:50]})
            else:
                self.telemetry.fuzzy_matches += 1
                logger.debug("substring_fuzzy_match", extra={"start": result.start, "end": result.end})
            return result

        self.telemetry.exact_matches += 1
        preferred = preferred_start if isinstance(preferred_start, int) and not isinstance(preferred_start, bool) else 0
        position = bisect_left(occurrences, preferred)
        neighbours = occurrences[max(0, position - 1) : position + 1]
        best = min(neighbours, key=lambda occurrence: (abs(occurrence - preferred), occurrence))
        if preferred and abs(best - preferred) > 100:
            logger.debug(
                "substring_offset_drift",
                extra={"preferred": preferred, "found": best, "distance": abs(best - preferred)},
            )
        return MatchResult(start=best, end=best + len(substring))
