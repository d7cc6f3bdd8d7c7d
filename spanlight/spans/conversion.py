"""
Raw classifier spans to rendering-ready highlights.

Conversion never raises on bad input: spans with non-numeric, inverted or
empty offsets are dropped, out-of-range offsets are clamped. The output is
sorted by ``(start, end)`` and fragments of one semantic unit (same parent
category, separated only by whitespace) are merged.
"""

from __future__ import annotations

import logging
import math
from collections.abc import Iterable, Mapping
from dataclasses import asdict, dataclass, replace
from typing import Any, Protocol

from spanlight.core.metrics import record_dropped_span
from spanlight.core.settings import settings
from spanlight.core.taxonomy import get_parent_category, is_attribute, normalize_role
from spanlight.spans.validator import as_span_mapping

logger = logging.getLogger(__name__)

HIGHLIGHT_SOURCE = "llm"
HIGHLIGHT_VERSION = "llm-v1"

_PAYLOAD_KEYS = {
    "display_start": "displayStart",
    "display_end": "displayEnd",
    "display_quote": "displayQuote",
    "left_ctx": "leftCtx",
    "right_ctx": "rightCtx",
    "display_left_ctx": "displayLeftCtx",
    "display_right_ctx": "displayRightCtx",
    "start_grapheme": "startGrapheme",
    "end_grapheme": "endGrapheme",
    "validator_pass": "validatorPass",
}


class GraphemeIndexer(Protocol):
    def grapheme_index_for_offset(self, offset: int) -> int: ...


@dataclass(frozen=True)
class Highlight:
    id: str
    category: str
    role: str
    start: int
    end: int
    display_start: int
    display_end: int
    quote: str
    display_quote: str
    left_ctx: str
    right_ctx: str
    display_left_ctx: str
    display_right_ctx: str
    source: str = HIGHLIGHT_SOURCE
    validator_pass: bool = True
    version: str = HIGHLIGHT_VERSION
    start_grapheme: int | None = None
    end_grapheme: int | None = None
    confidence: float | None = None

    @property
    def parent_category(self) -> str:
        return get_parent_category(self.category) or self.category

    def to_payload(self) -> dict[str, Any]:
        payload: dict[str, Any] = {}
        for key, value in asdict(self).items():
            if value is None and key in ("start_grapheme", "end_grapheme", "confidence"):
                continue
            payload[_PAYLOAD_KEYS.get(key, key)] = value
        return payload


def coerce_offset(value: object) -> float | None:
    """Finite number from an int, float or numeric string; otherwise ``None``."""
    if isinstance(value, bool):
        return None
    if isinstance(value, str):
        try:
            value = float(value.strip())
        except ValueError:
            return None
    if not isinstance(value, (int, float)) or not math.isfinite(value):
        return None
    return value


def _role_label(raw: object, category: str) -> str:
    if isinstance(raw, str) and raw.strip():
        return raw.strip()
    return category


def _context(text: str, start: int, end: int, window: int) -> tuple[str, str]:
    return text[max(0, start - window) : start], text[end : end + window]


def _unique_id(candidate: str, used: set[str]) -> str:
    if candidate not in used:
        return candidate
    counter = 2
    while f"{candidate}_{counter}" in used:
        counter += 1
    return f"{candidate}_{counter}"


def _build_highlight(
    raw: Mapping[str, Any],
    text: str,
    canonical: object | None,
    window: int,
) -> Highlight | None:
    start = coerce_offset(raw.get("start"))
    end = coerce_offset(raw.get("end"))
    if start is None or end is None:
        record_dropped_span("non_finite_offset")
        return None
    if end <= start:
        record_dropped_span("inverted_offset")
        return None

    length = len(text)
    clamped_start = min(max(int(start), 0), length)
    clamped_end = min(max(int(end), 0), length)
    if clamped_end <= clamped_start:
        record_dropped_span("empty_slice")
        return None

    raw_category = raw.get("category") or raw.get("role")
    category = normalize_role(raw_category)
    quote = text[clamped_start:clamped_end]
    left_ctx, right_ctx = _context(text, clamped_start, clamped_end, window)

    start_grapheme = end_grapheme = None
    indexer = getattr(canonical, "grapheme_index_for_offset", None)
    if callable(indexer):
        start_grapheme = indexer(clamped_start)
        end_grapheme = indexer(clamped_end)

    confidence = raw.get("confidence")
    if isinstance(confidence, bool) or not isinstance(confidence, (int, float)) or not math.isfinite(confidence):
        confidence = None

    span_id = raw.get("id")
    if not isinstance(span_id, str) or not span_id.strip():
        span_id = f"llm_{category}_{clamped_start}_{clamped_end}"

    return Highlight(
        id=span_id.strip(),
        category=category,
        role=_role_label(raw.get("role") or raw.get("category"), category),
        start=clamped_start,
        end=clamped_end,
        display_start=clamped_start,
        display_end=clamped_end,
        quote=quote,
        display_quote=quote,
        left_ctx=left_ctx,
        right_ctx=right_ctx,
        display_left_ctx=left_ctx,
        display_right_ctx=right_ctx,
        start_grapheme=start_grapheme,
        end_grapheme=end_grapheme,
        confidence=float(confidence) if confidence is not None else None,
    )


def _more_specific(current: str, candidate: str) -> str:
    if not is_attribute(current) and is_attribute(candidate):
        return candidate
    return current


def _mergeable(current: Highlight, following: Highlight, text: str) -> bool:
    if current.parent_category != following.parent_category:
        return False
    if following.start < current.end:
        return False
    return not text[current.end : following.start].strip()


def merge_fragmented_highlights(
    highlights: list[Highlight],
    text: str,
    canonical: object | None = None,
    window: int | None = None,
) -> list[Highlight]:
    """Merge same-parent neighbours separated only by whitespace.

    ``highlights`` must already be sorted by ``(start, end)``. A merged
    highlight takes the id ``<first id>_merged``; when that id is already
    taken a numeric suffix keeps ids unique within the result.
    """
    if not highlights:
        return []
    window = settings.highlight_context_chars if window is None else window
    indexer = getattr(canonical, "grapheme_index_for_offset", None)

    used_ids = {highlight.id for highlight in highlights}
    merged: list[Highlight] = []
    current = highlights[0]
    base_id = current.id
    merged_any = False

    for following in highlights[1:]:
        if _mergeable(current, following, text):
            end = max(current.end, following.end)
            quote = text[current.start : end]
            _, right_ctx = _context(text, current.start, end, window)
            confidences = [c for c in (current.confidence, following.confidence) if c is not None]
            current = replace(
                current,
                category=_more_specific(current.category, following.category),
                end=end,
                display_end=end,
                quote=quote,
                display_quote=quote,
                right_ctx=right_ctx,
                display_right_ctx=right_ctx,
                end_grapheme=indexer(end) if callable(indexer) else current.end_grapheme,
                confidence=max(confidences) if confidences else None,
            )
            merged_any = True
            continue
        merged.append(_finish_merge(current, base_id, merged_any, used_ids))
        current = following
        base_id = following.id
        merged_any = False

    merged.append(_finish_merge(current, base_id, merged_any, used_ids))
    return merged


def _finish_merge(highlight: Highlight, base_id: str, merged_any: bool, used_ids: set[str]) -> Highlight:
    if not merged_any:
        return highlight
    merged_id = _unique_id(f"{base_id}_merged", used_ids)
    used_ids.add(merged_id)
    return replace(highlight, id=merged_id)


def convert_labeled_spans_to_highlights(
    spans: Iterable[object] | None,
    text: str | None,
    canonical: GraphemeIndexer | None = None,
    context_chars: int | None = None,
) -> list[Highlight]:
    """Turn raw classifier spans into sorted, merged highlights over ``text``."""
    if not spans or not text:
        return []
    window = settings.highlight_context_chars if context_chars is None else context_chars

    highlights: list[Highlight] = []
    seen: set[tuple[int, int, str]] = set()
    used_ids: set[str] = set()
    for raw in spans:
        mapping = as_span_mapping(raw)
        if mapping is None:
            record_dropped_span("missing_span")
            continue
        highlight = _build_highlight(mapping, text, canonical, window)
        if highlight is None:
            continue
        key = (highlight.start, highlight.end, highlight.category)
        if key in seen:
            continue
        seen.add(key)
        unique_id = _unique_id(highlight.id, used_ids)
        used_ids.add(unique_id)
        if unique_id != highlight.id:
            highlight = replace(highlight, id=unique_id)
        highlights.append(highlight)

    highlights.sort(key=lambda highlight: (highlight.start, highlight.end))
    merged = merge_fragmented_highlights(highlights, text, canonical, window)
    if len(merged) != len(highlights):
        logger.debug(
            "highlights_merged",
            extra={"before": len(highlights), "after": len(merged)},
        )
    return merged
