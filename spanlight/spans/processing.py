"""
Span context for suggestion requests.

When the user asks for alternatives to one highlighted span, the downstream
call gets the other labeled spans in simplified form plus the ones close to
the selection, instead of the whole document.
"""

from __future__ import annotations

import hashlib
import json
import math
from collections.abc import Iterable, Mapping
from typing import Any

from spanlight.core.taxonomy import normalize_role
from spanlight.spans.validator import as_span_mapping

DEFAULT_NEARBY_THRESHOLD = 100


def _finite(value: object) -> int | None:
    if isinstance(value, bool) or not isinstance(value, (int, float)) or not math.isfinite(value):
        return None
    return int(value)


def _span_text(span: Mapping[str, Any]) -> str:
    for key in ("text", "quote", "displayQuote"):
        value = span.get(key)
        if isinstance(value, str) and value.strip():
            return value.strip()
    return ""


def _selection_bounds(metadata: object) -> tuple[int, int] | None:
    if not isinstance(metadata, Mapping):
        return None
    inner = metadata.get("span")
    for source in (inner, metadata):
        if isinstance(source, Mapping):
            start, end = _finite(source.get("start")), _finite(source.get("end"))
            if start is not None and end is not None and end >= start:
                return start, end
    return None


def _simplify(span: Mapping[str, Any]) -> dict[str, Any] | None:
    text = _span_text(span)
    if not text:
        return None
    raw_role = span.get("role") or span.get("category")
    category = normalize_role(span.get("category") or raw_role)
    simplified: dict[str, Any] = {
        "text": text,
        "role": raw_role.strip() if isinstance(raw_role, str) and raw_role.strip() else category,
        "category": category,
    }
    confidence = span.get("confidence")
    if not isinstance(confidence, bool) and isinstance(confidence, (int, float)) and math.isfinite(confidence):
        simplified["confidence"] = float(confidence)
    start, end = _finite(span.get("start")), _finite(span.get("end"))
    if start is not None:
        simplified["start"] = start
    if end is not None:
        simplified["end"] = end
    return simplified


def build_simplified_spans(spans: Iterable[object] | None) -> list[dict[str, Any]]:
    simplified: list[dict[str, Any]] = []
    for span in spans or []:
        mapping = as_span_mapping(span)
        if mapping is None:
            continue
        item = _simplify(mapping)
        if item is not None:
            simplified.append(item)
    return simplified


def find_nearby_spans(
    metadata: object,
    all_spans: Iterable[object] | None,
    threshold: int = DEFAULT_NEARBY_THRESHOLD,
) -> list[dict[str, Any]]:
    """Spans within ``threshold`` characters of the selected span.

    ``distance`` is negative for spans before the selection and positive
    for spans after it. Spans overlapping the selection are excluded.
    """
    bounds = _selection_bounds(metadata)
    if bounds is None:
        return []
    selected_start, selected_end = bounds

    nearby: list[dict[str, Any]] = []
    for span in all_spans or []:
        mapping = as_span_mapping(span)
        if mapping is None:
            continue
        item = _simplify(mapping)
        if item is None or "start" not in item or "end" not in item:
            continue
        if item["end"] <= selected_start:
            distance = -(selected_start - item["end"])
            position = "before"
        elif item["start"] >= selected_end:
            distance = item["start"] - selected_end
            position = "after"
        else:
            continue
        if abs(distance) > threshold:
            continue
        item["distance"] = distance
        item["position"] = position
        nearby.append(item)

    nearby.sort(key=lambda item: (abs(item["distance"]), item["start"]))
    return nearby


def prepare_span_context(metadata: object, all_labeled_spans: Iterable[object] | None) -> dict[str, list[dict[str, Any]]]:
    spans = list(all_labeled_spans or [])
    return {
        "simplified_spans": build_simplified_spans(spans),
        "nearby_spans": find_nearby_spans(metadata, spans),
    }


def build_span_fingerprint(
    simplified_spans: list[dict[str, Any]],
    nearby_spans: list[dict[str, Any]],
) -> str:
    """Short stable digest of a span context, used in suggestion cache keys."""
    payload = json.dumps(
        {
            "spans": [[s.get("text"), s.get("category"), s.get("start"), s.get("end")] for s in simplified_spans],
            "nearby": [[s.get("text"), s.get("category"), s.get("distance")] for s in nearby_spans],
        },
        ensure_ascii=False,
        separators=(",", ":"),
    )
    return hashlib.sha256(payload.encode("utf-8")).hexdigest()[:16]
