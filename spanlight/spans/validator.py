"""
Structural span validation.

The classifier's semantic judgement is trusted; this only checks that a span
is well-formed enough to render: it exists, carries text, names a category
the taxonomy knows, and (when the source is supplied) quotes text that is
really there.
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass
from typing import Any

from spanlight.core.taxonomy import resolve_category

MISSING_SPAN = "missing_span"
EMPTY_TEXT = "empty_text"
INVALID_TAXONOMY_ID = "invalid_taxonomy_id"
TEXT_NOT_IN_SOURCE = "text_not_in_source"


@dataclass(frozen=True)
class SpanValidationResult:
    span: Mapping[str, Any] | None
    passed: bool
    category: str | None
    reason: str | None

    def to_payload(self) -> dict[str, Any]:
        return {
            "span": dict(self.span) if self.span is not None else None,
            "pass": self.passed,
            "category": self.category,
            "reason": self.reason,
        }


def as_span_mapping(span: object) -> Mapping[str, Any] | None:
    if isinstance(span, Mapping):
        return span
    model_dump = getattr(span, "model_dump", None)
    if callable(model_dump):
        return model_dump(exclude_none=True)
    return None


def span_text(span: Mapping[str, Any], source_text: str | None = None) -> str:
    """The text a span claims to cover.

    Falls back to slicing ``source_text`` when the classifier sent offsets
    without a quote.
    """
    for key in ("text", "quote"):
        value = span.get(key)
        if isinstance(value, str) and value.strip():
            return value.strip()
    start, end = span.get("start"), span.get("end")
    if (
        source_text
        and isinstance(start, int)
        and isinstance(end, int)
        and not isinstance(start, bool)
        and not isinstance(end, bool)
        and 0 <= start < end <= len(source_text)
    ):
        return source_text[start:end].strip()
    return ""


def validate_span(span: object, source_text: str | None = None) -> SpanValidationResult:
    mapping = as_span_mapping(span)
    if mapping is None:
        return SpanValidationResult(span=None, passed=False, category=None, reason=MISSING_SPAN)

    text = span_text(mapping, source_text)
    raw_category = mapping.get("category") or mapping.get("role")
    if not text:
        return SpanValidationResult(
            span=mapping,
            passed=False,
            category=raw_category if isinstance(raw_category, str) else None,
            reason=EMPTY_TEXT,
        )

    category = resolve_category(raw_category)
    if category is None:
        return SpanValidationResult(
            span=mapping,
            passed=False,
            category=raw_category if isinstance(raw_category, str) else None,
            reason=INVALID_TAXONOMY_ID,
        )

    if source_text is not None and text not in source_text:
        return SpanValidationResult(span=mapping, passed=False, category=category, reason=TEXT_NOT_IN_SOURCE)

    return SpanValidationResult(span=mapping, passed=True, category=category, reason=None)
