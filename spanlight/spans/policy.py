"""Labeling policy/options sanitation and the output filters they drive."""

from __future__ import annotations

import math
from collections.abc import Mapping
from dataclasses import dataclass
from typing import Any

from spanlight.core.settings import settings
from spanlight.core.taxonomy import get_group_for_category, normalize_role
from spanlight.text.normalization import clamp01, word_count


@dataclass(frozen=True)
class LabelingPolicy:
    non_technical_word_limit: int = 6
    allow_overlap: bool = False

    def to_payload(self) -> dict[str, Any]:
        return {
            "nonTechnicalWordLimit": self.non_technical_word_limit,
            "allowOverlap": self.allow_overlap,
        }


@dataclass(frozen=True)
class LabelingOptions:
    max_spans: int = 60
    min_confidence: float = 0.5
    template_version: str = "v1"

    def to_payload(self) -> dict[str, Any]:
        return {
            "maxSpans": self.max_spans,
            "minConfidence": self.min_confidence,
            "templateVersion": self.template_version,
        }


def default_policy() -> LabelingPolicy:
    return LabelingPolicy(
        non_technical_word_limit=settings.span_non_technical_word_limit,
        allow_overlap=False,
    )


def default_options() -> LabelingOptions:
    return LabelingOptions(
        max_spans=settings.span_max_spans,
        min_confidence=settings.span_min_confidence,
        template_version=settings.span_template_version,
    )


def _is_number(value: object) -> bool:
    return not isinstance(value, bool) and isinstance(value, (int, float))


def sanitize_policy(policy: object) -> LabelingPolicy:
    """Merge a caller policy onto the defaults.

    The word limit is kept only when it is a positive finite number;
    ``allow_overlap`` only when it is exactly ``True``.
    """
    defaults = default_policy()
    if isinstance(policy, LabelingPolicy):
        return policy
    if not isinstance(policy, Mapping):
        return defaults
    limit = policy.get("nonTechnicalWordLimit", policy.get("non_technical_word_limit"))
    if not (_is_number(limit) and math.isfinite(limit) and limit > 0):
        limit = defaults.non_technical_word_limit
    allow_overlap = policy.get("allowOverlap", policy.get("allow_overlap"))
    return LabelingPolicy(
        non_technical_word_limit=int(limit),
        allow_overlap=allow_overlap is True,
    )


def sanitize_options(options: object) -> LabelingOptions:
    """Merge caller options onto the defaults, rejecting out-of-range values."""
    defaults = default_options()
    if isinstance(options, LabelingOptions):
        return options
    if not isinstance(options, Mapping):
        return defaults
    max_spans = options.get("maxSpans", options.get("max_spans"))
    if not (_is_number(max_spans) and math.isfinite(max_spans) and max_spans > 0 and int(max_spans) == max_spans):
        max_spans = defaults.max_spans
    min_confidence = options.get("minConfidence", options.get("min_confidence"))
    if not (_is_number(min_confidence) and 0 <= min_confidence <= 1):
        min_confidence = defaults.min_confidence
    template_version = options.get("templateVersion", options.get("template_version"))
    if not isinstance(template_version, str) or not template_version.strip():
        template_version = defaults.template_version
    return LabelingOptions(
        max_spans=int(max_spans),
        min_confidence=float(min_confidence),
        template_version=template_version.strip(),
    )


def _confidence(span: Mapping[str, Any]) -> float:
    return clamp01(span.get("confidence"))


def apply_policy(
    spans: list[Mapping[str, Any]],
    policy: LabelingPolicy,
    options: LabelingOptions,
) -> list[Mapping[str, Any]]:
    """Filter classifier spans down to what the policy and options allow.

    Drops spans below ``min_confidence``, non-technical spans longer than the
    word limit, overlaps (unless allowed, higher confidence wins) and
    everything past ``max_spans`` by confidence. Input order is preserved.
    """
    kept: list[tuple[int, Mapping[str, Any]]] = []
    for position, span in enumerate(spans):
        if not isinstance(span, Mapping):
            continue
        if "confidence" in span and _confidence(span) < options.min_confidence:
            continue
        category = normalize_role(span.get("category") or span.get("role"))
        text = span.get("text")
        if (
            isinstance(text, str)
            and get_group_for_category(category) != "technical"
            and word_count(text) > policy.non_technical_word_limit
        ):
            continue
        kept.append((position, span))

    ranked = sorted(kept, key=lambda item: (-_confidence(item[1]), item[0]))
    if not policy.allow_overlap:
        accepted: list[tuple[int, Mapping[str, Any]]] = []
        for position, span in ranked:
            start, end = span.get("start"), span.get("end")
            if _is_number(start) and _is_number(end):
                if any(
                    _is_number(other.get("start"))
                    and _is_number(other.get("end"))
                    and other["start"] < end
                    and start < other["end"]
                    for _, other in accepted
                ):
                    continue
            accepted.append((position, span))
        ranked = accepted

    limited = ranked[: options.max_spans]
    return [span for _, span in sorted(limited, key=lambda item: item[0])]
