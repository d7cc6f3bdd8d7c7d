"""Request/result records shared by the cache, scheduler and classifiers."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

from spanlight.spans.policy import LabelingOptions, LabelingPolicy


@dataclass(frozen=True)
class LabelingRequest:
    text: str
    max_spans: int
    min_confidence: float
    template_version: str
    policy: dict[str, Any] = field(default_factory=dict)
    cache_id: str | None = None

    @classmethod
    def build(
        cls,
        text: str,
        options: LabelingOptions,
        policy: LabelingPolicy,
        cache_id: str | None = None,
    ) -> "LabelingRequest":
        return cls(
            text=text,
            max_spans=options.max_spans,
            min_confidence=options.min_confidence,
            template_version=options.template_version,
            policy=policy.to_payload(),
            cache_id=cache_id,
        )

    def to_payload(self) -> dict[str, Any]:
        """The classifier wire contract."""
        return {
            "text": self.text,
            "maxSpans": self.max_spans,
            "minConfidence": self.min_confidence,
            "templateVersion": self.template_version,
            "policy": dict(self.policy),
        }


@dataclass
class LabelingResult:
    spans: list[dict[str, Any]] = field(default_factory=list)
    meta: dict[str, Any] | None = None


@dataclass(frozen=True)
class EmittedResult:
    spans: list[dict[str, Any]]
    meta: dict[str, Any] | None
    text: str
    signature: str
    cache_id: str | None
    source: str
