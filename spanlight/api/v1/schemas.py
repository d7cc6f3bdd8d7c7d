from typing import Any

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class SpanIn(CamelModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="allow")

    id: str | None = None
    category: str | None = None
    role: str | None = None
    start: Any = None
    end: Any = None
    confidence: float | None = None
    text: str | None = None
    quote: str | None = None


class LabelSpansRequest(CamelModel):
    text: str = Field(min_length=1)
    max_spans: int | None = None
    min_confidence: float | None = None
    template_version: str | None = None
    policy: dict[str, Any] | None = None
    cache_id: str | None = None


class HighlightRead(CamelModel):
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
    source: str
    validator_pass: bool
    version: str
    start_grapheme: int | None = None
    end_grapheme: int | None = None
    confidence: float | None = None


class LabelSpansResponse(CamelModel):
    spans: list[dict[str, Any]]
    meta: dict[str, Any] | None = None
    highlights: list[HighlightRead]
    signature: str
    cache_hit: bool


class HighlightsRequest(CamelModel):
    text: str
    spans: list[SpanIn] = Field(default_factory=list)
    include_graphemes: bool = True
    context_chars: int | None = Field(default=None, ge=0, le=500)


class HighlightsResponse(CamelModel):
    highlights: list[HighlightRead]
    signature: str


class RenderRequest(CamelModel):
    html: str
    spans: list[dict[str, Any]] = Field(default_factory=list)
    display_text: str | None = None


class RenderResponse(CamelModel):
    html: str
    status: str
    rendered: int
    skipped_overlap: int
    skipped_mismatch: int
    skipped_empty_wrapper: int
    span_ids: list[str]


class UnwrapRequest(CamelModel):
    html: str


class UnwrapResponse(CamelModel):
    html: str
    removed: int


class SpanContextRequest(CamelModel):
    metadata: dict[str, Any] | None = None
    spans: list[dict[str, Any]] = Field(default_factory=list)


class SpanContextResponse(CamelModel):
    simplified_spans: list[dict[str, Any]]
    nearby_spans: list[dict[str, Any]]
    fingerprint: str


class CacheStatsRead(CamelModel):
    hits: int
    misses: int
    sets: int
    errors: int
    size: int
    max_entries: int
    hit_rate: float
    persistent: bool


class CategoryRead(CamelModel):
    id: str
    label: str
    description: str
    group: str
    color: str
    bg: str | None = None
    border: str | None = None
    attributes: list[str]


class TaxonomyRead(CamelModel):
    version: str
    default_category: str
    categories: list[CategoryRead]
    legacy_aliases: dict[str, str]
