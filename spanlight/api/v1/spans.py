"""Span labeling and highlight endpoints."""

from __future__ import annotations

import logging

from fastapi import APIRouter

from spanlight.api.deps import ClassifierDep, LabelingCacheDep
from spanlight.api.v1.schemas import (
    CacheStatsRead,
    HighlightRead,
    HighlightsRequest,
    HighlightsResponse,
    LabelSpansRequest,
    LabelSpansResponse,
    RenderRequest,
    RenderResponse,
    SpanContextRequest,
    SpanContextResponse,
    UnwrapRequest,
    UnwrapResponse,
)
from spanlight.core.request_context import log_context
from spanlight.services.labeling import label_text
from spanlight.services.renderer import render_highlights_html, unwrap_highlights_html
from spanlight.spans.conversion import Highlight, convert_labeled_spans_to_highlights
from spanlight.spans.policy import sanitize_options, sanitize_policy
from spanlight.spans.processing import build_span_fingerprint, prepare_span_context
from spanlight.text.canonical import CanonicalText
from spanlight.text.normalization import create_highlight_signature, sanitize_text

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/spans", tags=["spans"])


def _highlight_reads(highlights: list[Highlight]) -> list[HighlightRead]:
    return [HighlightRead.model_validate(highlight.to_payload()) for highlight in highlights]


@router.post("/label", response_model=LabelSpansResponse)
async def label_spans(payload: LabelSpansRequest, classifier=ClassifierDep, cache=LabelingCacheDep):
    if not payload.text.strip():
        raise ValueError("text must not be blank")
    options = sanitize_options(
        {
            "maxSpans": payload.max_spans,
            "minConfidence": payload.min_confidence,
            "templateVersion": payload.template_version,
        }
    )
    with log_context(session_id=payload.cache_id):
        outcome = await label_text(
            payload.text,
            classifier,
            cache,
            policy=sanitize_policy(payload.policy),
            options=options,
            cache_id=payload.cache_id,
        )
    highlights = convert_labeled_spans_to_highlights(outcome.spans, outcome.text, CanonicalText(outcome.text))
    return LabelSpansResponse(
        spans=outcome.spans,
        meta=outcome.meta,
        highlights=_highlight_reads(highlights),
        signature=outcome.signature,
        cache_hit=outcome.cache_hit,
    )


@router.post("/highlights", response_model=HighlightsResponse)
def convert_highlights(payload: HighlightsRequest):
    text = sanitize_text(payload.text)
    spans = [span.model_dump(exclude_none=True) for span in payload.spans]
    canonical = CanonicalText(text) if payload.include_graphemes else None
    highlights = convert_labeled_spans_to_highlights(spans, text, canonical, payload.context_chars)
    return HighlightsResponse(
        highlights=_highlight_reads(highlights),
        signature=create_highlight_signature(text),
    )


@router.post("/render", response_model=RenderResponse)
def render_spans(payload: RenderRequest):
    html, report = render_highlights_html(payload.html, payload.spans, payload.display_text)
    logger.info(
        "render_spans_complete",
        extra={"status": report.status, "rendered": report.rendered, "skipped": report.skipped},
    )
    return RenderResponse(
        html=html,
        status=report.status,
        rendered=report.rendered,
        skipped_overlap=report.skipped_overlap,
        skipped_mismatch=report.skipped_mismatch,
        skipped_empty_wrapper=report.skipped_empty_wrapper,
        span_ids=report.span_ids,
    )


@router.post("/unwrap", response_model=UnwrapResponse)
def unwrap_spans(payload: UnwrapRequest):
    html, removed = unwrap_highlights_html(payload.html)
    return UnwrapResponse(html=html, removed=removed)


@router.post("/context", response_model=SpanContextResponse)
def span_context(payload: SpanContextRequest):
    context = prepare_span_context(payload.metadata, payload.spans)
    return SpanContextResponse(
        simplified_spans=context["simplified_spans"],
        nearby_spans=context["nearby_spans"],
        fingerprint=build_span_fingerprint(context["simplified_spans"], context["nearby_spans"]),
    )


@router.get("/cache/stats", response_model=CacheStatsRead)
def cache_stats(cache=LabelingCacheDep):
    return CacheStatsRead.model_validate(cache.stats())


@router.delete("/cache", status_code=204)
def clear_cache(cache=LabelingCacheDep):
    cache.clear()
