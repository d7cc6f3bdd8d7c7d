"""
Labeling orchestration: cache, classifier, normalization and delivery.

``label_text`` is the one-shot path used by the HTTP surface.
``SpanLabelingPipeline`` is the per-editor path: it debounces text changes
through a :class:`LabelingScheduler`, serves cache hits immediately, falls
back to the last cached result when the classifier fails, and delivers
results through a :class:`LabelingSession`.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable, Mapping
from dataclasses import dataclass, field
from typing import Any

from spanlight.core.metrics import record_dropped_span
from spanlight.core.settings import settings
from spanlight.services.classifier import SpanClassifier
from spanlight.services.contracts import EmittedResult, LabelingRequest, LabelingResult
from spanlight.services.emitter import LabelingSession
from spanlight.services.labeling_cache import LabelingCache
from spanlight.services.scheduler import CancellationToken, LabelingScheduler
from spanlight.spans.conversion import coerce_offset
from spanlight.spans.policy import (
    LabelingOptions,
    LabelingPolicy,
    apply_policy,
    default_options,
    default_policy,
)
from spanlight.spans.substring_cache import SubstringPositionCache
from spanlight.spans.validator import as_span_mapping, validate_span
from spanlight.text.canonical import CanonicalText
from spanlight.text.normalization import clamp01, hash_string, sanitize_text

logger = logging.getLogger(__name__)

STATUS_IDLE = "idle"
STATUS_LOADING = "loading"
STATUS_REFRESHING = "refreshing"
STATUS_SUCCESS = "success"
STATUS_ERROR = "error"
STATUS_STALE = "stale"

SOURCE_INITIAL = "initial"
SOURCE_CACHE = "cache"
SOURCE_NETWORK = "network"
SOURCE_CACHE_FALLBACK = "cache-fallback"
SOURCE_REFRESH_CACHE = "refresh-cache"


def _convert_utf16_offsets(span: dict[str, Any], canonical: CanonicalText) -> None:
    for key in ("start", "end"):
        value = coerce_offset(span.get(key))
        if value is not None:
            span[key] = canonical.from_utf16(int(value))


def _relocate(span: dict[str, Any], text: str, positions: SubstringPositionCache) -> bool:
    """Point the span's offsets at its quote. False when it cannot be placed."""
    quote = span.get("text")
    start = coerce_offset(span.get("start"))
    end = coerce_offset(span.get("end"))
    if not isinstance(quote, str) or not quote.strip():
        return start is not None and end is not None

    if start is not None and end is not None and text[int(start) : int(end)] == quote:
        span["start"], span["end"] = int(start), int(end)
        return True

    match = positions.find_best_match(text, quote, preferred_start=int(start) if start is not None else 0)
    if match is None:
        return False
    span["start"], span["end"] = match.start, match.end
    span["text"] = text[match.start : match.end]
    return True


def normalize_labeling_result(
    spans: list[Any],
    text: str,
    policy: LabelingPolicy,
    options: LabelingOptions,
    offset_unit: str | None = None,
    positions: SubstringPositionCache | None = None,
) -> list[dict[str, Any]]:
    """Repair, validate and filter raw classifier spans for ``text``.

    Offsets are converted from UTF-16 code units when ``offset_unit`` is
    ``"utf16"``. Spans whose offsets do not match their quote are relocated
    by searching for the quote. Invalid spans are dropped and counted.
    """
    unit = (offset_unit or settings.classifier_offset_unit).lower()
    canonical = CanonicalText(text) if unit == "utf16" else None
    positions = positions or SubstringPositionCache()

    normalized: list[dict[str, Any]] = []
    for raw in spans or []:
        mapping = as_span_mapping(raw)
        if mapping is None:
            record_dropped_span("missing_span")
            continue
        span = dict(mapping)
        if canonical is not None:
            _convert_utf16_offsets(span, canonical)
        if not _relocate(span, text, positions):
            record_dropped_span("unlocatable_text")
            continue

        result = validate_span(span, text)
        if not result.passed:
            record_dropped_span(result.reason or "invalid")
            logger.debug(
                "span_rejected",
                extra={"reason": result.reason, "category": result.category},
            )
            continue
        span["category"] = result.category
        if "confidence" in span:
            span["confidence"] = clamp01(span["confidence"])
        normalized.append(span)

    return [dict(span) for span in apply_policy(normalized, policy, options)]


@dataclass
class LabelingOutcome:
    spans: list[dict[str, Any]]
    meta: dict[str, Any] | None
    text: str
    signature: str
    cache_hit: bool


async def label_text(
    text: str,
    classifier: SpanClassifier,
    cache: LabelingCache,
    policy: LabelingPolicy | None = None,
    options: LabelingOptions | None = None,
    cache_id: str | None = None,
) -> LabelingOutcome:
    normalized = sanitize_text(text)
    request = LabelingRequest.build(
        normalized,
        options or default_options(),
        policy or default_policy(),
        cache_id,
    )
    signature = hash_string(normalized)

    cached = cache.get(request)
    if cached is not None:
        logger.info("label_spans_cache_hit", extra={"span_count": len(cached.spans)})
        return LabelingOutcome(cached.spans, cached.meta, normalized, cached.signature, True)

    result = await classifier.label(request)
    spans = normalize_labeling_result(
        result.spans,
        normalized,
        policy or default_policy(),
        options or default_options(),
    )
    cache.set(request, spans, result.meta, signature)
    logger.info(
        "label_spans_complete",
        extra={"span_count": len(spans), "raw_count": len(result.spans), "backend": classifier.name},
    )
    return LabelingOutcome(spans, result.meta, normalized, signature, False)


@dataclass
class LabelingState:
    spans: list[dict[str, Any]] = field(default_factory=list)
    meta: dict[str, Any] | None = None
    status: str = STATUS_IDLE
    error: BaseException | None = None


def _initial_data_matches(initial: Mapping[str, Any] | None, text: str, template_version: str) -> bool:
    if not isinstance(initial, Mapping):
        return False
    spans = initial.get("spans")
    meta = initial.get("meta")
    return (
        isinstance(spans, list)
        and bool(spans)
        and initial.get("signature") == hash_string(text)
        and isinstance(meta, Mapping)
        and meta.get("version") == template_version
    )


class SpanLabelingPipeline:
    """Per-editor labeling state machine.

    Statuses: ``idle``, ``loading`` (first request), ``refreshing`` (new
    request while a previous result is shown), ``success``, ``error`` and
    ``stale`` (classifier failed, a cached result is shown instead).
    """

    def __init__(
        self,
        classifier: SpanClassifier,
        *,
        cache: LabelingCache | None = None,
        on_result: Callable[[EmittedResult], Any] | None = None,
        policy: LabelingPolicy | None = None,
        options: LabelingOptions | None = None,
        cache_id: str | None = None,
        initial_data: Mapping[str, Any] | None = None,
        enabled: bool = True,
        debounce_ms: int | None = None,
        smart_debounce: bool | None = None,
        timeout_seconds: float | None = None,
        offset_unit: str | None = None,
    ) -> None:
        self._classifier = classifier
        self._cache = cache or LabelingCache()
        self._session = LabelingSession(on_result)
        self.policy = policy or default_policy()
        self.options = options or default_options()
        self.cache_id = cache_id
        self.initial_data = initial_data
        self.enabled = enabled
        self._offset_unit = offset_unit
        self._positions = SubstringPositionCache()
        self._last_request: LabelingRequest | None = None
        self.state = LabelingState()
        self._scheduler = LabelingScheduler(
            self._run,
            self._handle_success,
            self._handle_error,
            debounce_ms=debounce_ms,
            smart_debounce=smart_debounce,
            timeout_seconds=timeout_seconds,
        )

    @property
    def scheduler(self) -> LabelingScheduler:
        return self._scheduler

    def _emit(self, spans: list[dict[str, Any]], meta: dict[str, Any] | None, text: str, signature: str, source: str) -> None:
        self._session.emit(
            {"spans": spans, "meta": meta, "text": text, "signature": signature, "cacheId": self.cache_id},
            source,
        )

    def update_text(self, text: str) -> asyncio.Task | None:
        normalized = sanitize_text(text)
        if not self.enabled or not normalized.strip():
            self._scheduler.cancel_pending()
            self._last_request = None
            self.state = LabelingState()
            return None

        request = LabelingRequest.build(normalized, self.options, self.policy, self.cache_id)
        self._last_request = request

        if _initial_data_matches(self.initial_data, normalized, self.options.template_version):
            self._scheduler.cancel_pending()
            spans = list(self.initial_data["spans"])
            meta = dict(self.initial_data["meta"])
            signature = self.initial_data["signature"]
            self.state = LabelingState(spans=spans, meta=meta, status=STATUS_SUCCESS)
            self._cache.set(request, spans, meta, signature)
            self._emit(spans, meta, normalized, signature, SOURCE_INITIAL)
            return None

        return self._schedule(request, immediate=False)

    def refresh(self, use_cache: bool = False) -> asyncio.Task | None:
        """Relabel the current text without the debounce.

        The cache is bypassed unless ``use_cache`` is set, in which case a
        hit is delivered with source ``refresh-cache``.
        """
        if self._last_request is None:
            return None
        return self._schedule(self._last_request, immediate=True, use_cache=use_cache)

    def _schedule(self, request: LabelingRequest, immediate: bool, use_cache: bool = False) -> asyncio.Task | None:
        self._scheduler.cancel_pending()

        if not immediate or use_cache:
            cached = self._cache.get(request)
            if cached is not None:
                self.state = LabelingState(spans=cached.spans, meta=cached.meta, status=STATUS_SUCCESS)
                source = SOURCE_REFRESH_CACHE if immediate else SOURCE_CACHE
                self._emit(cached.spans, cached.meta, request.text, cached.signature, source)
                return None

        previous = self.state
        status = STATUS_REFRESHING if previous.status == STATUS_SUCCESS and not immediate else STATUS_LOADING
        self.state = LabelingState(spans=previous.spans, meta=previous.meta, status=status)
        return self._scheduler.schedule(request, immediate=immediate)

    async def _run(self, request: LabelingRequest, token: CancellationToken) -> LabelingResult:
        result = await self._classifier.label(request, token)
        token.raise_if_cancelled()
        spans = normalize_labeling_result(
            result.spans,
            request.text,
            self.policy,
            self.options,
            offset_unit=self._offset_unit,
            positions=self._positions,
        )
        return LabelingResult(spans=spans, meta=result.meta)

    def _handle_success(self, result: LabelingResult, request: LabelingRequest) -> None:
        signature = hash_string(request.text)
        self._cache.set(request, result.spans, result.meta, signature)
        self.state = LabelingState(spans=result.spans, meta=result.meta, status=STATUS_SUCCESS)
        self._emit(result.spans, result.meta, request.text, signature, SOURCE_NETWORK)

    def _handle_error(self, exc: BaseException, request: LabelingRequest) -> None:
        cached = self._cache.get(request)
        if cached is not None:
            age = cached.age_seconds()
            meta = {**(cached.meta or {}), "source": SOURCE_CACHE_FALLBACK, "cacheAge": age, "error": str(exc)}
            logger.warning("label_spans_cache_fallback", extra={"error": str(exc), "cache_age": age})
            self.state = LabelingState(spans=cached.spans, meta=meta, status=STATUS_STALE, error=exc)
            self._emit(cached.spans, meta, request.text, cached.signature, SOURCE_CACHE_FALLBACK)
            return

        logger.warning("label_spans_failed", extra={"error": str(exc), "error_type": type(exc).__name__})
        self.state = LabelingState(spans=self.state.spans, meta=self.state.meta, status=STATUS_ERROR, error=exc)

    async def wait_idle(self) -> None:
        await self._scheduler.wait_idle()

    async def close(self) -> None:
        await self._scheduler.close()
        self._session.reset()

