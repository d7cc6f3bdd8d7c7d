"""Tests for label_text and the per-editor labeling pipeline."""

import pytest

from spanlight.core.exceptions import ClassifierError
from spanlight.services.labeling import (
    SOURCE_CACHE,
    SOURCE_CACHE_FALLBACK,
    SOURCE_INITIAL,
    SOURCE_NETWORK,
    SOURCE_REFRESH_CACHE,
    STATUS_ERROR,
    STATUS_IDLE,
    STATUS_LOADING,
    STATUS_REFRESHING,
    STATUS_STALE,
    STATUS_SUCCESS,
    SpanLabelingPipeline,
    label_text,
    normalize_labeling_result,
)
from spanlight.services.labeling_cache import LabelingCache
from spanlight.spans.policy import LabelingOptions, LabelingPolicy
from spanlight.text.normalization import hash_string

TEXT = "A cat in the golden hour"
GOOD_SPANS = [
    {"text": "golden hour", "category": "lighting.timeOfDay", "confidence": 0.9, "start": 13, "end": 24},
    {"text": "cat", "category": "subject.identity", "confidence": 0.8, "start": 2, "end": 5},
]


def _cache():
    return LabelingCache(max_entries=10, ttl_seconds=60)


class TestNormalizeLabelingResult:
    def test_relocates_validates_and_filters(self):
        raw = [
            {"text": "golden hour", "category": "timeOfDay", "confidence": 0.9, "start": 0, "end": 5},
            {"text": "cat", "category": "bogus"},
            {"text": "dog", "category": "subject"},
            "not a span",
        ]
        spans = normalize_labeling_result(raw, TEXT, LabelingPolicy(), LabelingOptions())
        assert spans == [
            {"text": "golden hour", "category": "lighting.timeOfDay", "confidence": 0.9, "start": 13, "end": 24}
        ]

    def test_confidence_is_clamped(self):
        raw = [{"text": "cat", "category": "subject", "confidence": 7, "start": 2, "end": 5}]
        spans = normalize_labeling_result(raw, TEXT, LabelingPolicy(), LabelingOptions())
        assert spans[0]["confidence"] == 1.0

    def test_utf16_offsets_are_converted(self):
        text = "\U0001F3A5 cat cat"
        raw = [{"text": "cat", "category": "subject", "start": 7, "end": 10}]
        spans = normalize_labeling_result(raw, text, LabelingPolicy(), LabelingOptions(), offset_unit="utf16")
        assert (spans[0]["start"], spans[0]["end"]) == (6, 9)


class TestLabelText:
    @pytest.mark.anyio
    async def test_second_call_is_served_from_cache(self, classifier_factory):
        classifier = classifier_factory(spans=GOOD_SPANS)
        cache = _cache()

        first = await label_text(TEXT, classifier, cache)
        second = await label_text(TEXT, classifier, cache)

        assert not first.cache_hit
        assert second.cache_hit
        assert first.spans == second.spans
        assert first.signature == hash_string(TEXT)
        assert len(classifier.requests) == 1

    @pytest.mark.anyio
    async def test_cache_id_and_options_reach_classifier(self, classifier_factory):
        classifier = classifier_factory(spans=GOOD_SPANS)
        await label_text(TEXT, classifier, _cache(), options=LabelingOptions(max_spans=1), cache_id="doc-9")

        request = classifier.requests[0]
        assert request.max_spans == 1
        assert request.cache_id == "doc-9"

    @pytest.mark.anyio
    async def test_classifier_errors_propagate(self, classifier_factory):
        classifier = classifier_factory(error=ClassifierError("down"))
        with pytest.raises(ClassifierError):
            await label_text(TEXT, classifier, _cache())


class TestSpanLabelingPipeline:
    @pytest.mark.anyio
    async def test_network_then_cache(self, classifier_factory):
        classifier = classifier_factory(spans=GOOD_SPANS)
        delivered = []
        pipeline = SpanLabelingPipeline(classifier, cache=_cache(), on_result=delivered.append, debounce_ms=0)

        pipeline.update_text(TEXT)
        assert pipeline.state.status == STATUS_LOADING
        await pipeline.wait_idle()

        assert pipeline.state.status == STATUS_SUCCESS
        assert delivered[0].source == SOURCE_NETWORK
        assert [span["text"] for span in delivered[0].spans] == ["golden hour", "cat"]

        assert pipeline.update_text(TEXT) is None
        assert delivered[1].source == SOURCE_CACHE
        assert len(classifier.requests) == 1
        await pipeline.close()

    @pytest.mark.anyio
    async def test_matching_initial_data_skips_classifier(self, classifier_factory):
        classifier = classifier_factory(spans=GOOD_SPANS)
        delivered = []
        initial = {"spans": GOOD_SPANS, "meta": {"version": "v1"}, "signature": hash_string(TEXT)}
        pipeline = SpanLabelingPipeline(
            classifier, cache=_cache(), on_result=delivered.append, initial_data=initial, debounce_ms=0
        )

        assert pipeline.update_text(TEXT) is None
        assert delivered[0].source == SOURCE_INITIAL
        assert classifier.requests == []

    @pytest.mark.anyio
    async def test_stale_initial_data_is_ignored(self, classifier_factory):
        classifier = classifier_factory(spans=GOOD_SPANS)
        initial = {"spans": GOOD_SPANS, "meta": {"version": "v0"}, "signature": hash_string(TEXT)}
        pipeline = SpanLabelingPipeline(classifier, cache=_cache(), initial_data=initial, debounce_ms=0)

        pipeline.update_text(TEXT)
        await pipeline.wait_idle()
        assert len(classifier.requests) == 1

    @pytest.mark.anyio
    async def test_failed_refresh_falls_back_to_cache(self, classifier_factory):
        classifier = classifier_factory(spans=GOOD_SPANS)
        delivered = []
        pipeline = SpanLabelingPipeline(classifier, cache=_cache(), on_result=delivered.append, debounce_ms=0)
        pipeline.update_text(TEXT)
        await pipeline.wait_idle()

        classifier.error = ClassifierError("classifier down")
        pipeline.refresh()
        await pipeline.wait_idle()

        assert pipeline.state.status == STATUS_STALE
        assert isinstance(pipeline.state.error, ClassifierError)
        fallback = delivered[-1]
        assert fallback.source == SOURCE_CACHE_FALLBACK
        assert fallback.meta["source"] == SOURCE_CACHE_FALLBACK
        assert fallback.meta["error"] == "classifier down"
        assert fallback.meta["cacheAge"] >= 0

    @pytest.mark.anyio
    async def test_error_without_cache(self, classifier_factory):
        classifier = classifier_factory(error=ClassifierError("classifier down"))
        delivered = []
        pipeline = SpanLabelingPipeline(classifier, cache=_cache(), on_result=delivered.append, debounce_ms=0)

        pipeline.update_text(TEXT)
        await pipeline.wait_idle()

        assert pipeline.state.status == STATUS_ERROR
        assert delivered == []

    @pytest.mark.anyio
    async def test_refresh_with_cache(self, classifier_factory):
        classifier = classifier_factory(spans=GOOD_SPANS)
        delivered = []
        pipeline = SpanLabelingPipeline(classifier, cache=_cache(), on_result=delivered.append, debounce_ms=0)
        pipeline.update_text(TEXT)
        await pipeline.wait_idle()

        assert pipeline.refresh(use_cache=True) is None
        assert delivered[-1].source == SOURCE_REFRESH_CACHE

    @pytest.mark.anyio
    async def test_new_text_keeps_previous_spans_while_refreshing(self, classifier_factory):
        classifier = classifier_factory(spans=GOOD_SPANS)
        pipeline = SpanLabelingPipeline(classifier, cache=_cache(), debounce_ms=0)
        pipeline.update_text(TEXT)
        await pipeline.wait_idle()

        pipeline.update_text(TEXT + ", slow dolly-in")
        assert pipeline.state.status == STATUS_REFRESHING
        assert len(pipeline.state.spans) == 2
        await pipeline.close()

    @pytest.mark.anyio
    async def test_rapid_typing_sends_one_request(self, classifier_factory):
        classifier = classifier_factory(spans=GOOD_SPANS)
        pipeline = SpanLabelingPipeline(classifier, cache=_cache(), debounce_ms=20, smart_debounce=False)

        pipeline.update_text("A cat")
        pipeline.update_text("A cat in the")
        pipeline.update_text(TEXT)
        await pipeline.wait_idle()

        assert [request.text for request in classifier.requests] == [TEXT]

    @pytest.mark.anyio
    async def test_blank_text_and_disabled_pipeline_stay_idle(self, classifier_factory):
        classifier = classifier_factory(spans=GOOD_SPANS)
        pipeline = SpanLabelingPipeline(classifier, cache=_cache(), debounce_ms=0)
        assert pipeline.update_text("   ") is None
        assert pipeline.state.status == STATUS_IDLE
        assert pipeline.refresh() is None

        disabled = SpanLabelingPipeline(classifier, cache=_cache(), enabled=False, debounce_ms=0)
        assert disabled.update_text(TEXT) is None
        assert classifier.requests == []
