"""Tests for converting classifier spans to highlights."""

import pytest

from spanlight.spans.conversion import (
    Highlight,
    coerce_offset,
    convert_labeled_spans_to_highlights,
    merge_fragmented_highlights,
)
from spanlight.text.canonical import CanonicalText


class TestConvertLabeledSpans:
    def test_simple_span_gets_quote_and_context(self):
        text = "A cat runs fast"
        highlights = convert_labeled_spans_to_highlights([{"start": 2, "end": 5, "category": "subject"}], text)

        assert len(highlights) == 1
        highlight = highlights[0]
        assert highlight.quote == "cat"
        assert highlight.left_ctx == "A "
        assert highlight.right_ctx == " runs fast"
        assert highlight.category == "subject"
        assert highlight.display_start == 2
        assert highlight.display_end == 5
        assert highlight.source == "llm"
        assert highlight.validator_pass is True
        assert highlight.id == "llm_subject_2_5"

    def test_graphemes_filled_when_canonical_given(self):
        text = "\U0001F3A5 a cat"
        highlights = convert_labeled_spans_to_highlights(
            [{"start": 4, "end": 7, "category": "subject"}], text, CanonicalText(text)
        )
        assert highlights[0].quote == "cat"
        assert highlights[0].start_grapheme == 4
        assert highlights[0].end_grapheme == 7

    @pytest.mark.parametrize(
        "span",
        [
            {"start": "x", "end": 3},
            {"start": float("nan"), "end": 3},
            {"start": 5, "end": 2},
            {"start": 3, "end": 3},
            {"start": 40, "end": 50},
            {"start": True, "end": 3},
        ],
    )
    def test_bad_offsets_are_dropped(self, span):
        assert convert_labeled_spans_to_highlights([span], "A cat runs fast") == []

    def test_out_of_range_offsets_are_clamped(self):
        highlights = convert_labeled_spans_to_highlights([{"start": -3, "end": 99, "category": "subject"}], "a cat")
        assert (highlights[0].start, highlights[0].end) == (0, 5)

    def test_numeric_strings_are_accepted(self):
        highlights = convert_labeled_spans_to_highlights([{"start": "2", "end": "5"}], "A cat runs fast")
        assert highlights[0].quote == "cat"

    def test_unknown_role_maps_to_default_category(self):
        highlights = convert_labeled_spans_to_highlights([{"start": 2, "end": 5, "role": "Mystery"}], "A cat runs fast")
        assert highlights[0].category == "subject"
        assert highlights[0].role == "Mystery"

    def test_output_sorted_and_deduplicated(self):
        spans = [
            {"start": 6, "end": 10, "category": "action"},
            {"start": 2, "end": 5, "category": "subject"},
            {"start": 2, "end": 5, "category": "subject"},
        ]
        highlights = convert_labeled_spans_to_highlights(spans, "A cat runs fast")
        assert [(h.start, h.end) for h in highlights] == [(2, 5), (6, 10)]

    def test_empty_input(self):
        assert convert_labeled_spans_to_highlights([], "text") == []
        assert convert_labeled_spans_to_highlights(None, "text") == []
        assert convert_labeled_spans_to_highlights([{"start": 0, "end": 1}], "") == []

    def test_payload_uses_camel_case(self):
        payload = convert_labeled_spans_to_highlights([{"start": 2, "end": 5, "confidence": 0.8}], "A cat runs fast")[0].to_payload()
        assert payload["displayQuote"] == "cat"
        assert payload["leftCtx"] == "A "
        assert payload["confidence"] == 0.8
        assert "startGrapheme" not in payload


class TestMergeFragmentedHighlights:
    def test_merges_whitespace_separated_fragments_of_same_parent(self):
        text = "pan in\nclose up"
        spans = [
            {"id": "a", "start": 0, "end": 6, "category": "camera.movement"},
            {"id": "b", "start": 7, "end": 15, "category": "camera.angle"},
        ]
        highlights = convert_labeled_spans_to_highlights(spans, text)

        assert len(highlights) == 1
        merged = highlights[0]
        assert (merged.start, merged.end) == (0, 15)
        assert merged.category == "camera.movement"
        assert merged.quote == "pan in\nclose up"
        assert merged.id == "a_merged"

    def test_more_specific_category_wins(self):
        text = "pan in\nclose up"
        spans = [
            {"start": 0, "end": 6, "category": "camera"},
            {"start": 7, "end": 15, "category": "camera.angle"},
        ]
        assert convert_labeled_spans_to_highlights(spans, text)[0].category == "camera.angle"

    def test_different_parents_do_not_merge(self):
        text = "a cat walking"
        spans = [
            {"start": 2, "end": 5, "category": "subject"},
            {"start": 6, "end": 13, "category": "action"},
        ]
        assert len(convert_labeled_spans_to_highlights(spans, text)) == 2

    def test_non_whitespace_gap_blocks_merge(self):
        text = "pan in, close up"
        spans = [
            {"start": 0, "end": 6, "category": "camera.movement"},
            {"start": 8, "end": 16, "category": "camera.angle"},
        ]
        assert len(convert_labeled_spans_to_highlights(spans, text)) == 2

    def test_merged_ids_stay_unique(self):
        text = "one two three four"

        def make(span_id, start, end):
            return Highlight(
                id=span_id, category="camera", role="camera", start=start, end=end,
                display_start=start, display_end=end, quote=text[start:end], display_quote=text[start:end],
                left_ctx="", right_ctx="", display_left_ctx="", display_right_ctx="",
            )

        highlights = [make("x", 0, 3), make("x_merged", 4, 7)]
        merged = merge_fragmented_highlights(highlights, text)
        assert len(merged) == 1
        assert merged[0].id == "x_merged_2"

    def test_confidence_keeps_maximum(self):
        text = "pan in\nclose up"
        spans = [
            {"start": 0, "end": 6, "category": "camera.movement", "confidence": 0.6},
            {"start": 7, "end": 15, "category": "camera.angle", "confidence": 0.9},
        ]
        assert convert_labeled_spans_to_highlights(spans, text)[0].confidence == 0.9


class TestCoerceOffset:
    @pytest.mark.parametrize("value,expected", [(3, 3), (2.5, 2.5), (" 4 ", 4.0), ("abc", None), (None, None), (False, None)])
    def test_values(self, value, expected):
        assert coerce_offset(value) == expected
