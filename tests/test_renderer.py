"""Tests for diff-based highlight rendering."""

from spanlight.dom.text_tree import find_highlight_wrappers, parse_fragment
from spanlight.services.renderer import (
    STATUS_CLEARED,
    STATUS_DISABLED,
    STATUS_RENDERED,
    STATUS_TEXT_MISMATCH,
    STATUS_UNCHANGED,
    HighlightRenderer,
    process_and_sort_spans,
    render_highlights_html,
    unwrap_highlights_html,
    validate_highlight_text,
)
from spanlight.spans.conversion import convert_labeled_spans_to_highlights


HTML = "<p>A cat runs fast</p>"
TEXT = "A cat runs fast"

CAT = {"id": "s1", "start": 2, "end": 5, "category": "subject", "quote": "cat"}
RUNS = {"id": "s2", "start": 6, "end": 10, "category": "action.movement", "quote": "runs"}


def _wrapped(root):
    return {wrapper["data-span-id"]: wrapper.get_text() for wrapper in find_highlight_wrappers(root)}


class TestRenderHighlightsHtml:
    def test_wraps_span_with_category_and_dataset(self):
        html, report = render_highlights_html(HTML, [CAT])
        root = parse_fragment(html)
        wrapper = root.find("span", attrs={"data-span-id": "s1"})

        assert report.status == STATUS_RENDERED
        assert report.rendered == 1
        assert wrapper.get_text() == "cat"
        assert wrapper["class"] == ["value-word", "value-word-subject"]
        assert wrapper["data-category"] == "subject"
        assert wrapper["data-start"] == "2"
        assert wrapper["data-quote"] == "cat"
        assert wrapper["data-idempotency-key"] == "2|5|cat"
        assert "--highlight-bg" in wrapper["style"]

    def test_renders_converted_highlights(self):
        highlights = convert_labeled_spans_to_highlights([{"start": 2, "end": 5, "category": "camera"}], TEXT)
        html, report = render_highlights_html(HTML, highlights)
        assert report.span_ids == ["llm_camera_2_5"]
        wrapper = parse_fragment(html).find("span")
        assert wrapper["data-validator-pass"] == "true"
        assert wrapper["data-display-quote"] == "cat"
        assert wrapper["class"] == ["value-word", "value-word-camera"]

    def test_partial_word_is_snapped_to_token(self):
        html, report = render_highlights_html(HTML, [{"id": "s1", "start": 3, "end": 4, "category": "subject"}])
        assert _wrapped(parse_fragment(html)) == {"s1": "cat"}

    def test_quote_mismatch_is_skipped(self):
        html, report = render_highlights_html(HTML, [{**CAT, "quote": "dog"}])
        assert report.skipped_mismatch == 1
        assert report.rendered == 0
        assert html == HTML

    def test_overlapping_spans_keep_one(self):
        wide = {"id": "wide", "start": 2, "end": 10, "category": "subject", "quote": "cat runs"}
        html, report = render_highlights_html(HTML, [CAT, wide])
        assert report.skipped_overlap == 1
        assert _wrapped(parse_fragment(html)) == {"wide": "cat runs"}

    def test_span_crossing_elements_gets_one_wrapper_per_node(self):
        html, report = render_highlights_html("<p>A <b>ca</b>t runs fast</p>", [CAT])
        root = parse_fragment(html)
        wrappers = find_highlight_wrappers(root)
        assert report.rendered == 1
        assert [wrapper.get_text() for wrapper in wrappers] == ["ca", "t"]
        assert all(wrapper["data-span-id"] == "s1" for wrapper in wrappers)

    def test_missing_id_uses_offsets_and_category(self):
        _, report = render_highlights_html(HTML, [{"start": 2, "end": 5, "category": "subject"}])
        assert report.span_ids == ["2-5-subject"]

    def test_text_mismatch(self):
        html, report = render_highlights_html(HTML, [CAT], display_text="Something else")
        assert report.status == STATUS_TEXT_MISMATCH
        assert html == HTML


class TestHighlightRenderer:
    def test_second_render_reuses_wrappers(self):
        root = parse_fragment(HTML)
        renderer = HighlightRenderer(root)
        renderer.render([CAT, RUNS], TEXT)
        first_html = str(root)

        report = renderer.render([CAT, RUNS], TEXT)

        assert report.reused == 2
        assert report.rendered == 0
        assert str(root) == first_html

    def test_same_fingerprint_short_circuits(self):
        renderer = HighlightRenderer(parse_fragment(HTML))
        renderer.render([CAT], TEXT, fingerprint="f1")
        assert renderer.render([CAT], TEXT, fingerprint="f1").status == STATUS_UNCHANGED

    def test_removed_span_is_unwrapped(self):
        root = parse_fragment(HTML)
        renderer = HighlightRenderer(root)
        renderer.render([CAT, RUNS], TEXT)

        report = renderer.render([RUNS], TEXT)

        assert report.removed == 1
        assert _wrapped(root) == {"s2": "runs"}
        assert list(renderer.span_map) == ["s2"]

    def test_changed_span_is_rewrapped(self):
        root = parse_fragment(HTML)
        renderer = HighlightRenderer(root)
        renderer.render([CAT], TEXT)

        report = renderer.render([{**CAT, "start": 11, "end": 15, "quote": "fast"}], TEXT)

        assert report.rendered == 1
        assert _wrapped(root) == {"s1": "fast"}

    def test_disabled_and_empty_clear_everything(self):
        root = parse_fragment(HTML)
        renderer = HighlightRenderer(root)
        renderer.render([CAT], TEXT)
        assert renderer.render([CAT], TEXT, enabled=False).status == STATUS_DISABLED
        assert str(root) == HTML

        renderer.render([CAT], TEXT)
        assert renderer.render([], TEXT).status == STATUS_CLEARED
        assert str(root) == HTML
        assert renderer.span_map == {}

    def test_clear_all_restores_markup(self):
        root = parse_fragment(HTML)
        renderer = HighlightRenderer(root)
        renderer.render([CAT, RUNS], TEXT, fingerprint="f1")

        renderer.clear_all()

        assert str(root) == HTML
        assert renderer.span_map == {}
        assert renderer.render([CAT], TEXT, fingerprint="f1").status == STATUS_RENDERED

    def test_text_mismatch_clears_previous_highlights(self):
        root = parse_fragment(HTML)
        renderer = HighlightRenderer(root)
        renderer.render([CAT], TEXT)
        assert renderer.render([CAT], "A cat runs slowly").status == STATUS_TEXT_MISMATCH
        assert str(root) == HTML


class TestHelpers:
    def test_process_and_sort_spans_orders_latest_first(self):
        spans = process_and_sort_spans([CAT, RUNS, {"start": "x", "end": 2}], TEXT)
        assert [item.span_id for item in spans] == ["s2", "s1"]

    def test_camel_case_fields_are_understood(self):
        spans = process_and_sort_spans([{"id": "c", "displayStart": 2, "displayEnd": 5}], TEXT)
        assert (spans[0].highlight_start, spans[0].highlight_end) == (2, 5)

    def test_validate_highlight_text(self):
        assert validate_highlight_text({"start": 2, "end": 5, "quote": " cat "}, TEXT)
        assert validate_highlight_text({"start": 2, "end": 5}, TEXT)
        assert not validate_highlight_text({"start": 2, "end": 5, "displayQuote": "dog", "display_quote": "dog"}, TEXT)


class TestUnwrapHighlightsHtml:
    def test_unwrap_restores_markup(self):
        original = "<p>A <b>ca</b>t runs fast</p>"
        html, _ = render_highlights_html(original, [CAT, RUNS])
        restored, removed = unwrap_highlights_html(html)
        assert removed == 3
        assert restored == original
