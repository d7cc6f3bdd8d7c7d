"""
Diff-based highlight rendering onto a live text tree.

``HighlightRenderer`` owns one root element and remembers which wrappers
belong to which span id. Each ``render`` call unwraps spans that went away,
re-wraps spans whose position or quote changed, leaves unchanged spans in
place and wraps new ones. Spans are applied in descending start order and
never overlap within one pass.

Rendering never raises: a span that cannot be placed is counted and
skipped, and an unexpected failure clears every highlight.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable, Mapping
from dataclasses import asdict, dataclass, field
from typing import Any

from spanlight.core.exceptions import RenderError
from spanlight.core.metrics import record_render_outcome
from spanlight.core.request_context import log_context
from spanlight.core.settings import settings
from spanlight.core.taxonomy import get_palette_for_category, get_parent_category, normalize_role
from spanlight.dom.anchoring import build_text_node_index, unwrap_highlight, wrap_range_segments
from spanlight.dom.text_tree import (
    HIGHLIGHT_CLASS,
    HIGHLIGHT_TAG,
    SoupTextTree,
    TextTree,
    find_highlight_wrappers,
    parse_fragment,
    set_style_property,
)
from spanlight.spans.conversion import Highlight, coerce_offset
from spanlight.spans.coverage import Interval, add_to_coverage, has_overlap
from spanlight.text.normalization import build_span_key
from spanlight.text.token_boundaries import snap_span_to_token_boundaries

logger = logging.getLogger(__name__)

STATUS_RENDERED = "rendered"
STATUS_DISABLED = "disabled"
STATUS_CLEARED = "cleared"
STATUS_UNCHANGED = "unchanged"
STATUS_TEXT_MISMATCH = "text_mismatch"
STATUS_NO_TEXT_NODES = "no_text_nodes"
STATUS_FAILED = "failed"

_CHANGE_FIELDS = ("start", "end", "text", "quote", "display_quote")

_FIELD_ALIASES = {
    "display_start": "displayStart",
    "display_end": "displayEnd",
    "display_quote": "displayQuote",
    "left_ctx": "leftCtx",
    "right_ctx": "rightCtx",
    "display_left_ctx": "displayLeftCtx",
    "display_right_ctx": "displayRightCtx",
    "start_grapheme": "startGrapheme",
    "end_grapheme": "endGrapheme",
    "validator_pass": "validatorPass",
    "idempotency_key": "idempotencyKey",
}

# data-* attribute name -> span field
_DATASET_FIELDS = (
    ("source", "source"),
    ("start", "start"),
    ("end", "end"),
    ("start-display", "display_start"),
    ("end-display", "display_end"),
    ("start-grapheme", "start_grapheme"),
    ("end-grapheme", "end_grapheme"),
    ("validator-pass", "validator_pass"),
    ("quote", "quote"),
    ("left-ctx", "left_ctx"),
    ("right-ctx", "right_ctx"),
    ("display-quote", "display_quote"),
    ("display-left-ctx", "display_left_ctx"),
    ("display-right-ctx", "display_right_ctx"),
    ("confidence", "confidence"),
)


def _span_fields(span: object) -> dict[str, Any] | None:
    if isinstance(span, Highlight):
        return asdict(span)
    if not isinstance(span, Mapping):
        return None
    fields = dict(span)
    for snake, camel in _FIELD_ALIASES.items():
        if snake not in fields and camel in fields:
            fields[snake] = fields[camel]
    return fields


def _span_id(fields: Mapping[str, Any]) -> str:
    span_id = fields.get("id")
    if isinstance(span_id, str) and span_id:
        return span_id
    category = fields.get("category") or fields.get("role") or ""
    return f"{fields.get('start')}-{fields.get('end')}-{category}"


def _dataset_value(value: Any) -> str | None:
    if value is None:
        return None
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)


@dataclass
class RenderSpan:
    span_id: str
    fields: dict[str, Any]
    highlight_start: int
    highlight_end: int

    @property
    def category(self) -> str:
        return normalize_role(self.fields.get("category") or self.fields.get("role"))


def process_and_sort_spans(spans: Iterable[object] | None, display_text: str) -> list[RenderSpan]:
    """Finite, positive-width spans snapped to word boundaries, latest start first."""
    prepared: list[RenderSpan] = []
    for span in spans or []:
        fields = _span_fields(span)
        if fields is None:
            continue
        start = coerce_offset(fields.get("display_start", fields.get("start")))
        end = coerce_offset(fields.get("display_end", fields.get("end")))
        if start is None or end is None or end <= start:
            continue
        snapped = snap_span_to_token_boundaries(display_text, start, end)
        if snapped is None:
            continue
        prepared.append(RenderSpan(_span_id(fields), fields, snapped.start, snapped.end))
    prepared.sort(key=lambda item: (item.highlight_start, item.highlight_end), reverse=True)
    return prepared


def validate_highlight_text(fields: Mapping[str, Any], display_text: str) -> bool:
    """The span's quote must still be what the display text holds at its offsets."""
    expected = fields.get("display_quote")
    if not isinstance(expected, str) or not expected:
        expected = fields.get("quote")
    if not isinstance(expected, str) or not expected.strip():
        return True
    start = coerce_offset(fields.get("display_start", fields.get("start")))
    end = coerce_offset(fields.get("display_end", fields.get("end")))
    if start is None or end is None:
        return False
    actual = display_text[int(start) : int(end)]
    return actual.strip() == expected.strip()


def _has_span_changed(previous: Mapping[str, Any], current: Mapping[str, Any]) -> bool:
    return any(previous.get(name) != current.get(name) for name in _CHANGE_FIELDS)


@dataclass
class RenderReport:
    status: str = STATUS_RENDERED
    attempted: int = 0
    rendered: int = 0
    reused: int = 0
    removed: int = 0
    skipped_overlap: int = 0
    skipped_mismatch: int = 0
    skipped_empty_wrapper: int = 0
    span_ids: list[str] = field(default_factory=list)

    @property
    def skipped(self) -> int:
        return self.skipped_overlap + self.skipped_mismatch + self.skipped_empty_wrapper


@dataclass
class _SpanEntry:
    fields: dict[str, Any]
    wrappers: list[Any]


class HighlightRenderer:
    def __init__(self, root: Any, tree: TextTree | None = None, debug: bool | None = None) -> None:
        self.root = root
        self.tree = tree or SoupTextTree()
        self.debug = settings.highlight_debug if debug is None else debug
        self.span_map: dict[str, _SpanEntry] = {}
        self.fingerprint: str | None = None

    def _create_wrapper(self, item: RenderSpan) -> Any:
        wrapper = self.tree.create_element(self.root, HIGHLIGHT_TAG)
        category = item.category
        parent = get_parent_category(category) or category
        wrapper["class"] = [HIGHLIGHT_CLASS, f"{HIGHLIGHT_CLASS}-{parent}"]
        wrapper["data-category"] = category
        wrapper["data-span-id"] = item.span_id
        palette = get_palette_for_category(category)
        if palette is not None:
            set_style_property(wrapper, "--highlight-bg", palette.bg)
            set_style_property(wrapper, "--highlight-border", palette.border)
        return wrapper

    def _enhance_wrapper(self, wrapper: Any, item: RenderSpan) -> None:
        fields = item.fields
        for attribute, name in _DATASET_FIELDS:
            value = _dataset_value(fields.get(name))
            if value is not None:
                wrapper[f"data-{attribute}"] = value
        idempotency_key = fields.get("idempotency_key") or build_span_key(
            item.highlight_start,
            item.highlight_end,
            fields.get("quote") or fields.get("text") or "",
        )
        wrapper["data-idempotency-key"] = str(idempotency_key)

    def _unwrap_entry(self, entry: _SpanEntry) -> None:
        for wrapper in entry.wrappers:
            unwrap_highlight(wrapper, self.tree)

    def _wrappers_missing(self, entry: _SpanEntry) -> bool:
        return not entry.wrappers or any(not self.tree.contains(self.root, wrapper) for wrapper in entry.wrappers)

    def clear_all(self) -> None:
        for entry in self.span_map.values():
            self._unwrap_entry(entry)
        self.span_map = {}
        self.fingerprint = None

    def render(
        self,
        spans: Iterable[object] | None,
        display_text: str | None = None,
        fingerprint: str | None = None,
        enabled: bool = True,
    ) -> RenderReport:
        try:
            return self._render(list(spans or []), display_text, fingerprint, enabled)
        except Exception:
            logger.exception("highlight_render_failed", extra={"fingerprint": fingerprint})
            self.clear_all()
            self.fingerprint = fingerprint
            record_render_outcome(STATUS_FAILED)
            return RenderReport(status=STATUS_FAILED)

    def _render(
        self,
        spans: list[object],
        display_text: str | None,
        fingerprint: str | None,
        enabled: bool,
    ) -> RenderReport:
        if self.root is None:
            return RenderReport(status=STATUS_NO_TEXT_NODES)

        if not enabled:
            self.clear_all()
            return RenderReport(status=STATUS_DISABLED)

        if not spans:
            self.clear_all()
            self.fingerprint = fingerprint
            return RenderReport(status=STATUS_CLEARED)

        if fingerprint and self.fingerprint == fingerprint:
            return RenderReport(status=STATUS_UNCHANGED, span_ids=list(self.span_map))

        root_text = self.tree.text_content(self.root)
        if display_text is None:
            display_text = root_text
        if not display_text:
            self.clear_all()
            self.fingerprint = fingerprint
            return RenderReport(status=STATUS_CLEARED)
        if root_text != display_text:
            self.clear_all()
            record_render_outcome("skipped_text_mismatch")
            logger.debug(
                "highlight_root_text_mismatch",
                extra={"root_length": len(root_text), "display_length": len(display_text)},
            )
            return RenderReport(status=STATUS_TEXT_MISMATCH)

        sorted_spans = process_and_sort_spans(spans, display_text)
        report = RenderReport(attempted=len(sorted_spans))
        wanted = {item.span_id for item in sorted_spans}

        for span_id in [span_id for span_id in self.span_map if span_id not in wanted]:
            self._unwrap_entry(self.span_map.pop(span_id))
            report.removed += 1

        if not build_text_node_index(self.root, self.tree).nodes:
            return RenderReport(status=STATUS_NO_TEXT_NODES)

        coverage: list[Interval] = []
        for item in sorted_spans:
            if has_overlap(coverage, item.highlight_start, item.highlight_end):
                report.skipped_overlap += 1
                continue
            if not validate_highlight_text(item.fields, display_text):
                report.skipped_mismatch += 1
                continue

            existing = self.span_map.get(item.span_id)
            if existing is not None and not _has_span_changed(existing.fields, item.fields) and not self._wrappers_missing(existing):
                report.reused += 1
                add_to_coverage(coverage, item.highlight_start, item.highlight_end)
                continue
            if existing is not None:
                self._unwrap_entry(existing)

            # Wrapping replaces text nodes, so every span maps against a fresh index.
            node_index = build_text_node_index(self.root, self.tree)
            wrappers = wrap_range_segments(
                self.root,
                item.highlight_start,
                item.highlight_end,
                lambda item=item: self._create_wrapper(item),
                node_index=node_index,
                tree=self.tree,
            )
            if not wrappers:
                report.skipped_empty_wrapper += 1
                self.span_map.pop(item.span_id, None)
                if self.debug:
                    with log_context(span_id=item.span_id):
                        logger.debug(
                            "highlight_empty_wrapper",
                            extra={
                                "start": item.highlight_start,
                                "end": item.highlight_end,
                                "text_nodes": len(node_index.nodes),
                            },
                        )
                continue

            for wrapper in wrappers:
                self._enhance_wrapper(wrapper, item)
            self.span_map[item.span_id] = _SpanEntry(fields=dict(item.fields), wrappers=wrappers)
            report.rendered += 1
            add_to_coverage(coverage, item.highlight_start, item.highlight_end)

        report.span_ids = list(self.span_map)
        self.fingerprint = fingerprint
        record_render_outcome("rendered", report.rendered)
        record_render_outcome("skipped_overlap", report.skipped_overlap)
        record_render_outcome("skipped_mismatch", report.skipped_mismatch)
        record_render_outcome("skipped_empty_wrapper", report.skipped_empty_wrapper)

        if self.debug and len(sorted_spans) > 1 and (len(self.span_map) <= 1 or report.skipped):
            logger.debug(
                "highlight_render_summary",
                extra={
                    "attempted_span_count": report.attempted,
                    "rendered_span_count": len(self.span_map),
                    "skipped_overlap": report.skipped_overlap,
                    "skipped_mismatch": report.skipped_mismatch,
                    "skipped_empty_wrapper": report.skipped_empty_wrapper,
                    "fingerprint": fingerprint,
                    "text_length": len(display_text),
                },
            )
        return report


def _parse(html: str) -> Any:
    if not isinstance(html, str):
        raise RenderError("HTML fragment must be a string")
    return parse_fragment(html)


def render_highlights_html(
    html: str,
    spans: Iterable[object] | None,
    display_text: str | None = None,
) -> tuple[str, RenderReport]:
    """Highlight ``spans`` inside an HTML fragment and return the new markup."""
    root = _parse(html)
    renderer = HighlightRenderer(root)
    report = renderer.render(spans, display_text)
    return str(root), report


def unwrap_highlights_html(html: str) -> tuple[str, int]:
    """Strip every highlight wrapper from an HTML fragment."""
    root = _parse(html)
    tree = SoupTextTree()
    wrappers = find_highlight_wrappers(root)
    for wrapper in wrappers:
        unwrap_highlight(wrapper, tree)
    return str(root), len(wrappers)
