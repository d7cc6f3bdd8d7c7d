"""
Map global text offsets onto a text tree and wrap the covered text.

A ``TextNodeIndex`` lists the tree's non-empty text nodes in document order
with their accumulated ``[start, end)`` offsets, so a global offset into the
concatenated text resolves to ``(node, local_offset)`` with a binary search.
An offset sitting exactly on the boundary between two nodes resolves to the
start of the next node.

Indexes are throwaway: splitting a text node while wrapping invalidates the
entries for that node, so callers rebuild before mapping another range.
"""

from __future__ import annotations

import logging
import math
from bisect import bisect_left, bisect_right
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any

from spanlight.dom.text_tree import DomRange, SoupTextTree, TextTree

logger = logging.getLogger(__name__)

_DEFAULT_TREE = SoupTextTree()


@dataclass(frozen=True)
class TextNodeEntry:
    node: Any
    start: int
    end: int


@dataclass
class TextNodeIndex:
    nodes: list[TextNodeEntry] = field(default_factory=list)
    length: int = 0

    def __post_init__(self) -> None:
        self._ends = [entry.end for entry in self.nodes]

    def locate(self, offset: int, *, prefer_next: bool = True) -> tuple[TextNodeEntry, int]:
        """Resolve a clamped global offset to ``(entry, local_offset)``.

        With ``prefer_next`` a boundary offset lands at the start of the
        following node; otherwise at the end of the preceding one.
        """
        offset = min(max(offset, 0), self.length)
        if prefer_next:
            position = bisect_right(self._ends, offset)
        else:
            position = bisect_left(self._ends, offset)
        if position >= len(self.nodes):
            entry = self.nodes[-1]
            return entry, entry.end - entry.start
        entry = self.nodes[position]
        return entry, max(offset - entry.start, 0)

    def first_entry_after(self, offset: int) -> int:
        """Position of the first entry whose ``end`` is greater than ``offset``."""
        return bisect_right(self._ends, offset)


@dataclass(frozen=True)
class DomPoint:
    node: Any
    offset: int


@dataclass(frozen=True)
class DomMapping:
    start: DomPoint
    end: DomPoint
    range: DomRange
    node_index: TextNodeIndex


def _finite_int(value: object) -> int | None:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return None
    if not math.isfinite(value):
        return None
    return int(value)


def build_text_node_index(root: Any, tree: TextTree | None = None) -> TextNodeIndex:
    if root is None:
        return TextNodeIndex()
    tree = tree or _DEFAULT_TREE
    entries: list[TextNodeEntry] = []
    offset = 0
    for node in tree.text_nodes(root):
        text = tree.node_text(node)
        if not text:
            continue
        entries.append(TextNodeEntry(node=node, start=offset, end=offset + len(text)))
        offset += len(text)
    return TextNodeIndex(nodes=entries, length=offset)


def map_global_range_to_dom(
    root: Any,
    start: object,
    end: object,
    node_index: TextNodeIndex | None = None,
    tree: TextTree | None = None,
) -> DomMapping | None:
    """Resolve ``[start, end)`` to a range between two text-node points.

    Returns ``None`` for non-numeric or degenerate offsets, a tree without
    text, or when the tree refuses to build the range.
    """
    if root is None:
        return None
    start_value = _finite_int(start)
    end_value = _finite_int(end)
    if start_value is None or end_value is None or end_value <= 0:
        return None

    tree = tree or _DEFAULT_TREE
    index = node_index if node_index is not None else build_text_node_index(root, tree)
    if not index.nodes:
        return None

    start_value = min(max(start_value, 0), index.length)
    end_value = min(max(end_value, 0), index.length)
    if end_value <= start_value:
        return None

    start_entry, start_local = index.locate(start_value)
    end_entry, end_local = index.locate(end_value)
    try:
        dom_range = tree.create_range(start_entry.node, start_local, end_entry.node, end_local)
    except (ValueError, TypeError, AttributeError) as exc:
        logger.debug(
            "range_mapping_failed",
            extra={"start": start_value, "end": end_value, "error": repr(exc)},
        )
        return None
    return DomMapping(
        start=DomPoint(start_entry.node, start_local),
        end=DomPoint(end_entry.node, end_local),
        range=dom_range,
        node_index=index,
    )


def wrap_range_segments(
    root: Any,
    start: object,
    end: object,
    create_wrapper: Callable[[], Any],
    node_index: TextNodeIndex | None = None,
    tree: TextTree | None = None,
) -> list[Any]:
    """Wrap every text-node segment covered by ``[start, end)``.

    Each overlapping text node gets its own wrapper from ``create_wrapper``.
    A segment that cannot be wrapped is logged and skipped; the others are
    still wrapped.
    """
    if root is None or not callable(create_wrapper):
        return []
    start_value = _finite_int(start)
    end_value = _finite_int(end)
    if start_value is None or end_value is None:
        return []

    tree = tree or _DEFAULT_TREE
    index = node_index if node_index is not None else build_text_node_index(root, tree)
    if not index.nodes:
        return []
    start_value = min(max(start_value, 0), index.length)
    end_value = min(max(end_value, 0), index.length)
    if end_value <= start_value:
        return []

    wrappers: list[Any] = []
    for entry in index.nodes[index.first_entry_after(start_value) :]:
        if entry.start >= end_value:
            break
        local_start = max(start_value, entry.start) - entry.start
        local_end = min(end_value, entry.end) - entry.start
        if local_end <= local_start:
            continue
        try:
            dom_range = tree.create_range(entry.node, local_start, entry.node, local_end)
            wrapper = create_wrapper()
            if wrapper is None:
                continue
            tree.surround(dom_range, wrapper)
        except Exception as exc:  # noqa: BLE001
            logger.warning(
                "wrap_segment_failed",
                extra={
                    "segment_start": entry.start + local_start,
                    "segment_end": entry.start + local_end,
                    "error": repr(exc),
                },
            )
            continue
        wrappers.append(wrapper)
    return wrappers


def surround_range(
    root: Any,
    start: object,
    end: object,
    create_wrapper: Callable[[], Any],
    node_index: TextNodeIndex | None = None,
    tree: TextTree | None = None,
) -> Any | None:
    """Wrap ``[start, end)`` in a single element.

    Only ranges inside one text node can be wrapped whole; anything else
    returns ``None`` (use ``wrap_range_segments`` for those).
    """
    if root is None or not callable(create_wrapper):
        return None
    start_value = _finite_int(start)
    end_value = _finite_int(end)
    if start_value is None or end_value is None:
        return None

    tree = tree or _DEFAULT_TREE
    index = node_index if node_index is not None else build_text_node_index(root, tree)
    if not index.nodes:
        return None
    start_value = min(max(start_value, 0), index.length)
    end_value = min(max(end_value, 0), index.length)
    if end_value <= start_value:
        return None

    start_entry, start_local = index.locate(start_value)
    end_entry, end_local = index.locate(end_value, prefer_next=False)
    try:
        dom_range = tree.create_range(start_entry.node, start_local, end_entry.node, end_local)
        wrapper = create_wrapper()
        if wrapper is None:
            return None
        tree.surround(dom_range, wrapper)
    except Exception as exc:  # noqa: BLE001
        logger.debug(
            "surround_range_failed",
            extra={"start": start_value, "end": end_value, "error": repr(exc)},
        )
        return None
    return wrapper


def unwrap_highlight(wrapper: Any, tree: TextTree | None = None) -> None:
    if wrapper is None:
        return
    (tree or _DEFAULT_TREE).unwrap(wrapper)
