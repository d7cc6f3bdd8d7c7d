"""
Text tree capability interface and its BeautifulSoup implementation.

Anchoring and rendering only ever touch a document through ``TextTree``:
enumerate text nodes, read their text, build a range between two
(node, offset) points, wrap a range in an element and unwrap it again.
``SoupTextTree`` implements it over a parsed HTML fragment. Tests and
non-HTML callers can supply any object with the same methods.
"""

from __future__ import annotations

from collections.abc import Iterator
from dataclasses import dataclass
from typing import Any, Protocol

from bs4 import BeautifulSoup
from bs4.element import NavigableString, PageElement, Tag

HIGHLIGHT_TAG = "span"
HIGHLIGHT_CLASS = "value-word"


@dataclass(frozen=True)
class DomRange:
    start_node: Any
    start_offset: int
    end_node: Any
    end_offset: int

    @property
    def collapsed(self) -> bool:
        return self.start_node is self.end_node and self.start_offset == self.end_offset


class TextTree(Protocol):
    def text_nodes(self, root: Any) -> Iterator[Any]: ...

    def node_text(self, node: Any) -> str: ...

    def contains(self, root: Any, node: Any) -> bool: ...

    def create_range(self, start_node: Any, start_offset: int, end_node: Any, end_offset: int) -> DomRange: ...

    def surround(self, dom_range: DomRange, wrapper: Any) -> Any: ...

    def unwrap(self, wrapper: Any) -> None: ...

    def create_element(self, root: Any, name: str) -> Any: ...

    def text_content(self, root: Any) -> str: ...


def _owning_soup(element: PageElement) -> BeautifulSoup | None:
    if isinstance(element, BeautifulSoup):
        return element
    for parent in element.parents:
        if isinstance(parent, BeautifulSoup):
            return parent
    return None


class SoupTextTree:
    """``TextTree`` over BeautifulSoup elements.

    Only plain ``NavigableString`` instances count as text nodes; comments,
    doctypes and other string subclasses are skipped, as are strings inside
    ``<script>``/``<style>``.
    """

    _SKIP_PARENTS = {"script", "style", "template"}

    def text_nodes(self, root: PageElement) -> Iterator[NavigableString]:
        if type(root) is NavigableString:
            yield root
            return
        if not isinstance(root, Tag):
            return
        for node in root.descendants:
            if type(node) is not NavigableString:
                continue
            if node.parent is not None and node.parent.name in self._SKIP_PARENTS:
                continue
            yield node

    def node_text(self, node: NavigableString) -> str:
        return str(node)

    def text_content(self, root: PageElement) -> str:
        return "".join(self.node_text(node) for node in self.text_nodes(root))

    def contains(self, root: PageElement, node: PageElement) -> bool:
        if node is root:
            return True
        return any(parent is root for parent in node.parents)

    def create_range(
        self,
        start_node: NavigableString,
        start_offset: int,
        end_node: NavigableString,
        end_offset: int,
    ) -> DomRange:
        for node, offset in ((start_node, start_offset), (end_node, end_offset)):
            if type(node) is not NavigableString:
                raise ValueError("Range endpoints must be text nodes")
            if offset < 0 or offset > len(node):
                raise ValueError(f"Offset {offset} is outside a text node of length {len(node)}")
        if start_node is end_node and end_offset < start_offset:
            raise ValueError("Range end precedes its start")
        return DomRange(start_node, start_offset, end_node, end_offset)

    def surround(self, dom_range: DomRange, wrapper: Tag) -> Tag:
        """Split the text node around the range and move the middle into ``wrapper``.

        Ranges spanning more than one text node are rejected; callers wrap
        multi-node ranges one segment at a time.
        """
        node = dom_range.start_node
        if node is not dom_range.end_node:
            raise ValueError("Cannot surround a range that crosses text nodes")
        if node.parent is None:
            raise ValueError("Text node is detached from the tree")
        if dom_range.collapsed:
            raise ValueError("Cannot surround an empty range")

        text = str(node)
        before = text[: dom_range.start_offset]
        middle = text[dom_range.start_offset : dom_range.end_offset]
        after = text[dom_range.end_offset :]

        wrapper.clear()
        wrapper.append(NavigableString(middle))
        replacements: list[PageElement] = []
        if before:
            replacements.append(NavigableString(before))
        replacements.append(wrapper)
        if after:
            replacements.append(NavigableString(after))
        node.replace_with(*replacements)
        return wrapper

    def unwrap(self, wrapper: Tag) -> None:
        """Replace ``wrapper`` with its children and re-merge split text nodes."""
        parent = wrapper.parent
        if parent is None:
            return
        wrapper.unwrap()
        parent.smooth()

    def create_element(self, root: PageElement, name: str) -> Tag:
        soup = _owning_soup(root) or BeautifulSoup("", "html.parser")
        return soup.new_tag(name)


def parse_fragment(html: str) -> BeautifulSoup:
    """Parse an editor HTML fragment with the stdlib-backed parser."""
    return BeautifulSoup(html or "", "html.parser")


def find_highlight_wrappers(root: Tag) -> list[Tag]:
    """Every highlight wrapper under ``root`` (those carrying ``data-span-id``)."""
    return root.find_all(HIGHLIGHT_TAG, attrs={"data-span-id": True})


def set_style_property(element: Tag, name: str, value: str) -> None:
    """Set one CSS declaration in ``element``'s inline style, keeping the others."""
    declarations: list[tuple[str, str]] = []
    for chunk in (element.get("style") or "").split(";"):
        key, sep, existing = chunk.partition(":")
        if sep and key.strip() and key.strip() != name:
            declarations.append((key.strip(), existing.strip()))
    declarations.append((name, value))
    element["style"] = "; ".join(f"{key}: {val}" for key, val in declarations)
