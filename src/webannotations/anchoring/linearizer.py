"""Text linearization: the page's visible text as one flat string.

Every anchor offset in the system is an index into the string built here,
so the rules for which text nodes count must stay fixed. A text node is
included when it is non-empty and no ancestor is an annotation UI root
(toolbar, list panel, comment tooltip) or a non-content element such as
``<script>`` or ``<textarea>``. Text is concatenated raw: no whitespace
collapsing, no separators between block elements.

Highlight wrappers are ordinary ``<span>`` elements, so painting changes
the node structure but never the linearized string.
"""

# Pattern: Functional Core (pure traversal, no caching, no mutation)

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from selectolax.lexbor import LexborNode

logger = logging.getLogger(__name__)

# Element ids of the annotation UI itself
EXCLUDED_IDS = frozenset(
    (
        "annotation-toolbar",
        "annotation-list-panel",
        "annotation-comment-tooltip",
    )
)

# Elements whose text is not page content
EXCLUDED_TAGS = frozenset(
    ("script", "style", "noscript", "textarea", "input", "select", "option")
)


@dataclass(frozen=True, eq=False)
class TextRun:
    """One text node and where its content sits in the linearized text."""

    node: LexborNode
    text: str
    start: int  # offset of text[0] in the linearized string
    path: tuple[int, ...]  # child indices from the tree root, for ordering

    @property
    def end(self) -> int:
        return self.start + len(self.text)


@dataclass(frozen=True, eq=False)
class TextSnapshot:
    """Runs plus their concatenation, taken at one instant."""

    runs: tuple[TextRun, ...]
    text: str


def same_node(a: LexborNode | None, b: LexborNode | None) -> bool:
    """Identity comparison for selectolax nodes.

    Node wrappers are recreated on every access, and ``==`` falls back to
    comparing serialized HTML, so identity goes through the node pointer.
    """
    if a is None or b is None:
        return False
    return a.mem_id == b.mem_id


def contains(ancestor: LexborNode, node: LexborNode) -> bool:
    """True when ``node`` is ``ancestor`` or one of its descendants."""
    current: LexborNode | None = node
    while current is not None:
        if same_node(current, ancestor):
            return True
        current = current.parent
    return False


def tree_top(node: LexborNode) -> LexborNode:
    """Topmost ancestor: the document node, or the root of a detached subtree."""
    current = node
    while current.parent is not None:
        current = current.parent
    return current


def node_path(node: LexborNode) -> tuple[int, ...]:
    """Child-index path from the topmost ancestor down to ``node``.

    Lexicographic order of paths is document order.
    """
    indices: list[int] = []
    current = node
    while current.parent is not None:
        index = 0
        sibling = current.prev
        while sibling is not None:
            index += 1
            sibling = sibling.prev
        indices.append(index)
        current = current.parent
    return tuple(reversed(indices))


def _is_excluded_element(node: LexborNode) -> bool:
    if not node.is_element_node:
        return False
    if node.tag in EXCLUDED_TAGS:
        return True
    return node.attributes.get("id") in EXCLUDED_IDS


def is_excluded(node: LexborNode) -> bool:
    """True when the node or one of its ancestors is excluded from the text."""
    current: LexborNode | None = node
    while current is not None:
        if _is_excluded_element(current):
            return True
        current = current.parent
    return False


def collect_text_runs(
    root: LexborNode, *, include_excluded: bool = False
) -> list[TextRun]:
    """Collect non-empty text nodes under ``root`` in document order.

    Args:
        root: Subtree to walk, normally the document body.
        include_excluded: Also collect text inside excluded elements. Used
            when reproducing what a raw selection covers; offsets in the
            result then no longer match the linearized text.

    Returns:
        Runs with cumulative start offsets.
    """
    runs: list[TextRun] = []
    offset = 0

    def _walk(node: LexborNode, path: tuple[int, ...], excluded: bool) -> None:
        nonlocal offset
        child = node.first_child
        index = 0
        while child is not None:
            child_path = (*path, index)
            if child.is_text_node:
                text = child.text_content or ""
                if text and (include_excluded or not excluded):
                    runs.append(TextRun(child, text, offset, child_path))
                    offset += len(text)
            elif child.is_element_node:
                _walk(child, child_path, excluded or _is_excluded_element(child))
            child = child.next
            index += 1

    _walk(root, node_path(root), is_excluded(root))
    return runs


def linearize(root: LexborNode) -> TextSnapshot:
    """Build the linearized text of ``root``.

    Computed fresh on every call; the tree may have changed since the last one.
    """
    runs = collect_text_runs(root)
    return TextSnapshot(runs=tuple(runs), text="".join(run.text for run in runs))
