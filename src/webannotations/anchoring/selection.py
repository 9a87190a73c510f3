"""Selection ranges over a selectolax tree.

A boundary point is ``(container, offset)``: for a text container the
offset counts characters, for an element container it counts child
positions. Ordering follows the W3C DOM Range boundary-point rules, so a
range built here behaves the way a browser selection would.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING

from webannotations.anchoring.linearizer import (
    EXCLUDED_IDS,
    TextRun,
    collect_text_runs,
    contains,
    linearize,
    node_path,
    same_node,
    tree_top,
)

if TYPE_CHECKING:
    from selectolax.lexbor import LexborNode

    from webannotations.anchoring.linearizer import TextSnapshot


@dataclass(frozen=True, eq=False)
class DomPoint:
    """A boundary point in the tree."""

    node: LexborNode
    offset: int


def _child_index(node: LexborNode) -> int:
    index = 0
    sibling = node.prev
    while sibling is not None:
        index += 1
        sibling = sibling.prev
    return index


def _compare_paths(
    path_a: tuple[int, ...], offset_a: int, path_b: tuple[int, ...], offset_b: int
) -> int:
    if path_a == path_b:
        return (offset_a > offset_b) - (offset_a < offset_b)
    if path_b[: len(path_a)] == path_a:
        # A's container is an ancestor of B's
        return 1 if path_b[len(path_a)] < offset_a else -1
    if path_a[: len(path_b)] == path_b:
        return -1 if path_a[len(path_b)] < offset_b else 1
    return -1 if path_a < path_b else 1


def compare_points(a: DomPoint, b: DomPoint) -> int:
    """Return -1, 0 or 1 as ``a`` is before, equal to, or after ``b``."""
    if same_node(a.node, b.node):
        return (a.offset > b.offset) - (a.offset < b.offset)
    return _compare_paths(node_path(a.node), a.offset, node_path(b.node), b.offset)


@dataclass(frozen=True, eq=False)
class SelectionRange:
    """A live range between two boundary points."""

    start: DomPoint
    end: DomPoint

    @property
    def collapsed(self) -> bool:
        return compare_points(self.start, self.end) >= 0

    def clamp_run(self, run: TextRun) -> tuple[int, int] | None:
        """Node-local ``(start, end)`` of the part of ``run`` inside the range."""
        return _clamp(
            run.node,
            run.path,
            len(run.text),
            (node_path(self.start.node), self.start.offset),
            (node_path(self.end.node), self.end.offset),
            self,
        )

    def text(self) -> str:
        """Concatenated text of every text node the range covers.

        Mirrors ``Range.toString()``: text inside excluded elements counts.
        """
        if self.collapsed:
            return ""
        start_key = (node_path(self.start.node), self.start.offset)
        end_key = (node_path(self.end.node), self.end.offset)
        parts: list[str] = []
        top = tree_top(self.start.node)
        for run in collect_text_runs(top, include_excluded=True):
            bounds = _clamp(
                run.node, run.path, len(run.text), start_key, end_key, self
            )
            if bounds is not None:
                parts.append(run.text[bounds[0] : bounds[1]])
        return "".join(parts)

    def intersects_node(self, node: LexborNode) -> bool:
        """DOM ``Range.intersectsNode`` equivalent."""
        parent = node.parent
        if parent is None:
            return True
        parent_path = node_path(parent)
        index = _child_index(node)
        start_path = node_path(self.start.node)
        end_path = node_path(self.end.node)
        before_end = (
            _compare_paths(parent_path, index, end_path, self.end.offset) < 0
        )
        after_start = (
            _compare_paths(parent_path, index + 1, start_path, self.start.offset) > 0
        )
        return before_end and after_start


def _clamp(
    node: LexborNode,
    path: tuple[int, ...],
    length: int,
    start_key: tuple[tuple[int, ...], int],
    end_key: tuple[tuple[int, ...], int],
    selection: SelectionRange,
) -> tuple[int, int] | None:
    if same_node(node, selection.start.node):
        lo = min(max(selection.start.offset, 0), length)
    elif _compare_paths(path, 0, *start_key) >= 0:
        lo = 0
    else:
        return None

    if same_node(node, selection.end.node):
        hi = min(max(selection.end.offset, 0), length)
    elif _compare_paths(path, length, *end_key) <= 0:
        hi = length
    else:
        return None

    if hi <= lo:
        return None
    return lo, hi


def is_range_highlightable(selection: SelectionRange, root: LexborNode) -> bool:
    """Whether a selection may become a highlight.

    Rejects collapsed ranges, ranges with a boundary outside ``root`` and
    ranges that touch the annotation UI.
    """
    if selection.collapsed:
        return False
    if not contains(root, selection.start.node):
        return False
    if not contains(root, selection.end.node):
        return False
    for element_id in EXCLUDED_IDS:
        for ui_root in root.css(f"#{element_id}"):
            if selection.intersects_node(ui_root):
                return False
    return True


def select_offsets(
    snapshot: TextSnapshot, start: int, end: int
) -> SelectionRange | None:
    """Range covering ``[start, end)`` of the linearized text."""
    if not 0 <= start < end <= len(snapshot.text):
        return None
    start_point = end_point = None
    for run in snapshot.runs:
        if start_point is None and run.start <= start < run.end:
            start_point = DomPoint(run.node, start - run.start)
        if run.start < end <= run.end:
            end_point = DomPoint(run.node, end - run.start)
            break
    if start_point is None or end_point is None:
        return None
    return SelectionRange(start_point, end_point)


def select_text(
    root: LexborNode, text: str, occurrence: int = 0
) -> SelectionRange | None:
    """Select the ``occurrence``-th match of ``text`` in the page text.

    Stands in for a user drag-selecting that text.
    """
    if not text or occurrence < 0:
        return None
    snapshot = linearize(root)
    index = snapshot.text.find(text)
    for _ in range(occurrence):
        if index == -1:
            break
        index = snapshot.text.find(text, index + 1)
    if index == -1:
        return None
    return select_offsets(snapshot, index, index + len(text))
