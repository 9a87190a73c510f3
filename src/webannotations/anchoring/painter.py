"""Highlight painting: wrap resolved text in ``<span class="web-highlight">``.

Painting is split in two phases. ``plan_paint`` resolves an annotation
against a fresh snapshot and cuts it into segments without touching the
tree. ``commit`` then performs the mutation: each segment's text node is
split into before/selected/after pieces and the selected piece is replaced
by a wrapper element. Segments are committed last-to-first so earlier
nodes are untouched while later ones are rewritten.

Wrappers only ever add element structure around existing characters, so
the linearized text is the same before and after painting, and unpainting
restores the original node layout.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING

from PIL import ImageColor

from webannotations.anchoring.linearizer import linearize
from webannotations.anchoring.resolver import resolve_anchor
from webannotations.anchoring.segments import build_segments

if TYPE_CHECKING:
    from collections.abc import Iterable, Sequence

    from selectolax.lexbor import LexborHTMLParser, LexborNode

    from webannotations.anchoring.linearizer import TextSnapshot
    from webannotations.anchoring.resolver import Resolution
    from webannotations.anchoring.segments import Segment
    from webannotations.models import Annotation

logger = logging.getLogger(__name__)

HIGHLIGHT_CLASS = "web-highlight"
ANNOTATION_ID_ATTR = "data-annotation-id"
COMMENT_ATTR = "data-comment"
HIGHLIGHT_ALPHA = 0.5


# ---------------------------------------------------------------------------
# Result types
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class WrapOutcome:
    """Result of wrapping one segment.

    Attributes:
        ok: True when the wrapper was inserted.
        reason: Why the segment was skipped, when ``ok`` is False.
    """

    ok: bool
    reason: str | None = None


@dataclass(frozen=True, eq=False)
class PaintPlan:
    """A resolved annotation cut into segments, ready to commit."""

    annotation: Annotation
    resolution: Resolution
    segments: tuple[Segment, ...]


@dataclass(frozen=True)
class PaintResult:
    """Outcome of painting one annotation."""

    annotation_id: str
    resolution: Resolution | None
    outcomes: tuple[WrapOutcome, ...] = ()

    @property
    def applied(self) -> bool:
        return any(outcome.ok for outcome in self.outcomes)


@dataclass(frozen=True)
class RepaintReport:
    """Which annotations painted and which were orphaned in a full repaint."""

    painted: tuple[str, ...]
    orphaned: tuple[str, ...]


# ---------------------------------------------------------------------------
# Colour
# ---------------------------------------------------------------------------


def to_transparent_color(color: str, alpha: float = HIGHLIGHT_ALPHA) -> str:
    """Convert a CSS colour to ``rgba(r, g, b, alpha)``.

    Colours Pillow cannot parse are returned unchanged.
    """
    try:
        rgb = ImageColor.getrgb(color)
    except ValueError:
        return color
    alpha = min(1.0, max(0.0, alpha))
    red, green, blue = rgb[:3]
    return f"rgba({red}, {green}, {blue}, {alpha:g})"


# ---------------------------------------------------------------------------
# Painting
# ---------------------------------------------------------------------------


def plan_paint(annotation: Annotation, snapshot: TextSnapshot) -> PaintPlan | None:
    """Resolve and segment an annotation. Returns None when it is orphaned."""
    resolution = resolve_anchor(annotation, snapshot)
    if resolution is None:
        return None
    segments = build_segments(resolution.start, resolution.end, snapshot.runs)
    return PaintPlan(annotation, resolution, tuple(segments))


def _build_wrapper(
    tree: LexborHTMLParser, annotation: Annotation, text: str, alpha: float
) -> LexborNode:
    wrapper = tree.create_node("span")
    wrapper.attrs["class"] = HIGHLIGHT_CLASS
    wrapper.attrs[ANNOTATION_ID_ATTR] = annotation.id
    wrapper.attrs["style"] = (
        f"background-color: {to_transparent_color(annotation.color, alpha)}"
    )
    if annotation.comment:
        wrapper.attrs[COMMENT_ATTR] = annotation.comment
    wrapper.insert_child(text)
    return wrapper


def wrap_segment(
    segment: Segment,
    annotation: Annotation,
    tree: LexborHTMLParser,
    *,
    alpha: float = HIGHLIGHT_ALPHA,
) -> WrapOutcome:
    """Split the segment's text node and wrap the selected piece.

    Expected failures (a node no longer in the tree, offsets that no longer
    fit the node) are reported in the outcome instead of raised.
    """
    node = segment.node
    if node.parent is None:
        return WrapOutcome(ok=False, reason="detached")
    content = node.text_content or ""
    if not 0 <= segment.start < segment.end <= len(content):
        return WrapOutcome(ok=False, reason="out-of-bounds")

    before = content[: segment.start]
    selected = content[segment.start : segment.end]
    after = content[segment.end :]

    # The wrapper is complete before insertion; replace_with imports it.
    wrapper = _build_wrapper(tree, annotation, selected, alpha)
    if before:
        node.insert_before(before)
    if after:
        node.insert_after(after)
    node.replace_with(wrapper)
    return WrapOutcome(ok=True)


def commit(
    plan: PaintPlan, tree: LexborHTMLParser, *, alpha: float = HIGHLIGHT_ALPHA
) -> PaintResult:
    """Apply a paint plan, last segment first."""
    return _commit_segments(
        plan.annotation, plan.segments, tree, plan.resolution, alpha
    )


def _commit_segments(
    annotation: Annotation,
    segments: Sequence[Segment],
    tree: LexborHTMLParser,
    resolution: Resolution | None,
    alpha: float,
) -> PaintResult:
    outcomes = tuple(
        wrap_segment(segment, annotation, tree, alpha=alpha)
        for segment in reversed(segments)
    )
    failed = [outcome.reason for outcome in outcomes if not outcome.ok]
    if failed:
        logger.warning(
            "Annotation %s: %d of %d segment(s) not wrapped (%s)",
            annotation.id,
            len(failed),
            len(outcomes),
            ", ".join(sorted({str(reason) for reason in failed})),
        )
    return PaintResult(annotation.id, resolution, outcomes)


def paint_segments(
    annotation: Annotation,
    segments: Sequence[Segment],
    tree: LexborHTMLParser,
    *,
    alpha: float = HIGHLIGHT_ALPHA,
) -> PaintResult:
    """Wrap pre-computed segments, e.g. ones cut from a live selection."""
    return _commit_segments(annotation, segments, tree, None, alpha)


def paint(
    annotation: Annotation,
    tree: LexborHTMLParser,
    *,
    root: LexborNode | None = None,
    alpha: float = HIGHLIGHT_ALPHA,
) -> PaintResult:
    """Resolve an annotation against the current tree and paint it.

    Args:
        annotation: Annotation to paint.
        tree: Parser owning the document; used to create wrapper elements.
        root: Content root, defaults to ``<body>``.
        alpha: Highlight opacity.

    Returns:
        The paint result; ``applied`` is False for an orphaned annotation.
    """
    content_root = root if root is not None else tree.body
    if content_root is None:
        return PaintResult(annotation.id, None)
    plan = plan_paint(annotation, linearize(content_root))
    if plan is None:
        return PaintResult(annotation.id, None)
    return commit(plan, tree, alpha=alpha)


# ---------------------------------------------------------------------------
# Unpainting
# ---------------------------------------------------------------------------


def find_wrappers(
    root: LexborNode, annotation_id: str | None = None
) -> list[LexborNode]:
    """Highlight wrappers under ``root``, optionally for one annotation only."""
    wrappers = root.css(f"span.{HIGHLIGHT_CLASS}")
    if annotation_id is None:
        return wrappers
    return [
        wrapper
        for wrapper in wrappers
        if wrapper.attributes.get(ANNOTATION_ID_ATTR) == annotation_id
    ]


def owning_annotation_id(node: LexborNode, root: LexborNode) -> str | None:
    """Annotation id of the nearest wrapper enclosing ``node``, if any."""
    current: LexborNode | None = node
    while current is not None:
        if current.is_element_node and current.tag == "span":
            attributes = current.attributes
            classes = (attributes.get("class") or "").split()
            if HIGHLIGHT_CLASS in classes:
                return attributes.get(ANNOTATION_ID_ATTR)
        if current.mem_id == root.mem_id:
            return None
        current = current.parent
    return None


def _unwrap_all(wrappers: Iterable[LexborNode]) -> int:
    parents: list[LexborNode] = []
    count = 0
    for wrapper in wrappers:
        parent = wrapper.parent
        if parent is None:
            continue
        wrapper.unwrap()
        parents.append(parent)
        count += 1
    for parent in parents:
        parent.merge_text_nodes()
    return count


def unpaint(root: LexborNode, annotation_id: str) -> int:
    """Remove every wrapper of one annotation, keeping its text.

    Adjacent text nodes are merged back together afterwards. Calling this
    again for the same id is a no-op.

    Returns:
        Number of wrappers removed.
    """
    return _unwrap_all(find_wrappers(root, annotation_id))


def unpaint_all(root: LexborNode) -> int:
    """Remove every highlight wrapper under ``root``."""
    return _unwrap_all(find_wrappers(root))


def set_comment(root: LexborNode, annotation_id: str, comment: str) -> int:
    """Update ``data-comment`` on an annotation's wrappers; empty removes it."""
    wrappers = find_wrappers(root, annotation_id)
    for wrapper in wrappers:
        if comment:
            wrapper.attrs[COMMENT_ATTR] = comment
        elif COMMENT_ATTR in wrapper.attributes:
            del wrapper.attrs[COMMENT_ATTR]
    return len(wrappers)


def repaint_all(
    tree: LexborHTMLParser,
    annotations: Iterable[Annotation],
    *,
    root: LexborNode | None = None,
    alpha: float = HIGHLIGHT_ALPHA,
) -> RepaintReport:
    """Strip all wrappers and paint every annotation afresh.

    Annotations are painted in descending order of stored start offset
    (missing positions count as 0) so that later regions are wrapped before
    earlier ones. The tree is re-linearized for each annotation.
    """
    content_root = root if root is not None else tree.body
    if content_root is None:
        return RepaintReport(painted=(), orphaned=())

    unpaint_all(content_root)
    ordered = sorted(
        annotations,
        key=lambda annotation: annotation.position.start if annotation.position else 0,
        reverse=True,
    )

    painted: list[str] = []
    orphaned: list[str] = []
    for annotation in ordered:
        result = paint(annotation, tree, root=content_root, alpha=alpha)
        if result.applied:
            painted.append(annotation.id)
        else:
            orphaned.append(annotation.id)

    logger.info("Repaint: %d painted, %d orphaned", len(painted), len(orphaned))
    return RepaintReport(painted=tuple(painted), orphaned=tuple(orphaned))
