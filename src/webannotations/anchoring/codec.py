"""Anchor capture: turn a live selection into a durable annotation."""

from __future__ import annotations

import logging
import uuid
from datetime import UTC, datetime
from typing import TYPE_CHECKING

from webannotations.anchoring.linearizer import linearize, same_node, tree_top
from webannotations.anchoring.selection import DomPoint, compare_points
from webannotations.models import DEFAULT_COLOR, Annotation

if TYPE_CHECKING:
    from collections.abc import Sequence

    from selectolax.lexbor import LexborNode

    from webannotations.anchoring.linearizer import TextRun
    from webannotations.anchoring.selection import SelectionRange

logger = logging.getLogger(__name__)

CONTEXT_CHARS = 40


def iso_timestamp(now: datetime | None = None) -> str:
    """UTC timestamp with millisecond precision and a ``Z`` suffix."""
    moment = (now or datetime.now(UTC)).astimezone(UTC)
    return moment.isoformat(timespec="milliseconds").replace("+00:00", "Z")


def linear_offset(point: DomPoint, runs: Sequence[TextRun]) -> int | None:
    """Map a boundary point to an offset in the linearized text.

    A point inside a run maps to that run's start plus the point's offset.
    Any other point maps to the start of the first run after it, or to the
    end of the text when no run follows.

    Returns:
        The offset, or None when the point is not in the same tree as the runs.
    """
    if not runs or not same_node(tree_top(point.node), tree_top(runs[0].node)):
        return None

    for run in runs:
        if same_node(run.node, point.node):
            return run.start + min(max(point.offset, 0), len(run.text))
        if compare_points(point, DomPoint(run.node, 0)) <= 0:
            return run.start
    return runs[-1].end


def build_annotation(
    selection: SelectionRange,
    root: LexborNode,
    *,
    color: str = DEFAULT_COLOR,
    context_chars: int = CONTEXT_CHARS,
    now: datetime | None = None,
) -> Annotation | None:
    """Capture an annotation from a selection.

    Does not touch the tree. When the selection's offsets cannot be mapped
    the annotation is still produced, with no position and an empty quote,
    and is later found (if at all) by text search alone.

    Args:
        selection: The user's selection.
        root: Content root whose linearized text the offsets index.
        color: Highlight colour.
        context_chars: Characters of prefix/suffix context to capture.
        now: Creation time, defaults to the current time.

    Returns:
        The new annotation, or None for a blank selection.
    """
    text = selection.text()
    if not text.strip():
        return None

    snapshot = linearize(root)
    start = linear_offset(selection.start, snapshot.runs)
    end = linear_offset(selection.end, snapshot.runs)

    position = None
    quote = {"prefix": "", "suffix": ""}
    if start is not None and end is not None and end > start:
        position = {"start": start, "end": end}
        quote = {
            "prefix": snapshot.text[max(0, start - context_chars) : start],
            "suffix": snapshot.text[end : end + context_chars],
        }
    else:
        logger.debug("Selection offsets unresolvable (%s, %s)", start, end)

    return Annotation(
        id=str(uuid.uuid4()),
        text=text,
        color=color,
        comment="",
        position=position,
        quote=quote,
        createdAt=iso_timestamp(now),
    )
