"""Segment building: split a linear range into per-text-node pieces."""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from collections.abc import Sequence

    from selectolax.lexbor import LexborNode

    from webannotations.anchoring.linearizer import TextRun
    from webannotations.anchoring.selection import SelectionRange


@dataclass(frozen=True, eq=False)
class Segment:
    """Node-local ``[start, end)`` slice of one text node."""

    node: LexborNode
    start: int
    end: int


def build_segments(start: int, end: int, runs: Sequence[TextRun]) -> list[Segment]:
    """Clamp the linear range ``[start, end)`` to every run it overlaps.

    Runs are in document order, so the scan stops at the first run that
    begins at or after ``end``. Empty intersections are skipped.
    """
    segments: list[Segment] = []
    for run in runs:
        if run.start >= end:
            break
        if run.end <= start:
            continue
        local_start = max(start, run.start) - run.start
        local_end = min(end, run.end) - run.start
        if local_end > local_start:
            segments.append(Segment(run.node, local_start, local_end))
    return segments


def segments_for_range(
    selection: SelectionRange, runs: Sequence[TextRun]
) -> list[Segment]:
    """Cut segments straight from a live selection.

    Used for freshly created highlights, where the selection is the
    authority and no resolution step is needed.
    """
    segments: list[Segment] = []
    for run in runs:
        bounds = selection.clamp_run(run)
        if bounds is not None:
            segments.append(Segment(run.node, *bounds))
    return segments
