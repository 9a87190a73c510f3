"""Text anchoring: linearize, capture, resolve, segment and paint."""

from webannotations.anchoring.codec import build_annotation, linear_offset
from webannotations.anchoring.linearizer import (
    TextRun,
    TextSnapshot,
    collect_text_runs,
    linearize,
)
from webannotations.anchoring.painter import (
    PaintResult,
    RepaintReport,
    WrapOutcome,
    find_wrappers,
    paint,
    repaint_all,
    unpaint,
    unpaint_all,
)
from webannotations.anchoring.resolver import Resolution, resolve_anchor
from webannotations.anchoring.segments import Segment, build_segments
from webannotations.anchoring.selection import (
    DomPoint,
    SelectionRange,
    is_range_highlightable,
    select_text,
)

__all__ = [
    "DomPoint",
    "PaintResult",
    "RepaintReport",
    "Resolution",
    "Segment",
    "SelectionRange",
    "TextRun",
    "TextSnapshot",
    "WrapOutcome",
    "build_annotation",
    "build_segments",
    "collect_text_runs",
    "find_wrappers",
    "is_range_highlightable",
    "linear_offset",
    "linearize",
    "paint",
    "repaint_all",
    "resolve_anchor",
    "select_text",
    "unpaint",
    "unpaint_all",
]
