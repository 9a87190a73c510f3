"""Anchor resolution: find where a stored annotation lives in the current text.

Two strategies, tried in order:

1. Position: the stored ``[start, end)`` still covers the annotation's
   text, compared with whitespace normalized.
2. Quote: search for the exact text and accept the first occurrence whose
   surrounding characters match the stored prefix and suffix.

If neither succeeds the annotation is orphaned for this render.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING, Literal

from webannotations.models import normalize_whitespace

if TYPE_CHECKING:
    from webannotations.anchoring.linearizer import TextSnapshot
    from webannotations.models import Annotation

logger = logging.getLogger(__name__)

ResolutionMethod = Literal["position", "quote"]


@dataclass(frozen=True)
class Resolution:
    """Where an annotation resolved to, and which strategy found it."""

    start: int
    end: int
    method: ResolutionMethod


def _verify_position(annotation: Annotation, text: str) -> Resolution | None:
    position = annotation.position
    if position is None:
        return None
    start, end = position.start, position.end
    if start < 0 or end <= start:
        return None
    # An end past the text is sliced short, not rejected
    current = normalize_whitespace(text[start:end])
    if current != normalize_whitespace(annotation.text):
        return None
    return Resolution(start, min(end, len(text)), "position")


def _search_quote(annotation: Annotation, text: str) -> Resolution | None:
    needle = annotation.text
    prefix = annotation.quote.prefix
    suffix = annotation.quote.suffix

    index = text.find(needle)
    while index != -1:
        after_start = index + len(needle)
        before = text[max(0, index - len(prefix)) : index]
        after = text[after_start : after_start + len(suffix)]
        if before.endswith(prefix) and after.startswith(suffix):
            return Resolution(index, after_start, "quote")
        index = text.find(needle, index + 1)
    return None


def resolve_anchor(annotation: Annotation, snapshot: TextSnapshot) -> Resolution | None:
    """Locate ``annotation`` in the linearized text.

    Args:
        annotation: Stored annotation.
        snapshot: Fresh linearization of the content root.

    Returns:
        The resolved range, or None when the annotation is orphaned.
    """
    resolution = _verify_position(annotation, snapshot.text)
    if resolution is None:
        resolution = _search_quote(annotation, snapshot.text)
    if resolution is None:
        logger.debug("Annotation %s did not resolve", annotation.id)
    return resolution
