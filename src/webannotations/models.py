"""Annotation data model.

An annotation records the selected text, a positional anchor into the
page's linearized text, and a short prefix/suffix quote used to find the
text again after the page shifts. Records are stored and exchanged as
plain JSON objects, so loading is lenient: malformed optional fields are
normalized rather than rejected.
"""

from __future__ import annotations

import logging
import math
import re
from collections.abc import Iterable, Mapping
from typing import Any

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    ValidationError,
    field_validator,
    model_validator,
)

logger = logging.getLogger(__name__)

COLORS: tuple[str, ...] = ("yellow", "greenyellow", "cyan", "magenta", "red")
DEFAULT_COLOR = COLORS[0]

_WHITESPACE_RE = re.compile(r"\s+")


def normalize_whitespace(value: str) -> str:
    """Collapse runs of whitespace to a single space and trim the ends."""
    return _WHITESPACE_RE.sub(" ", value).strip()


def _is_finite_number(value: object) -> bool:
    if isinstance(value, bool) or not isinstance(value, int | float):
        return False
    return math.isfinite(value)


class TextPosition(BaseModel):
    """Half-open ``[start, end)`` range into the linearized page text."""

    model_config = ConfigDict(frozen=True)

    start: int = Field(ge=0)
    end: int

    @model_validator(mode="after")
    def _end_after_start(self) -> TextPosition:
        if self.end <= self.start:
            msg = f"position end ({self.end}) must be greater than start ({self.start})"
            raise ValueError(msg)
        return self


class TextQuote(BaseModel):
    """Context captured around the selection at creation time."""

    model_config = ConfigDict(frozen=True)

    prefix: str = ""
    suffix: str = ""


class Annotation(BaseModel):
    """A single highlight on a page.

    Attributes:
        id: Opaque unique identifier.
        text: Exact selected text, never blank.
        color: CSS colour name or value.
        comment: Free-form note, empty when unset.
        position: Anchor into the linearized text, or None when unknown.
        quote: Prefix/suffix context for fallback resolution.
        created_at: ISO-8601 creation timestamp (``createdAt`` on the wire).
    """

    model_config = ConfigDict(populate_by_name=True)

    id: str = Field(min_length=1)
    text: str
    color: str = DEFAULT_COLOR
    comment: str = ""
    position: TextPosition | None = None
    quote: TextQuote = Field(default_factory=TextQuote)
    created_at: str | None = Field(default=None, alias="createdAt")

    @field_validator("text")
    @classmethod
    def _text_not_blank(cls, value: str) -> str:
        if not value.strip():
            msg = "annotation text must not be blank"
            raise ValueError(msg)
        return value

    @field_validator("color", mode="before")
    @classmethod
    def _default_color(cls, value: Any) -> Any:
        if isinstance(value, str) and value.strip():
            return value
        return DEFAULT_COLOR

    @field_validator("comment", mode="before")
    @classmethod
    def _string_comment(cls, value: Any) -> Any:
        return value if isinstance(value, str) else ""

    @field_validator("position", mode="before")
    @classmethod
    def _lenient_position(cls, value: Any) -> Any:
        if value is None or isinstance(value, TextPosition):
            return value
        if not isinstance(value, Mapping):
            return None
        start, end = value.get("start"), value.get("end")
        if not (_is_finite_number(start) and _is_finite_number(end)):
            return None
        start, end = int(start), int(end)
        if start < 0 or end <= start:
            return None
        return {"start": start, "end": end}

    @field_validator("quote", mode="before")
    @classmethod
    def _lenient_quote(cls, value: Any) -> Any:
        if isinstance(value, TextQuote):
            return value
        if not isinstance(value, Mapping):
            return {}
        prefix, suffix = value.get("prefix"), value.get("suffix")
        return {
            "prefix": prefix if isinstance(prefix, str) else "",
            "suffix": suffix if isinstance(suffix, str) else "",
        }

    @field_validator("created_at", mode="before")
    @classmethod
    def _string_timestamp(cls, value: Any) -> Any:
        return value if isinstance(value, str) else None

    def to_record(self) -> dict[str, Any]:
        """Serialize to the JSON-compatible storage form."""
        return self.model_dump(mode="json", by_alias=True)


def annotation_identity(annotation: Annotation) -> str:
    """Key used to match incoming annotations against existing ones on merge."""
    if annotation.id:
        return f"id:{annotation.id}"
    start = annotation.position.start if annotation.position else -1
    end = annotation.position.end if annotation.position else -1
    return f"{annotation.text}|{start}|{end}|{annotation.created_at or ''}"


def sort_for_listing(annotations: Iterable[Annotation]) -> list[Annotation]:
    """Newest first by ``createdAt``; annotations without one go last."""
    items = list(annotations)
    stamped = [a for a in items if a.created_at]
    unstamped = [a for a in items if not a.created_at]
    stamped.sort(key=lambda a: a.created_at or "", reverse=True)
    return stamped + unstamped


def load_annotations(records: Iterable[Any]) -> list[Annotation]:
    """Validate stored records, skipping any that are not usable annotations.

    A record needs a string ``id`` and a non-blank string ``text``; every
    other field is normalized.
    """
    annotations: list[Annotation] = []
    skipped = 0
    for record in records:
        if not isinstance(record, Mapping):
            skipped += 1
            continue
        try:
            annotations.append(Annotation.model_validate(record))
        except ValidationError:
            skipped += 1
    if skipped:
        logger.warning("Skipped %d malformed annotation record(s)", skipped)
    return annotations
