"""Bulk export and import of annotation data.

The export format is a JSON object::

    {
      "format": "web-annotations-export",
      "version": 1,
      "exportedAt": "<ISO-8601>",
      "annotationsByUrl": {"<url key>": [<annotation>, ...]}
    }

Imports accept either that envelope or a bare ``{url key: [...]}`` map.
Every entry is sanitized before anything is written, so a rejected import
leaves the store untouched.
"""

from __future__ import annotations

import json
import logging
import secrets
import time
from collections.abc import Mapping
from typing import TYPE_CHECKING, Any, Literal

from pydantic import ValidationError

from webannotations.anchoring.codec import iso_timestamp
from webannotations.models import Annotation, annotation_identity

if TYPE_CHECKING:
    from collections.abc import Iterable
    from datetime import datetime

    from webannotations.store import AnnotationStore

logger = logging.getLogger(__name__)

EXPORT_FORMAT = "web-annotations-export"
EXPORT_VERSION = 1
BLOCKED_KEYS = frozenset(("__proto__", "constructor", "prototype"))

ImportMode = Literal["merge", "replace"]
IMPORT_MODES: tuple[ImportMode, ...] = ("merge", "replace")

AnnotationMap = dict[str, list[Annotation]]


class ImportPayloadError(ValueError):
    """Raised when an import payload cannot be used. The message is user-facing."""


# ---------------------------------------------------------------------------
# Sanitization
# ---------------------------------------------------------------------------


def is_safe_key(key: object) -> bool:
    """Whether ``key`` may be used as a storage key."""
    return isinstance(key, str) and bool(key) and key not in BLOCKED_KEYS


def make_fallback_id() -> str:
    """Identifier for imported annotations that arrive without one."""
    return f"imp-{int(time.time() * 1000)}-{secrets.token_hex(6)}"


def sanitize_annotation(candidate: Any) -> Annotation | None:
    """Normalize one imported record, or None when it has no usable text."""
    if not isinstance(candidate, Mapping):
        return None
    text = candidate.get("text")
    if not isinstance(text, str) or not text.strip():
        return None

    record = dict(candidate)
    identifier = record.get("id")
    if not isinstance(identifier, str) or not identifier:
        record["id"] = make_fallback_id()
    try:
        return Annotation.model_validate(record)
    except ValidationError:
        logger.debug("Dropping unusable import record", exc_info=True)
        return None


def _sanitize_map(raw: Mapping[Any, Any]) -> AnnotationMap:
    result: AnnotationMap = {}
    for key, value in raw.items():
        if not is_safe_key(key) or not isinstance(value, list):
            continue
        annotations = [
            annotation
            for annotation in map(sanitize_annotation, value)
            if annotation is not None
        ]
        if annotations:
            result[key] = annotations
    return result


def extract_annotation_map(storage_data: Mapping[Any, Any]) -> AnnotationMap:
    """Sanitized view of everything in the store."""
    return _sanitize_map(storage_data)


def parse_import_payload(parsed: Any) -> AnnotationMap:
    """Validate a decoded import payload.

    Raises:
        ImportPayloadError: If the payload is not an object, or contains no
            usable annotations.
    """
    if not isinstance(parsed, Mapping):
        msg = "JSON must be an object."
        raise ImportPayloadError(msg)

    candidate = parsed
    by_url = parsed.get("annotationsByUrl")
    if parsed.get("format") == EXPORT_FORMAT and isinstance(by_url, Mapping):
        candidate = by_url

    normalized = _sanitize_map(candidate)
    if not normalized:
        msg = "No valid annotation data found."
        raise ImportPayloadError(msg)
    return normalized


def load_import_text(text: str) -> AnnotationMap:
    """Decode and validate import JSON text."""
    if not text.strip():
        msg = "Provide a JSON file or paste JSON."
        raise ImportPayloadError(msg)
    try:
        parsed = json.loads(text)
    except json.JSONDecodeError as exc:
        msg = f"Invalid JSON: {exc.msg} (line {exc.lineno}, column {exc.colno})."
        raise ImportPayloadError(msg) from exc
    return parse_import_payload(parsed)


# ---------------------------------------------------------------------------
# Merge & export
# ---------------------------------------------------------------------------


def merge_annotations(
    existing: Iterable[Annotation], incoming: Iterable[Annotation]
) -> list[Annotation]:
    """Merge two lists by identity.

    An incoming annotation that matches an existing one replaces it in
    place; the rest are appended in order.
    """
    result: list[Annotation] = []
    index_by_identity: dict[str, int] = {}
    for annotation in existing:
        index_by_identity[annotation_identity(annotation)] = len(result)
        result.append(annotation)
    for annotation in incoming:
        identity = annotation_identity(annotation)
        index = index_by_identity.get(identity)
        if index is None:
            index_by_identity[identity] = len(result)
            result.append(annotation)
        else:
            result[index] = annotation
    return result


def count_annotations(annotation_map: Mapping[str, list[Annotation]]) -> int:
    return sum(len(annotations) for annotations in annotation_map.values())


def build_export(
    annotation_map: Mapping[str, list[Annotation]], now: datetime | None = None
) -> dict[str, Any]:
    """Wrap an annotation map in the export envelope."""
    return {
        "format": EXPORT_FORMAT,
        "version": EXPORT_VERSION,
        "exportedAt": iso_timestamp(now),
        "annotationsByUrl": {
            key: [annotation.to_record() for annotation in annotations]
            for key, annotations in annotation_map.items()
        },
    }


def export_filename(now: datetime | None = None) -> str:
    """Default export file name, e.g. ``web-annotations-export-2024-...json``."""
    stamp = iso_timestamp(now).replace(":", "-").replace(".", "-")
    return f"{EXPORT_FORMAT}-{stamp}.json"


# ---------------------------------------------------------------------------
# Store operations
# ---------------------------------------------------------------------------


def _to_records(annotation_map: AnnotationMap) -> dict[str, list[dict[str, Any]]]:
    return {
        key: [annotation.to_record() for annotation in annotations]
        for key, annotations in annotation_map.items()
    }


async def export_store(
    store: AnnotationStore, now: datetime | None = None
) -> dict[str, Any]:
    """Export everything in the store."""
    return build_export(extract_annotation_map(await store.get_all()), now)


async def import_into_store(
    store: AnnotationStore, incoming: AnnotationMap, mode: str = "merge"
) -> AnnotationMap:
    """Write a validated import into the store.

    Args:
        store: Target store.
        incoming: Output of ``parse_import_payload``.
        mode: ``"merge"`` keeps existing annotations and overwrites matches;
            ``"replace"`` removes all existing annotation data first.

    Returns:
        The map that was imported.

    Raises:
        ImportPayloadError: If ``mode`` is not recognised.
    """
    if mode not in IMPORT_MODES:
        msg = "Invalid import mode."
        raise ImportPayloadError(msg)

    existing = extract_annotation_map(await store.get_all())
    if mode == "replace":
        if existing:
            await store.remove_many(list(existing))
        if incoming:
            await store.set_many(_to_records(incoming))
    else:
        merged = {
            key: merge_annotations(existing.get(key, []), annotations)
            for key, annotations in incoming.items()
        }
        if merged:
            await store.set_many(_to_records(merged))

    logger.info(
        "Imported %d annotation(s) across %d URL(s) (%s)",
        count_annotations(incoming),
        len(incoming),
        mode,
    )
    return incoming


async def summarize_store(store: AnnotationStore) -> list[tuple[str, int]]:
    """``(url key, annotation count)`` rows, most-annotated first."""
    annotation_map = extract_annotation_map(await store.get_all())
    rows = [(key, len(annotations)) for key, annotations in annotation_map.items()]
    rows.sort(key=lambda row: row[1], reverse=True)
    return rows


async def remove_url(store: AnnotationStore, key: str) -> None:
    """Delete all annotations stored under one URL key."""
    await store.remove_many([key])
