"""Annotation persistence keyed by page URL."""

from __future__ import annotations

from typing import TYPE_CHECKING

from webannotations.store.base import (
    AnnotationRecords,
    AnnotationStore,
    MemoryStore,
    url_key,
)
from webannotations.store.database import DatabaseStore

if TYPE_CHECKING:
    from webannotations.config import Settings


def open_store(settings: Settings) -> AnnotationStore:
    """Build the store backend named in configuration."""
    if settings.store.backend == "memory":
        return MemoryStore()
    return DatabaseStore(settings.store.url, echo=settings.store.echo)


__all__ = [
    "AnnotationRecords",
    "AnnotationStore",
    "DatabaseStore",
    "MemoryStore",
    "open_store",
    "url_key",
]
