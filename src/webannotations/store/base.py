"""Annotation store interface and the in-memory backend.

A store is a flat key/value map: the key is a page URL without its
fragment, the value is the list of annotation records for that page.
Records are plain JSON-compatible dicts; validation happens in the layers
above.
"""

from __future__ import annotations

import copy
from typing import Any, Protocol, runtime_checkable
from urllib.parse import urlsplit, urlunsplit

AnnotationRecords = list[dict[str, Any]]


def url_key(url: str) -> str:
    """Storage key for a page URL: the URL with its fragment removed.

    Parseable URLs are reassembled in canonical form (an empty path on a
    hierarchical URL becomes ``/``). Anything that fails to parse falls back
    to cutting at the first ``#``.
    """
    try:
        parts = urlsplit(url)
    except ValueError:
        return url.split("#", 1)[0]
    path = parts.path
    if parts.netloc and not path:
        path = "/"
    return urlunsplit(
        (parts.scheme, parts.netloc.lower(), path, parts.query, "")
    )


@runtime_checkable
class AnnotationStore(Protocol):
    """Async key/value persistence for annotation lists."""

    async def get(self, key: str) -> AnnotationRecords | None: ...

    async def set(self, key: str, records: AnnotationRecords) -> None: ...

    async def remove(self, key: str) -> None: ...

    async def get_all(self) -> dict[str, Any]: ...

    async def set_many(self, mapping: dict[str, AnnotationRecords]) -> None: ...

    async def remove_many(self, keys: list[str]) -> None: ...

    async def close(self) -> None: ...


class MemoryStore:
    """Process-local store. Values are deep-copied in and out."""

    def __init__(self, initial: dict[str, Any] | None = None) -> None:
        self._data: dict[str, Any] = copy.deepcopy(initial) if initial else {}

    async def get(self, key: str) -> AnnotationRecords | None:
        value = self._data.get(key)
        return copy.deepcopy(value) if value is not None else None

    async def set(self, key: str, records: AnnotationRecords) -> None:
        self._data[key] = copy.deepcopy(records)

    async def remove(self, key: str) -> None:
        self._data.pop(key, None)

    async def get_all(self) -> dict[str, Any]:
        return copy.deepcopy(self._data)

    async def set_many(self, mapping: dict[str, AnnotationRecords]) -> None:
        for key, records in mapping.items():
            self._data[key] = copy.deepcopy(records)

    async def remove_many(self, keys: list[str]) -> None:
        for key in keys:
            self._data.pop(key, None)

    async def close(self) -> None:
        return None
