"""Shared pytest fixtures for webannotations tests."""

from __future__ import annotations

import pytest

from webannotations.config import Settings
from webannotations.store import MemoryStore


@pytest.fixture
def settings() -> Settings:
    """Isolated settings: in-memory store, short navigation delay."""
    return Settings(  # type: ignore[call-arg]
        _env_file=None,
        store={"backend": "memory"},
        navigation={"url_check_delay_ms": 10},
    )


@pytest.fixture
def store() -> MemoryStore:
    return MemoryStore()
