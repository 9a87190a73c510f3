"""SQLModel table for the database-backed annotation store."""

from __future__ import annotations

from datetime import UTC, datetime
from typing import Any

from sqlalchemy import JSON, Column, DateTime, String
from sqlmodel import Field, SQLModel


def _utcnow() -> datetime:
    """Return current UTC time as timezone-aware datetime."""
    return datetime.now(UTC)


class PageAnnotations(SQLModel, table=True):
    """All annotations for one page.

    Attributes:
        url_key: Page URL without fragment; the store key.
        annotations: Annotation records as stored JSON.
        updated_at: Last write time.
    """

    __tablename__ = "page_annotations"

    url_key: str = Field(
        sa_column=Column(String, primary_key=True, nullable=False),
    )
    annotations: list[dict[str, Any]] = Field(
        default_factory=list,
        sa_column=Column(JSON, nullable=False),
    )
    updated_at: datetime = Field(
        default_factory=_utcnow,
        sa_column=Column(DateTime(timezone=True), nullable=False),
    )
