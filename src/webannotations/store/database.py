"""Database-backed annotation store.

Uses an async SQLAlchemy engine through SQLModel. Any async driver URL
works; the default is a SQLite file via aiosqlite. The schema is one table
(``page_annotations``) and is created on first use.
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from datetime import UTC, datetime
from pathlib import Path
from typing import TYPE_CHECKING, Any

from sqlalchemy.engine import make_url
from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine
from sqlmodel import SQLModel, col, select
from sqlmodel.ext.asyncio.session import AsyncSession

from webannotations.store.models import PageAnnotations

if TYPE_CHECKING:
    from collections.abc import AsyncIterator

    from sqlalchemy.ext.asyncio import AsyncEngine

    from webannotations.store.base import AnnotationRecords

logger = logging.getLogger(__name__)


def _ensure_sqlite_directory(url: str) -> None:
    """Create the parent directory of a SQLite database file if needed."""
    parsed = make_url(url)
    if not parsed.drivername.startswith("sqlite"):
        return
    database = parsed.database
    if not database or database == ":memory:":
        return
    Path(database).expanduser().parent.mkdir(parents=True, exist_ok=True)


class DatabaseStore:
    """Annotation store persisting one row per page."""

    def __init__(self, url: str, *, echo: bool = False) -> None:
        self.url = url
        self.echo = echo
        self._engine: AsyncEngine | None = None
        self._session_factory: async_sessionmaker[AsyncSession] | None = None

    async def init(self) -> None:
        """Create the engine and the table.

        Called lazily by the first operation; safe to call again.
        """
        if self._engine is not None:
            return
        _ensure_sqlite_directory(self.url)
        self._engine = create_async_engine(self.url, echo=self.echo)
        async with self._engine.begin() as conn:
            await conn.run_sync(SQLModel.metadata.create_all)
        self._session_factory = async_sessionmaker(
            self._engine,
            class_=AsyncSession,
            expire_on_commit=False,
        )
        logger.debug("Annotation database ready at %s", self.url)

    async def close(self) -> None:
        """Dispose of the engine."""
        if self._engine is not None:
            await self._engine.dispose()
            self._engine = None
            self._session_factory = None

    @asynccontextmanager
    async def _session(self) -> AsyncIterator[AsyncSession]:
        if self._session_factory is None:
            await self.init()
        session_factory = self._session_factory
        assert session_factory is not None  # For type narrowing

        async with session_factory() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                logger.exception("Database session error, rolling back transaction")
                await session.rollback()
                raise

    async def get(self, key: str) -> AnnotationRecords | None:
        async with self._session() as session:
            row = await session.get(PageAnnotations, key)
            return list(row.annotations) if row else None

    async def set(self, key: str, records: AnnotationRecords) -> None:
        async with self._session() as session:
            await self._upsert(session, key, records)

    async def set_many(self, mapping: dict[str, AnnotationRecords]) -> None:
        async with self._session() as session:
            for key, records in mapping.items():
                await self._upsert(session, key, records)

    async def remove(self, key: str) -> None:
        await self.remove_many([key])

    async def remove_many(self, keys: list[str]) -> None:
        if not keys:
            return
        async with self._session() as session:
            result = await session.exec(
                select(PageAnnotations).where(col(PageAnnotations.url_key).in_(keys))
            )
            for row in result.all():
                await session.delete(row)

    async def get_all(self) -> dict[str, Any]:
        async with self._session() as session:
            result = await session.exec(select(PageAnnotations))
            return {row.url_key: list(row.annotations) for row in result.all()}

    @staticmethod
    async def _upsert(
        session: AsyncSession, key: str, records: AnnotationRecords
    ) -> None:
        row = await session.get(PageAnnotations, key)
        if row:
            # Reassign so the JSON column is flagged dirty
            row.annotations = list(records)
            row.updated_at = datetime.now(UTC)
        else:
            session.add(PageAnnotations(url_key=key, annotations=list(records)))
        await session.flush()
