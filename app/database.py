"""Async SQLite storage backing the recommendation cache."""

from __future__ import annotations

import logging
from pathlib import Path

from sqlalchemy import MetaData, inspect
from sqlalchemy.engine import Connection, make_url
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import DeclarativeBase

logger = logging.getLogger(__name__)

NAMING_CONVENTION = {
    "ix": "ix_%(column_0_label)s",
    "uq": "uq_%(table_name)s_%(column_0_name)s",
    "pk": "pk_%(table_name)s",
}


class Base(DeclarativeBase):
    """Declarative base with consistent naming conventions."""

    metadata = MetaData(naming_convention=NAMING_CONVENTION)


class Database:
    """Owns the async engine and hands out sessions to the cache."""

    def __init__(self, database_url: str):
        _ensure_sqlite_directory(database_url)
        self._engine = create_async_engine(database_url)
        self.session_factory: async_sessionmaker[AsyncSession] = async_sessionmaker(
            self._engine, expire_on_commit=False
        )

    async def create_all(self) -> None:
        """Create the cache tables, rebuilding any with an outdated layout."""

        # Registers the mapped tables on Base.metadata.
        from . import db_models  # noqa: F401

        async with self._engine.begin() as connection:
            await connection.run_sync(self._drop_outdated_tables)
            await connection.run_sync(Base.metadata.create_all)

    @staticmethod
    def _drop_outdated_tables(sync_connection: Connection) -> None:
        """Drop mapped tables whose stored layout lacks a current column."""

        inspector = inspect(sync_connection)
        existing = set(inspector.get_table_names())
        for table in Base.metadata.sorted_tables:
            if table.name not in existing:
                continue
            columns = {column["name"] for column in inspector.get_columns(table.name)}
            missing = {column.name for column in table.columns} - columns
            if missing:
                logger.warning(
                    "Rebuilding table %s, missing columns: %s",
                    table.name,
                    ", ".join(sorted(missing)),
                )
                table.drop(sync_connection)

    async def dispose(self) -> None:
        """Dispose of the underlying database engine."""

        await self._engine.dispose()


def _ensure_sqlite_directory(database_url: str) -> None:
    url = make_url(database_url)
    if url.get_backend_name() != "sqlite" or not url.database or url.database == ":memory:":
        return
    Path(url.database).expanduser().parent.mkdir(parents=True, exist_ok=True)
