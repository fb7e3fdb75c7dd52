"""Database session management."""

import logging
from collections.abc import AsyncGenerator, Callable
from contextlib import AbstractAsyncContextManager, asynccontextmanager
from typing import Any

from sqlalchemy import event
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from peekstash.config import Settings

logger = logging.getLogger(__name__)

# Factory returning a transactional session context (Database.session_scope).
SessionScope = Callable[[], AbstractAsyncContextManager[AsyncSession]]


# Hey future me, the cache store is SQLite-only on purpose: the sync upserts use
# INSERT .. ON CONFLICT / INSERT OR IGNORE through the sqlite dialect and the tag
# inheritance lookups use SQLite JSON functions. busy_timeout + WAL keep readers
# (query builders) from failing while a sync batch holds the write lock.
class Database:
    """Database connection and session manager."""

    def __init__(self, settings: Settings) -> None:
        self.settings = settings
        url = settings.database.url
        if not url.startswith("sqlite"):
            raise ValueError(f"Unsupported database URL (SQLite required): {url}")

        engine_kwargs: dict[str, Any] = {
            "echo": settings.database.echo,
            "connect_args": {
                "check_same_thread": False,
                "timeout": settings.database.busy_timeout,
            },
        }
        self._engine = create_async_engine(url, **engine_kwargs)
        self._configure_sqlite_pragmas()

        self._session_factory = async_sessionmaker(
            self._engine,
            class_=AsyncSession,
            expire_on_commit=False,
        )

    def _configure_sqlite_pragmas(self) -> None:
        """Enable foreign keys (and WAL) on every new SQLite connection."""
        wal_mode = self.settings.database.wal_mode
        in_memory = ":memory:" in self.settings.database.url

        @event.listens_for(self._engine.sync_engine, "connect")
        def set_sqlite_pragma(dbapi_conn: Any, _connection_record: Any) -> None:
            cursor = dbapi_conn.cursor()
            cursor.execute("PRAGMA foreign_keys=ON")
            if wal_mode and not in_memory:
                cursor.execute("PRAGMA journal_mode=WAL")
            cursor.close()

    # Listen future me, this is THE unit of work. Services never call commit() themselves:
    # leaving the block commits, an exception rolls back and propagates unchanged.
    @asynccontextmanager
    async def session_scope(self) -> AsyncGenerator[AsyncSession, None]:
        session = self._session_factory()
        try:
            yield session
            await session.commit()
        except BaseException:
            await session.rollback()
            raise
        finally:
            await session.close()

    async def create_tables(self) -> None:
        """Create missing tables from the ORM metadata (tests, first start without alembic)."""
        from peekstash.infrastructure.persistence.models import Base

        async with self._engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)
        logger.debug("Schema ensured on %s", self.settings.database.url)

    async def close(self) -> None:
        await self._engine.dispose()

