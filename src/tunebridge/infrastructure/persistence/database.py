"""Async engine and session factory for the follow and job tables.

SQLite is the default store. The job queue workers and the sync pass write
from different tasks, so file databases run in WAL mode with a busy timeout
instead of failing fast on "database is locked".
"""

import logging
from typing import Any

from sqlalchemy import event
from sqlalchemy.engine import URL, make_url
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from tunebridge.config import DatabaseSettings, Settings
from tunebridge.infrastructure.persistence.models import Base

logger = logging.getLogger(__name__)

SQLITE_BUSY_TIMEOUT_MS = 30_000


def _engine_options(url: URL, config: DatabaseSettings) -> dict[str, Any]:
    options: dict[str, Any] = {"echo": config.echo}
    if url.get_backend_name() != "sqlite":
        options.update(
            pool_pre_ping=config.pool_pre_ping,
            pool_size=config.pool_size,
            max_overflow=config.max_overflow,
        )
        return options

    options["connect_args"] = {"check_same_thread": False}
    if url.database in (None, "", ":memory:"):
        # One shared connection, otherwise each checkout sees an empty DB.
        options["poolclass"] = StaticPool
    return options


class Database:
    """Owns the AsyncEngine; repositories get sessions from session_factory."""

    def __init__(self, settings: Settings) -> None:
        self._url = make_url(settings.database.url)
        self._engine: AsyncEngine = create_async_engine(
            self._url, **_engine_options(self._url, settings.database)
        )
        if self.is_sqlite:
            event.listen(self._engine.sync_engine, "connect", self._on_sqlite_connect)
        self._session_factory = async_sessionmaker(
            self._engine, class_=AsyncSession, expire_on_commit=False
        )

    @property
    def is_sqlite(self) -> bool:
        return self._url.get_backend_name() == "sqlite"

    @property
    def is_memory(self) -> bool:
        return self.is_sqlite and self._url.database in (None, "", ":memory:")

    @property
    def session_factory(self) -> async_sessionmaker[AsyncSession]:
        return self._session_factory

    def _on_sqlite_connect(self, dbapi_conn: Any, _record: Any) -> None:
        pragmas = ["foreign_keys=ON", f"busy_timeout={SQLITE_BUSY_TIMEOUT_MS}"]
        if not self.is_memory:
            pragmas.append("journal_mode=WAL")
        cursor = dbapi_conn.cursor()
        try:
            for pragma in pragmas:
                cursor.execute(f"PRAGMA {pragma}")
        finally:
            cursor.close()

    async def create_tables(self) -> None:
        """create_all for follows, follow_notifications and background_jobs."""
        async with self._engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)
        logger.debug(
            f"[DATABASE] Tables ready on {self._url.render_as_string(hide_password=True)}"
        )

    async def close(self) -> None:
        await self._engine.dispose()
