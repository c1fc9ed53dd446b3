"""Async database access for the scheduler, history and lease tables.

The ``libsql`` driver is synchronous, so every call is pushed onto a worker
thread with ``asyncio.to_thread()`` to keep the trigger loop responsive.

- **Production**: ``TURSO_DATABASE_URL`` + ``TURSO_AUTH_TOKEN`` → remote Turso
- **Dev/test**: no Turso env vars → local SQLite file via ``database_path``

Stores subclass ``TableStore``, which opens one connection per unit of work
and creates the store's tables on first use.
"""

from __future__ import annotations

import asyncio
import logging
from typing import TYPE_CHECKING, Any, ClassVar

import libsql

from eodwatch.config import settings

if TYPE_CHECKING:
    from pathlib import Path

logger = logging.getLogger(__name__)

_BUSY_TIMEOUT_MS = 5000


class _AsyncCursor:
    """Async facade over a libsql cursor."""

    def __init__(self, cursor: Any) -> None:
        self._cursor = cursor

    async def fetchone(self) -> tuple | None:
        return await asyncio.to_thread(self._cursor.fetchone)

    async def fetchall(self) -> list[tuple]:
        return await asyncio.to_thread(self._cursor.fetchall)

    @property
    def rowcount(self) -> int:
        return self._cursor.rowcount


class _AsyncConnection:
    """Async facade over a libsql connection."""

    def __init__(self, conn: Any) -> None:
        self._conn = conn

    async def execute(self, sql: str, params: tuple = ()) -> _AsyncCursor:
        cursor = await asyncio.to_thread(self._conn.execute, sql, params)
        return _AsyncCursor(cursor)

    async def executescript(self, statements: list[str]) -> None:
        """Run several statements in order (libsql executes one per call)."""
        for sql in statements:
            await asyncio.to_thread(self._conn.execute, sql)

    async def commit(self) -> None:
        await asyncio.to_thread(self._conn.commit)

    async def close(self) -> None:
        await asyncio.to_thread(self._conn.close)


def _open_local(path: str) -> Any:
    conn = libsql.connect(path)
    conn.execute("PRAGMA journal_mode=WAL")
    conn.execute(f"PRAGMA busy_timeout={_BUSY_TIMEOUT_MS}")
    return conn


async def get_connection(local_path_override: Path | None = None) -> _AsyncConnection:
    """Open a connection for one unit of work.

    *local_path_override* wins when given (tests pass ``tmp_path`` files).
    Otherwise ``TURSO_DATABASE_URL`` selects the remote database and
    ``database_path`` is the local fallback.
    """
    if local_path_override:
        local_path_override.parent.mkdir(parents=True, exist_ok=True)
        return _AsyncConnection(await asyncio.to_thread(_open_local, str(local_path_override)))

    if settings.turso_database_url:
        conn = await asyncio.to_thread(
            libsql.connect,
            database=settings.turso_database_url,
            auth_token=settings.turso_auth_token,
        )
        return _AsyncConnection(conn)

    settings.database_path.parent.mkdir(parents=True, exist_ok=True)
    return _AsyncConnection(await asyncio.to_thread(_open_local, str(settings.database_path)))


class TableStore:
    """Base for components that own tables in the shared database.

    Subclasses list their ``CREATE ... IF NOT EXISTS`` statements in
    ``schema``; they run once per instance, on the first ``_connect()``.
    Pass an explicit *db_path* for test isolation.
    """

    schema: ClassVar[tuple[str, ...]] = ()

    def __init__(self, db_path: Path | None = None) -> None:
        self._db_path = db_path
        self._initialised = False

    async def _connect(self) -> _AsyncConnection:
        db = await get_connection(local_path_override=self._db_path)
        if not self._initialised:
            try:
                await db.executescript(list(self.schema))
                await db.commit()
            except Exception:
                await db.close()
                raise
            self._initialised = True
            logger.debug("Schema ready for %s", type(self).__name__)
        return db
