"""StatusHistoryStore — append-only status change log."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from eodwatch.db import TableStore
from eodwatch.monitor.models import StatusHistoryEntry, to_iso

if TYPE_CHECKING:
    from datetime import datetime

logger = logging.getLogger(__name__)

_CREATE_TABLE = """
CREATE TABLE IF NOT EXISTS scheduler_status_history (
    id                TEXT PRIMARY KEY,
    scheduler_id      TEXT NOT NULL,
    status            TEXT NOT NULL,
    timestamp         TEXT NOT NULL,
    execution_time_ms INTEGER,
    error_message     TEXT,
    metadata          TEXT NOT NULL DEFAULT '{}'
)
"""

_CREATE_INDEX = (
    "CREATE INDEX IF NOT EXISTS idx_history_scheduler_ts "
    "ON scheduler_status_history (scheduler_id, timestamp)"
)

_COLUMNS = "id, scheduler_id, status, timestamp, execution_time_ms, error_message, metadata"

DEFAULT_LIMIT = 50


class StatusHistoryStore(TableStore):
    """Persists status history entries in SQLite / Turso.

    Singleton accessed via ``StatusHistoryStore.get()``.  Pass an explicit
    *db_path* for test isolation.
    """

    schema = (_CREATE_TABLE, _CREATE_INDEX)
    _instance: StatusHistoryStore | None = None

    @classmethod
    def get(cls) -> StatusHistoryStore:
        if cls._instance is None:
            cls._instance = cls()
        return cls._instance

    @classmethod
    def _reset(cls) -> None:
        cls._instance = None

    # -- Writes ----------------------------------------------------------------

    async def append(self, entry: StatusHistoryEntry) -> StatusHistoryEntry:
        db = await self._connect()
        try:
            await db.execute(
                f"INSERT INTO scheduler_status_history ({_COLUMNS}) "
                "VALUES (?, ?, ?, ?, ?, ?, ?)",
                entry.to_row(),
            )
            await db.commit()
            logger.debug(
                "Recorded status history for %s: %s", entry.scheduler_id, entry.status
            )
            return entry
        finally:
            await db.close()

    async def delete_older_than(self, cutoff: datetime) -> int:
        """Delete entries whose timestamp is before *cutoff*. Returns the count."""
        db = await self._connect()
        try:
            cursor = await db.execute(
                "DELETE FROM scheduler_status_history WHERE timestamp < ?",
                (to_iso(cutoff),),
            )
            await db.commit()
            deleted = cursor.rowcount
        finally:
            await db.close()
        logger.info("Deleted %d status history entries older than %s", deleted, to_iso(cutoff))
        return deleted

    # -- Reads -----------------------------------------------------------------

    async def list_by_scheduler(
        self, scheduler_id: str, limit: int = DEFAULT_LIMIT
    ) -> list[StatusHistoryEntry]:
        """Most recent entries first, at most *limit* of them."""
        db = await self._connect()
        try:
            cursor = await db.execute(
                f"SELECT {_COLUMNS} FROM scheduler_status_history "
                "WHERE scheduler_id = ? ORDER BY timestamp DESC, rowid DESC LIMIT ?",
                (scheduler_id, limit),
            )
            rows = await cursor.fetchall()
            return [StatusHistoryEntry.from_row(row) for row in rows]
        finally:
            await db.close()

    async def list_by_date_range(
        self, scheduler_id: str, start: datetime, end: datetime
    ) -> list[StatusHistoryEntry]:
        """Entries with ``start <= timestamp <= end``, most recent first."""
        db = await self._connect()
        try:
            cursor = await db.execute(
                f"SELECT {_COLUMNS} FROM scheduler_status_history "
                "WHERE scheduler_id = ? AND timestamp BETWEEN ? AND ? "
                "ORDER BY timestamp DESC, rowid DESC",
                (scheduler_id, to_iso(start), to_iso(end)),
            )
            rows = await cursor.fetchall()
            return [StatusHistoryEntry.from_row(row) for row in rows]
        finally:
            await db.close()
