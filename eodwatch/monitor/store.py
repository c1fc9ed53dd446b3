"""SchedulerStore — libsql persistence for scheduler records."""

from __future__ import annotations

import logging
from datetime import datetime, timedelta
from typing import Any

from eodwatch.db import TableStore
from eodwatch.monitor.models import Scheduler, SchedulerStatus, to_iso, utcnow

logger = logging.getLogger(__name__)

_CREATE_TABLE = """
CREATE TABLE IF NOT EXISTS schedulers (
    scheduler_id      TEXT PRIMARY KEY,
    service_name      TEXT NOT NULL,
    job_name          TEXT NOT NULL,
    status            TEXT NOT NULL,
    timestamp         TEXT NOT NULL,
    execution_time_ms INTEGER,
    error_message     TEXT,
    metadata          TEXT NOT NULL DEFAULT '{}',
    last_heartbeat    TEXT,
    created_at        TEXT NOT NULL,
    updated_at        TEXT NOT NULL,
    owner_email       TEXT,
    alert_user_id     TEXT
)
"""

_CREATE_STATUS_INDEX = (
    "CREATE INDEX IF NOT EXISTS idx_schedulers_status ON schedulers (status)"
)

_COLUMNS = (
    "scheduler_id, service_name, job_name, status, timestamp, execution_time_ms, "
    "error_message, metadata, last_heartbeat, created_at, updated_at, "
    "owner_email, alert_user_id"
)

# Fields a partial update may touch. scheduler_id and created_at are immutable.
UPDATABLE_FIELDS = frozenset({
    "service_name",
    "job_name",
    "status",
    "timestamp",
    "execution_time_ms",
    "error_message",
    "metadata",
    "last_heartbeat",
    "owner_email",
    "alert_user_id",
})


class SchedulerStore(TableStore):
    """Persists scheduler records in SQLite / Turso.

    Singleton accessed via ``SchedulerStore.get()``.  Pass an explicit
    *db_path* for test isolation (e.g. ``tmp_path / "test.db"``).
    """

    schema = (_CREATE_TABLE, _CREATE_STATUS_INDEX)
    _instance: SchedulerStore | None = None

    @classmethod
    def get(cls) -> SchedulerStore:
        """Return the shared SchedulerStore instance."""
        if cls._instance is None:
            cls._instance = cls()
        return cls._instance

    @classmethod
    def _reset(cls) -> None:
        """Reset the singleton (for testing)."""
        cls._instance = None

    # -- Internal helpers ------------------------------------------------------

    async def _select(self, where: str = "", params: tuple = ()) -> list[Scheduler]:
        db = await self._connect()
        try:
            cursor = await db.execute(
                f"SELECT {_COLUMNS} FROM schedulers {where} ORDER BY created_at, scheduler_id",
                params,
            )
            rows = await cursor.fetchall()
            return [Scheduler.from_row(row) for row in rows]
        finally:
            await db.close()

    # -- Reads -----------------------------------------------------------------

    async def get_by_id(self, scheduler_id: str) -> Scheduler | None:
        """Fetch a scheduler by ID, or None if not found."""
        db = await self._connect()
        try:
            cursor = await db.execute(
                f"SELECT {_COLUMNS} FROM schedulers WHERE scheduler_id = ?",
                (scheduler_id,),
            )
            row = await cursor.fetchone()
            return Scheduler.from_row(row) if row else None
        finally:
            await db.close()

    async def list_all(self) -> list[Scheduler]:
        """Return every scheduler, oldest registration first."""
        return await self._select()

    async def query_by_status(self, status: SchedulerStatus | str) -> list[Scheduler]:
        return await self._select("WHERE status = ?", (str(SchedulerStatus(status)),))

    async def query_stale(
        self, timeout_minutes: int, now: datetime | None = None
    ) -> list[Scheduler]:
        """Running schedulers whose last heartbeat is older than the timeout.

        Rows with no heartbeat are excluded.
        """
        threshold = (now or utcnow()) - timedelta(minutes=timeout_minutes)
        return await self._select(
            "WHERE status = ? AND last_heartbeat IS NOT NULL AND last_heartbeat < ?",
            (str(SchedulerStatus.RUNNING), to_iso(threshold)),
        )

    # -- Writes ----------------------------------------------------------------

    async def create_if_absent(self, scheduler: Scheduler) -> bool:
        """Insert *scheduler* unless its ID exists. Returns True if inserted."""
        db = await self._connect()
        try:
            cursor = await db.execute(
                f"INSERT OR IGNORE INTO schedulers ({_COLUMNS}) "
                "VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)",
                scheduler.to_row(),
            )
            await db.commit()
            created = cursor.rowcount > 0
            if created:
                logger.info("Created scheduler: %s", scheduler.scheduler_id)
            return created
        finally:
            await db.close()

    async def update_fields(
        self,
        scheduler_id: str,
        updates: dict[str, Any],
        *,
        updated_at: datetime | None = None,
    ) -> Scheduler | None:
        """Apply a partial update and return the new row (None if missing).

        Only keys present in *updates* are written; ``updated_at`` is always
        bumped.
        """
        unknown = set(updates) - UPDATABLE_FIELDS
        if unknown:
            msg = f"Cannot update scheduler fields: {sorted(unknown)}"
            raise ValueError(msg)

        # Reuse the row serializer so columns are encoded exactly as on insert.
        template = Scheduler(scheduler_id=scheduler_id, service_name="", job_name="")
        for key, value in updates.items():
            setattr(template, key, value)
        template.updated_at = updated_at or utcnow()
        encoded = dict(zip(_COLUMNS.split(", "), template.to_row(), strict=True))

        columns = sorted(updates)
        assignments = [f"{col} = ?" for col in columns]
        # updated_at never moves backwards, even if a caller's clock does.
        assignments.append("updated_at = MAX(updated_at, ?)")
        params = (*(encoded[col] for col in columns), encoded["updated_at"])

        db = await self._connect()
        try:
            cursor = await db.execute(
                f"UPDATE schedulers SET {', '.join(assignments)} WHERE scheduler_id = ?",
                (*params, scheduler_id),
            )
            await db.commit()
            if cursor.rowcount == 0:
                return None
        finally:
            await db.close()

        logger.debug("Updated scheduler %s: %s", scheduler_id, sorted(updates))
        return await self.get_by_id(scheduler_id)

    async def update_heartbeat(self, scheduler_id: str, at: datetime | None = None) -> bool:
        """Set last_heartbeat and updated_at. Returns True if a row was updated."""
        ts = to_iso(at or utcnow())
        db = await self._connect()
        try:
            cursor = await db.execute(
                "UPDATE schedulers SET last_heartbeat = ?, updated_at = MAX(updated_at, ?) "
                "WHERE scheduler_id = ?",
                (ts, ts, scheduler_id),
            )
            await db.commit()
            return cursor.rowcount > 0
        finally:
            await db.close()
