"""Trigger gates: decide whether this instance should run a clock tick.

A single deployment uses ``LocalGate``.  With several replicas, ``LeaseGate``
keeps leases in the shared database so only the current holder posts or
edits messages.

The held message handle lives in the memory of the instance that posted it,
so every trigger that touches it shares one lease, ``NOTIFICATION_CYCLE``.
The winner of the window-open tick keeps renewing that lease on each refresh,
sweep and close until the window ends; another instance only takes over once
it expires.
"""

from __future__ import annotations

import logging
from datetime import timedelta
from typing import TYPE_CHECKING, Protocol, runtime_checkable

from eodwatch.db import TableStore
from eodwatch.monitor.models import to_iso, utcnow

if TYPE_CHECKING:
    from collections.abc import Callable, Mapping
    from datetime import datetime
    from pathlib import Path

logger = logging.getLogger(__name__)

# Trigger names, shared by the orchestrator's jobs and the lease groups.
WINDOW_OPEN = "window_open"
STATUS_REFRESH = "status_refresh"
WINDOW_CLOSE = "window_close"
STALE_SWEEP = "stale_sweep"
HISTORY_CLEANUP = "history_cleanup"

NOTIFICATION_CYCLE = "notification_cycle"

CYCLE_LEASE_GROUPS: dict[str, str] = {
    WINDOW_OPEN: NOTIFICATION_CYCLE,
    STATUS_REFRESH: NOTIFICATION_CYCLE,
    WINDOW_CLOSE: NOTIFICATION_CYCLE,
    STALE_SWEEP: NOTIFICATION_CYCLE,
}

_CREATE_TABLE = """
CREATE TABLE IF NOT EXISTS trigger_leases (
    name       TEXT PRIMARY KEY,
    holder     TEXT NOT NULL,
    expires_at TEXT NOT NULL
)
"""

# Take the lease when it is free, already ours, or expired.
_ACQUIRE = """
INSERT INTO trigger_leases (name, holder, expires_at) VALUES (?, ?, ?)
ON CONFLICT(name) DO UPDATE SET holder = excluded.holder, expires_at = excluded.expires_at
WHERE trigger_leases.holder = excluded.holder OR trigger_leases.expires_at < ?
"""


@runtime_checkable
class TriggerGate(Protocol):
    async def is_active(self, trigger_name: str) -> bool:
        """True if this instance should execute *trigger_name* now."""
        ...


class LocalGate:
    """Single-instance gate: every tick runs."""

    async def is_active(self, trigger_name: str) -> bool:
        return True


class LeaseGate(TableStore):
    """Database-backed leases, one row per lease name.

    Args:
        holder: Identity of this instance (e.g. ``hostname:pid``).
        lease_seconds: How long a won lease stays valid without renewal.
            Must outlast the gap between two ticks of the same group.
        db_path: Local database override for tests.
        clock: Returns the current aware datetime.
        groups: Maps trigger names onto a shared lease name.  Triggers not
            listed get a lease of their own.  Defaults to
            ``CYCLE_LEASE_GROUPS``.
    """

    schema = (_CREATE_TABLE,)

    def __init__(
        self,
        holder: str,
        lease_seconds: int,
        db_path: Path | None = None,
        clock: Callable[[], datetime] = utcnow,
        groups: Mapping[str, str] | None = None,
    ) -> None:
        super().__init__(db_path)
        self._holder = holder
        self._lease = timedelta(seconds=lease_seconds)
        self._clock = clock
        self._groups = dict(CYCLE_LEASE_GROUPS if groups is None else groups)

    def lease_name(self, trigger_name: str) -> str:
        return self._groups.get(trigger_name, trigger_name)

    async def is_active(self, trigger_name: str) -> bool:
        """Acquire or renew the lease covering *trigger_name*."""
        name = self.lease_name(trigger_name)
        now = self._clock()
        db = await self._connect()
        try:
            cursor = await db.execute(
                _ACQUIRE,
                (name, self._holder, to_iso(now + self._lease), to_iso(now)),
            )
            await db.commit()
            acquired = cursor.rowcount > 0
        finally:
            await db.close()
        if not acquired:
            logger.debug("Lease %s held by another instance; skipping %s", name, trigger_name)
        return acquired

    async def release(self) -> int:
        """Drop every lease this instance holds. Returns the number released."""
        db = await self._connect()
        try:
            cursor = await db.execute(
                "DELETE FROM trigger_leases WHERE holder = ?", (self._holder,)
            )
            await db.commit()
            released = cursor.rowcount
        finally:
            await db.close()
        logger.info("Released %d trigger lease(s) held by %s", released, self._holder)
        return released
