"""SchedulerService — the scheduler health state engine.

Owns every mutation of a scheduler record: registration, status reports and
heartbeats.  Status reports are recorded in the history store and a failed
status triggers an immediate alert on the notification channel.

Any status may follow any other.  Retried or out-of-order client reports are
recorded as they arrive rather than rejected; the history keeps the audit
trail.
"""

from __future__ import annotations

import logging
from datetime import timedelta
from typing import TYPE_CHECKING, Any

from eodwatch.config import settings
from eodwatch.monitor.models import (
    Scheduler,
    SchedulerStatus,
    StatusHistoryEntry,
    utcnow,
)
from eodwatch.notifications.channels import DeliveryError
from eodwatch.notifications.render import build_failed_alert

if TYPE_CHECKING:
    from collections.abc import Callable, Sequence
    from datetime import datetime

    from eodwatch.monitor.history import StatusHistoryStore
    from eodwatch.monitor.store import SchedulerStore
    from eodwatch.notifications.channels import NotificationChannel

logger = logging.getLogger(__name__)


class SchedulerNotFoundError(LookupError):
    """The scheduler ID has no record (registration is required first)."""

    def __init__(self, scheduler_id: str, hint: str = "") -> None:
        self.scheduler_id = scheduler_id
        message = f"Scheduler {scheduler_id} not found"
        if hint:
            message = f"{message}. {hint}"
        super().__init__(message)


def all_clear(schedulers: Sequence[Scheduler]) -> bool:
    """True iff there is at least one scheduler and every one has completed."""
    return bool(schedulers) and all(s.is_completed() for s in schedulers)


class SchedulerService:
    """Validates and applies scheduler reports.

    Args:
        store: Scheduler record store.
        history: Status history store.
        channel: Channel used for immediate failure alerts.
        timezone: IANA timezone for rendered timestamps (default from settings).
        heartbeat_timeout_minutes: Staleness threshold (default from settings).
        clock: Returns the current aware datetime; injectable for tests.
    """

    def __init__(
        self,
        store: SchedulerStore,
        history: StatusHistoryStore,
        channel: NotificationChannel,
        *,
        timezone: str | None = None,
        heartbeat_timeout_minutes: int | None = None,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._store = store
        self._history = history
        self._channel = channel
        self._timezone = timezone or settings.notification_timezone
        self._heartbeat_timeout = (
            settings.heartbeat_timeout_minutes
            if heartbeat_timeout_minutes is None
            else heartbeat_timeout_minutes
        )
        self._clock = clock

    @property
    def heartbeat_timeout_minutes(self) -> int:
        return self._heartbeat_timeout

    # -- Inbound reports -------------------------------------------------------

    async def register(
        self,
        scheduler_id: str,
        service_name: str,
        job_name: str,
        owner_email: str | None = None,
        alert_user_id: str | None = None,
    ) -> Scheduler:
        """Create a pending scheduler, or refresh the descriptive fields of an existing one.

        Re-registering never touches status or history.  Optional fields left
        as None keep their stored value.
        """
        now = self._clock()
        scheduler = Scheduler(
            scheduler_id=scheduler_id,
            service_name=service_name,
            job_name=job_name,
            status=SchedulerStatus.PENDING,
            timestamp=now,
            created_at=now,
            updated_at=now,
            owner_email=owner_email,
            alert_user_id=alert_user_id,
        )
        if await self._store.create_if_absent(scheduler):
            logger.info("Registered scheduler: %s", scheduler_id)
            return scheduler

        logger.warning("Scheduler %s already exists, updating instead", scheduler_id)
        updates: dict[str, Any] = {"service_name": service_name, "job_name": job_name}
        if owner_email is not None:
            updates["owner_email"] = owner_email
        if alert_user_id is not None:
            updates["alert_user_id"] = alert_user_id
        updated = await self._store.update_fields(scheduler_id, updates, updated_at=now)
        if updated is None:
            # Only possible if the row vanished between the insert and the update.
            raise SchedulerNotFoundError(scheduler_id)
        return updated

    async def report_status(
        self,
        scheduler_id: str,
        service_name: str,
        job_name: str,
        status: SchedulerStatus | str,
        timestamp: datetime,
        execution_time_ms: int | None = None,
        error_message: str | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> Scheduler:
        """Apply a status report, record it in history, and alert on failure."""
        status = SchedulerStatus(status)
        if execution_time_ms is not None and execution_time_ms < 0:
            msg = f"execution_time_ms must be >= 0, got {execution_time_ms}"
            raise ValueError(msg)

        logger.info("Updating status for scheduler: %s to %s", scheduler_id, status)

        existing = await self._store.get_by_id(scheduler_id)
        if existing is None:
            raise SchedulerNotFoundError(scheduler_id, "Please register first.")

        now = self._clock()
        updates: dict[str, Any] = {
            "service_name": service_name,
            "job_name": job_name,
            "status": status,
            "timestamp": timestamp,
            "execution_time_ms": execution_time_ms,
            "error_message": error_message,
            "metadata": metadata or {},
            # A status report is also proof of life.
            "last_heartbeat": now,
        }
        updated = await self._store.update_fields(scheduler_id, updates, updated_at=now)
        if updated is None:
            raise SchedulerNotFoundError(scheduler_id, "Please register first.")

        await self._history.append(StatusHistoryEntry.from_scheduler(updated))

        if updated.is_failed():
            await self._send_failed_alert(updated)

        return updated

    async def record_heartbeat(self, scheduler_id: str) -> None:
        """Touch last_heartbeat only; status and history are untouched."""
        logger.debug("Updating heartbeat for scheduler: %s", scheduler_id)
        if not await self._store.update_heartbeat(scheduler_id, self._clock()):
            raise SchedulerNotFoundError(scheduler_id, "Please register first.")

    # -- Queries ---------------------------------------------------------------

    async def get(self, scheduler_id: str) -> Scheduler:
        scheduler = await self._store.get_by_id(scheduler_id)
        if scheduler is None:
            raise SchedulerNotFoundError(scheduler_id)
        return scheduler

    async def list_all(self) -> list[Scheduler]:
        return await self._store.list_all()

    async def history(
        self, scheduler_id: str, limit: int | None = None
    ) -> list[StatusHistoryEntry]:
        """Status history for one scheduler, most recent first."""
        await self.get(scheduler_id)
        return await self._history.list_by_scheduler(
            scheduler_id, settings.history_default_limit if limit is None else limit
        )

    async def history_between(
        self, scheduler_id: str, start: datetime, end: datetime
    ) -> list[StatusHistoryEntry]:
        await self.get(scheduler_id)
        return await self._history.list_by_date_range(scheduler_id, start, end)

    async def find_stale(self, timeout_minutes: int | None = None) -> list[Scheduler]:
        """Running schedulers whose last heartbeat is older than the timeout.

        Computed fresh on every call; stale records are reported, never
        transitioned.
        """
        return await self._store.query_stale(
            self._heartbeat_timeout if timeout_minutes is None else timeout_minutes,
            now=self._clock(),
        )

    async def check_all_clear(self) -> bool:
        return all_clear(await self._store.list_all())

    # -- Maintenance -----------------------------------------------------------

    async def cleanup_history(self, retention_days: int | None = None) -> int:
        """Delete history entries older than the retention horizon."""
        days = settings.history_retention_days if retention_days is None else retention_days
        cutoff = self._clock() - timedelta(days=days)
        return await self._history.delete_older_than(cutoff)

    # -- Alerts ----------------------------------------------------------------

    async def _send_failed_alert(self, scheduler: Scheduler) -> None:
        """Fire the immediate failure alert. Delivery problems are logged, not raised."""
        logger.error(
            "Job failed: %s - %s", scheduler.scheduler_id, scheduler.error_message
        )
        if not self._channel.enabled:
            logger.debug("Notification channel disabled, skipping failed job alert")
            return
        try:
            await self._channel.post_alert(build_failed_alert(scheduler, self._timezone))
            logger.info("Failed job alert sent for scheduler: %s", scheduler.scheduler_id)
        except DeliveryError:
            logger.exception(
                "Failed job alert could not be delivered for %s", scheduler.scheduler_id
            )
