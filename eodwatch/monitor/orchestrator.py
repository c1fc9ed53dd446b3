"""NotificationOrchestrator — the daily status message cycle.

Clock-driven triggers, all evaluated in one timezone:

- window open (``start_hour:00``): post a fresh status table, hold its handle
- refresh (hourly): edit the held message; post anew when no handle is held
- window close (``end_hour:00``): final edit, all-clear check, drop the handle
- stale sweep (every few minutes inside the window): timeout warnings
- history cleanup (daily): delete history past the retention horizon

The held handle lives only in this object and every read or write of it
happens under ``self._lock``.  It is lost on restart; the next refresh then
posts a new message.
"""

from __future__ import annotations

import asyncio
import logging
import zoneinfo
from typing import TYPE_CHECKING

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.cron import CronTrigger

from eodwatch.config import settings
from eodwatch.monitor.lease import (
    HISTORY_CLEANUP,
    STALE_SWEEP,
    STATUS_REFRESH,
    WINDOW_CLOSE,
    WINDOW_OPEN,
    LeaseGate,
    LocalGate,
)
from eodwatch.monitor.models import utcnow
from eodwatch.monitor.service import all_clear
from eodwatch.notifications.channels import DeliveryError
from eodwatch.notifications.render import (
    build_all_clear,
    build_status_table,
    build_timeout_warning,
)

if TYPE_CHECKING:
    from collections.abc import Callable
    from datetime import date, datetime

    from eodwatch.monitor.lease import TriggerGate
    from eodwatch.monitor.service import SchedulerService
    from eodwatch.notifications.channels import NotificationChannel

logger = logging.getLogger(__name__)

_MISFIRE_GRACE_SECONDS = 60


class NotificationOrchestrator:
    """Runs the notification triggers on an APScheduler ``AsyncIOScheduler``.

    Args:
        service: Scheduler state engine (record reads, staleness, cleanup).
        channel: Where status tables and alerts are delivered.
        gate: Decides whether this instance runs a tick (default: always).
        timezone: IANA timezone for the window and rendered times.
        start_hour: Window start hour (inclusive).
        end_hour: Window end hour (inclusive).
        clock: Returns the current aware datetime; injectable for tests.
    """

    def __init__(
        self,
        service: SchedulerService,
        channel: NotificationChannel,
        *,
        gate: TriggerGate | None = None,
        timezone: str | None = None,
        start_hour: int | None = None,
        end_hour: int | None = None,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._service = service
        self._channel = channel
        self._gate = gate or LocalGate()
        self._timezone = timezone or settings.notification_timezone
        self._tz = zoneinfo.ZoneInfo(self._timezone)
        self._start_hour = settings.window_start_hour if start_hour is None else start_hour
        self._end_hour = settings.window_end_hour if end_hour is None else end_hour
        self._clock = clock
        self._scheduler = AsyncIOScheduler(timezone=self._timezone)
        self._running = False

        self._lock = asyncio.Lock()
        self._handle: str | None = None
        self._closed_on: date | None = None

    @property
    def running(self) -> bool:
        return self._running

    # -- Lifecycle -------------------------------------------------------------

    async def start(self) -> None:
        """Register the clock triggers and start the scheduler."""
        self._add_job(self.open_window, WINDOW_OPEN, hour=self._start_hour, minute=0)
        self._add_job(
            self.refresh,
            STATUS_REFRESH,
            hour=f"*/{settings.refresh_interval_hours}",
            minute=0,
        )
        self._add_job(self.close_window, WINDOW_CLOSE, hour=self._end_hour, minute=0)
        self._add_job(
            self.sweep_stale,
            STALE_SWEEP,
            minute=f"*/{settings.stale_check_interval_minutes}",
        )
        self._add_job(self.cleanup_history, HISTORY_CLEANUP, hour=settings.cleanup_hour, minute=0)
        self._scheduler.start()
        self._running = True
        logger.info(
            "Notification orchestrator started. Active hours: %d:00 - %d:00 %s",
            self._start_hour,
            self._end_hour,
            self._timezone,
        )

    async def stop(self) -> None:
        if not self._running:
            return
        self._scheduler.shutdown(wait=False)
        self._running = False
        if isinstance(self._gate, LeaseGate):
            # Let another instance pick up the next tick without waiting for expiry.
            try:
                await self._gate.release()
            except Exception:
                logger.exception("Failed to release trigger leases")
        logger.info("Notification orchestrator stopped")

    def _add_job(self, func, job_id: str, **cron_fields) -> None:  # noqa: ANN001
        self._scheduler.add_job(
            func,
            trigger=CronTrigger(timezone=self._timezone, **cron_fields),
            id=job_id,
            name=job_id,
            misfire_grace_time=_MISFIRE_GRACE_SECONDS,
            coalesce=True,
            replace_existing=True,
        )

    # -- Window helpers --------------------------------------------------------

    def _local_now(self) -> datetime:
        return self._clock().astimezone(self._tz)

    def _in_refresh_hours(self, hour: int) -> bool:
        return self._start_hour < hour <= self._end_hour

    def _in_window(self, hour: int) -> bool:
        return self._start_hour <= hour <= self._end_hour

    async def _gated(self, trigger_name: str) -> bool:
        """Common precondition for every notifying tick."""
        if not self._channel.enabled:
            logger.debug("Notification channel disabled, skipping %s", trigger_name)
            return False
        try:
            return await self._gate.is_active(trigger_name)
        except Exception:
            logger.exception("Trigger gate check failed for %s", trigger_name)
            return False

    async def _post_new_table(self) -> None:
        """Post a fresh status table and hold its handle. Caller holds the lock."""
        # Whatever was held belongs to an earlier cycle.
        self._handle = None
        schedulers = await self._service.list_all()
        message = build_status_table(schedulers, self._clock(), self._timezone)
        self._handle = await self._channel.post_message(message) or None
        logger.info("Status table sent with handle: %s", self._handle)

    # -- Triggers --------------------------------------------------------------

    async def open_window(self) -> None:
        if not await self._gated(WINDOW_OPEN):
            return
        logger.info("Sending initial status table")
        async with self._lock:
            try:
                await self._post_new_table()
            except Exception:
                logger.exception("Failed to send initial status table")

    async def refresh(self) -> None:
        local_now = self._local_now()
        if not self._in_refresh_hours(local_now.hour):
            return
        if not await self._gated(STATUS_REFRESH):
            return

        async with self._lock:
            if self._closed_on == local_now.date():
                logger.debug("Window already closed today, skipping refresh")
                return

            if self._handle is None:
                logger.warning("No current message handle found, sending new message")
                try:
                    await self._post_new_table()
                except Exception:
                    logger.exception("Failed to send status table")
                return

            logger.info("Updating status table")
            try:
                schedulers = await self._service.list_all()
                message = build_status_table(schedulers, self._clock(), self._timezone)
                await self._channel.edit_message(self._handle, message)
                logger.info("Status table updated successfully")
            except DeliveryError:
                logger.exception("Failed to update status table; next refresh posts anew")
                self._handle = None
            except Exception:
                logger.exception("Failed to update status table")

    async def close_window(self) -> None:
        async with self._lock:
            try:
                if not await self._gated(WINDOW_CLOSE):
                    return
                logger.info("Sending final status summary")
                schedulers = await self._service.list_all()
                now = self._clock()

                if self._handle is not None:
                    try:
                        await self._channel.edit_message(
                            self._handle, build_status_table(schedulers, now, self._timezone)
                        )
                    except DeliveryError:
                        logger.exception("Final status table update failed")

                if all_clear(schedulers):
                    logger.info("All schedulers completed successfully")
                    await self._channel.post_alert(
                        build_all_clear(schedulers, now, self._timezone)
                    )
            except Exception:
                logger.exception("Failed to send final status summary")
            finally:
                self._handle = None
                self._closed_on = self._local_now().date()

    async def sweep_stale(self) -> int:
        """Send one timeout warning per stale scheduler. Returns the number sent."""
        if not self._in_window(self._local_now().hour):
            return 0
        if not await self._gated(STALE_SWEEP):
            return 0

        logger.debug("Checking for stale schedulers")
        try:
            stale = await self._service.find_stale()
        except Exception:
            logger.exception("Failed to check stale schedulers")
            return 0

        sent = 0
        for scheduler in stale:
            logger.warning("Stale scheduler detected: %s", scheduler.scheduler_id)
            try:
                await self._channel.post_alert(build_timeout_warning(scheduler, self._timezone))
                sent += 1
            except DeliveryError:
                logger.exception("Timeout warning failed for %s", scheduler.scheduler_id)
        return sent

    async def cleanup_history(self) -> int:
        try:
            if not await self._gate.is_active(HISTORY_CLEANUP):
                return 0
            logger.info("Starting cleanup of old status history")
            return await self._service.cleanup_history()
        except Exception:
            logger.exception("Failed to cleanup old history")
            return 0
