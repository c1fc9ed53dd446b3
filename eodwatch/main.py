"""eodwatch entry point."""

import asyncio
import contextlib
import logging
import signal

from slack_sdk.web.async_client import AsyncWebClient

from eodwatch.api.server import ApiServer
from eodwatch.config import settings
from eodwatch.monitor.history import StatusHistoryStore
from eodwatch.monitor.lease import LeaseGate, LocalGate
from eodwatch.monitor.orchestrator import NotificationOrchestrator
from eodwatch.monitor.service import SchedulerService
from eodwatch.monitor.store import SchedulerStore
from eodwatch.notifications.slack_channel import SlackChannel

logging.basicConfig(
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    level=getattr(logging, settings.log_level.upper()),
)
logger = logging.getLogger(__name__)


def build_components() -> tuple[SchedulerService, NotificationOrchestrator, ApiServer]:
    """Wire stores, Slack channel, state engine, orchestrator and API server."""
    if settings.slack_enabled and not settings.slack_bot_token:
        logger.warning("Slack is enabled but SLACK_BOT_TOKEN is not configured")
    channel = SlackChannel(
        AsyncWebClient(token=settings.slack_bot_token),
        settings.slack_channel_id,
        enabled=settings.slack_enabled,
    )
    service = SchedulerService(SchedulerStore.get(), StatusHistoryStore.get(), channel)

    if settings.trigger_lease_enabled:
        holder = settings.get_instance_id()
        gate = LeaseGate(holder=holder, lease_seconds=settings.trigger_lease_seconds)
        logger.info("Trigger leases enabled (holder=%s)", holder)
    else:
        gate = LocalGate()

    orchestrator = NotificationOrchestrator(service, channel, gate=gate)
    return service, orchestrator, ApiServer(service)


async def run() -> None:
    """Run the API server and orchestrator until SIGINT/SIGTERM."""
    _, orchestrator, server = build_components()

    stop = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        with contextlib.suppress(NotImplementedError):
            loop.add_signal_handler(sig, stop.set)

    await server.start()
    await orchestrator.start()
    try:
        await stop.wait()
    finally:
        logger.info("Shutting down...")
        await orchestrator.stop()
        await server.stop()


def main() -> None:
    """Start eodwatch."""
    logger.info(
        "Starting eodwatch (window %d:00-%d:00 %s)",
        settings.window_start_hour,
        settings.window_end_hour,
        settings.notification_timezone,
    )
    asyncio.run(run())


if __name__ == "__main__":
    main()
