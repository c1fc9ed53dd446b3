"""Tests for NotificationOrchestrator: the daily status message cycle."""

import asyncio
from pathlib import Path

import pytest

from eodwatch.monitor.history import StatusHistoryStore
from eodwatch.monitor.lease import LeaseGate
from eodwatch.monitor.models import AlertType
from eodwatch.monitor.orchestrator import (
    HISTORY_CLEANUP,
    STALE_SWEEP,
    STATUS_REFRESH,
    WINDOW_CLOSE,
    WINDOW_OPEN,
    NotificationOrchestrator,
)
from eodwatch.monitor.service import SchedulerService
from eodwatch.monitor.store import SchedulerStore

TZ = "Asia/Jakarta"


class _FakeGate:
    def __init__(self, active: bool = True, error: Exception | None = None) -> None:
        self.active = active
        self.error = error
        self.asked: list[str] = []

    async def is_active(self, trigger_name: str) -> bool:
        self.asked.append(trigger_name)
        if self.error is not None:
            raise self.error
        return self.active


def _make_orchestrator(service, channel, clock, gate=None) -> NotificationOrchestrator:  # noqa: ANN001
    return NotificationOrchestrator(
        service,
        channel,
        gate=gate,
        timezone=TZ,
        start_hour=0,
        end_hour=6,
        clock=clock,
    )


@pytest.fixture
def service(
    scheduler_store: SchedulerStore, history_store: StatusHistoryStore, channel, clock
) -> SchedulerService:
    return SchedulerService(
        scheduler_store,
        history_store,
        channel,
        timezone=TZ,
        heartbeat_timeout_minutes=10,
        clock=clock,
    )


@pytest.fixture
def orchestrator(service, channel, clock) -> NotificationOrchestrator:
    return _make_orchestrator(service, channel, clock)


async def _add(service: SchedulerService, scheduler_id: str, status: str | None = None, **kw):
    await service.register(scheduler_id, f"Service {scheduler_id}", "EOD Processing", **kw)
    if status is not None:
        await service.report_status(
            scheduler_id, f"Service {scheduler_id}", "EOD Processing", status, service._clock()
        )


# -- Window open ---------------------------------------------------------------


async def test_open_posts_table_and_refresh_edits_it(orchestrator, channel, clock) -> None:
    await orchestrator.open_window()
    assert [handle for handle, _ in channel.posted] == ["ts-1"]

    clock.set_local_hour(1)
    await orchestrator.refresh()

    assert len(channel.posted) == 1
    assert [handle for handle, _ in channel.edited] == ["ts-1"]


async def test_second_open_replaces_held_handle(orchestrator, channel, clock) -> None:
    await orchestrator.open_window()
    await orchestrator.open_window()

    clock.set_local_hour(1)
    await orchestrator.refresh()

    assert [handle for handle, _ in channel.edited] == ["ts-2"]


async def test_open_post_failure_is_swallowed(orchestrator, channel, clock) -> None:
    channel.fail_post = True
    await orchestrator.open_window()

    channel.fail_post = False
    clock.set_local_hour(1)
    await orchestrator.refresh()

    # Nothing was held, so the refresh posts anew instead of editing.
    assert channel.edited == []
    assert [handle for handle, _ in channel.posted] == ["ts-1"]


async def test_table_reflects_current_records(orchestrator, service, channel) -> None:
    await _add(service, "a", "completed")
    await _add(service, "b", "running")

    await orchestrator.open_window()

    [(_, message)] = channel.posted
    text = str(message.blocks)
    assert "*Completed:* 1" in text
    assert "*Running:* 1" in text


# -- Refresh -------------------------------------------------------------------


@pytest.mark.parametrize("hour", [0, 7, 12, 23])
async def test_refresh_outside_hours_does_nothing(orchestrator, channel, clock, hour) -> None:
    await orchestrator.open_window()
    clock.set_local_hour(hour)

    await orchestrator.refresh()

    assert channel.edited == []
    assert len(channel.posted) == 1


async def test_refresh_without_handle_posts_new(orchestrator, channel, clock) -> None:
    clock.set_local_hour(3)
    await orchestrator.refresh()
    assert [handle for handle, _ in channel.posted] == ["ts-1"]

    clock.set_local_hour(4)
    await orchestrator.refresh()
    assert [handle for handle, _ in channel.edited] == ["ts-1"]


async def test_edit_failure_drops_handle(orchestrator, channel, clock) -> None:
    await orchestrator.open_window()
    clock.set_local_hour(1)
    channel.fail_edit = True
    await orchestrator.refresh()

    channel.fail_edit = False
    clock.set_local_hour(2)
    await orchestrator.refresh()

    assert [handle for handle, _ in channel.posted] == ["ts-1", "ts-2"]
    assert channel.edited == []


# -- Window close --------------------------------------------------------------


async def test_close_does_final_edit_and_releases_handle(orchestrator, channel, clock) -> None:
    await orchestrator.open_window()
    clock.set_local_hour(6)
    await orchestrator.close_window()

    assert [handle for handle, _ in channel.edited] == ["ts-1"]
    assert orchestrator._handle is None


async def test_no_refresh_after_close_same_day(orchestrator, channel, clock) -> None:
    await orchestrator.open_window()
    clock.set_local_hour(6)
    await orchestrator.close_window()
    await orchestrator.refresh()

    assert len(channel.posted) == 1
    assert len(channel.edited) == 1


async def test_refresh_resumes_on_next_day(orchestrator, channel, clock) -> None:
    clock.set_local_hour(6)
    await orchestrator.close_window()

    clock.set_local_hour(24 + 1)
    await orchestrator.refresh()

    assert len(channel.posted) == 1


async def test_all_clear_sent_when_every_job_completed(
    orchestrator, service, channel, clock
) -> None:
    await _add(service, "a", "completed")
    await _add(service, "b", "completed")
    clock.set_local_hour(6)

    await orchestrator.close_window()

    [alert] = channel.alerts
    assert alert.text == "All EOD Jobs Completed"
    assert alert.alert_type is AlertType.ALL_CLEAR


async def test_no_all_clear_when_any_job_incomplete(
    orchestrator, service, channel, clock
) -> None:
    await _add(service, "a", "completed")
    await _add(service, "b", "running")
    clock.set_local_hour(6)

    await orchestrator.close_window()

    assert channel.alerts == []


async def test_no_all_clear_with_no_schedulers(orchestrator, channel, clock) -> None:
    clock.set_local_hour(6)
    await orchestrator.close_window()
    assert channel.alerts == []


async def test_close_releases_handle_even_when_edit_fails(
    orchestrator, service, channel, clock
) -> None:
    await _add(service, "a", "completed")
    await orchestrator.open_window()
    channel.fail_edit = True
    clock.set_local_hour(6)

    await orchestrator.close_window()

    assert orchestrator._handle is None
    # The all-clear still goes out after a failed final edit.
    assert len(channel.alerts) == 1


async def test_close_releases_handle_when_alert_fails(
    orchestrator, service, channel, clock
) -> None:
    await _add(service, "a", "completed")
    await orchestrator.open_window()
    channel.fail_alert = True
    clock.set_local_hour(6)

    await orchestrator.close_window()

    assert orchestrator._handle is None


# -- Stale sweep ---------------------------------------------------------------


async def test_sweep_sends_one_warning_per_stale_scheduler(
    orchestrator, service, channel, clock
) -> None:
    await _add(service, "a", "running", alert_user_id="U1")
    await _add(service, "b", "running")
    await _add(service, "c", "completed")
    clock.advance(minutes=11)

    sent = await orchestrator.sweep_stale()

    assert sent == 2
    texts = sorted(alert.text for alert in channel.alerts)
    assert texts == [
        "<!channel> Job Timeout: Service b - EOD Processing",
        "<@U1> Job Timeout: Service a - EOD Processing",
    ]
    assert {alert.alert_type for alert in channel.alerts} == {AlertType.TIMEOUT}


async def test_sweep_outside_window_does_nothing(orchestrator, service, channel, clock) -> None:
    await _add(service, "a", "running")
    clock.set_local_hour(8)

    assert await orchestrator.sweep_stale() == 0
    assert channel.alerts == []


async def test_sweep_continues_after_delivery_failure(
    orchestrator, service, channel, clock
) -> None:
    await _add(service, "a", "running")
    clock.advance(minutes=11)
    channel.fail_alert = True

    assert await orchestrator.sweep_stale() == 0


async def test_sweep_repeats_while_still_stale(orchestrator, service, channel, clock) -> None:
    await _add(service, "a", "running")
    clock.advance(minutes=11)
    await orchestrator.sweep_stale()
    clock.advance(minutes=5)
    await orchestrator.sweep_stale()

    assert len(channel.alerts) == 2


# -- Gating --------------------------------------------------------------------


async def test_inactive_gate_suppresses_every_trigger(service, channel, clock) -> None:
    gate = _FakeGate(active=False)
    orchestrator = _make_orchestrator(service, channel, clock, gate=gate)
    await _add(service, "a", "completed")

    await orchestrator.open_window()
    clock.set_local_hour(1)
    await orchestrator.refresh()
    clock.set_local_hour(6)
    await orchestrator.close_window()

    assert channel.posted == []
    assert channel.edited == []
    assert channel.alerts == []
    assert gate.asked == [WINDOW_OPEN, STATUS_REFRESH, WINDOW_CLOSE]


async def test_gate_error_is_treated_as_inactive(service, channel, clock) -> None:
    gate = _FakeGate(error=RuntimeError("db down"))
    orchestrator = _make_orchestrator(service, channel, clock, gate=gate)

    await orchestrator.open_window()

    assert channel.posted == []


async def test_disabled_channel_skips_cycle(service, disabled_channel, clock) -> None:
    gate = _FakeGate()
    orchestrator = _make_orchestrator(service, disabled_channel, clock, gate=gate)

    await orchestrator.open_window()
    clock.set_local_hour(1)
    await orchestrator.refresh()
    assert await orchestrator.sweep_stale() == 0

    assert disabled_channel.posted == []
    assert gate.asked == []


# -- Concurrent triggers -------------------------------------------------------


@pytest.mark.parametrize("close_first", [False, True])
async def test_refresh_and_close_at_end_hour_do_not_repost(
    orchestrator, channel, clock, close_first
) -> None:
    await orchestrator.open_window()
    clock.set_local_hour(6)

    triggers = [orchestrator.refresh(), orchestrator.close_window()]
    if close_first:
        triggers.reverse()
    await asyncio.gather(*triggers)

    assert orchestrator._handle is None
    assert [handle for handle, _ in channel.posted] == ["ts-1"]
    assert {handle for handle, _ in channel.edited} == {"ts-1"}


# -- Multiple instances --------------------------------------------------------


def _lease_gate(tmp_path: Path, holder: str, clock) -> LeaseGate:  # noqa: ANN001
    return LeaseGate(holder, 5400, db_path=tmp_path / "test.db", clock=clock)


async def test_only_window_holder_refreshes(tmp_path: Path, service, channel, clock) -> None:
    a = _make_orchestrator(service, channel, clock, gate=_lease_gate(tmp_path, "a", clock))
    b = _make_orchestrator(service, channel, clock, gate=_lease_gate(tmp_path, "b", clock))

    await a.open_window()
    await b.open_window()
    clock.set_local_hour(1)
    await b.refresh()
    await a.refresh()

    assert len(channel.posted) == 1
    assert [handle for handle, _ in channel.edited] == ["ts-1"]


async def test_window_holder_keeps_cycle_through_close(
    tmp_path: Path, service, channel, clock
) -> None:
    a = _make_orchestrator(service, channel, clock, gate=_lease_gate(tmp_path, "a", clock))
    b = _make_orchestrator(service, channel, clock, gate=_lease_gate(tmp_path, "b", clock))
    await a.open_window()
    await b.open_window()

    for hour in range(1, 7):
        clock.set_local_hour(hour)
        await b.refresh()
        await a.refresh()
    await b.close_window()
    await a.close_window()

    assert len(channel.posted) == 1
    assert len(channel.edited) == 7
    assert a._handle is None


# -- Cleanup and lifecycle -----------------------------------------------------


async def test_cleanup_history_deletes_old_entries(orchestrator, service, clock) -> None:
    await _add(service, "a", "running")
    clock.advance(days=31)

    assert await orchestrator.cleanup_history() == 1


async def test_cleanup_respects_gate(service, channel, clock) -> None:
    gate = _FakeGate(active=False)
    orchestrator = _make_orchestrator(service, channel, clock, gate=gate)

    assert await orchestrator.cleanup_history() == 0
    assert gate.asked == [HISTORY_CLEANUP]


async def test_start_registers_every_trigger(orchestrator) -> None:
    await orchestrator.start()
    try:
        assert orchestrator.running is True
        job_ids = {job.id for job in orchestrator._scheduler.get_jobs()}
        assert job_ids == {
            WINDOW_OPEN,
            STATUS_REFRESH,
            WINDOW_CLOSE,
            STALE_SWEEP,
            HISTORY_CLEANUP,
        }
    finally:
        await orchestrator.stop()
    assert orchestrator.running is False


async def test_stop_releases_trigger_lease(tmp_path: Path, service, channel, clock) -> None:
    orchestrator = _make_orchestrator(
        service, channel, clock, gate=_lease_gate(tmp_path, "a", clock)
    )
    await orchestrator.start()
    await orchestrator.open_window()
    await orchestrator.stop()

    successor = _lease_gate(tmp_path, "b", clock)
    assert await successor.is_active(WINDOW_OPEN) is True
