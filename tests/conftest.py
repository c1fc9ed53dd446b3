"""Shared test fixtures."""

import asyncio
from datetime import UTC, datetime, timedelta
from pathlib import Path

import pytest

from eodwatch.monitor.history import StatusHistoryStore
from eodwatch.monitor.store import SchedulerStore
from eodwatch.notifications.channels import DeliveryError
from eodwatch.notifications.render import RenderedMessage

TZ = "Asia/Jakarta"

# 00:00 on 2026-10-19 in Asia/Jakarta (UTC+7, no DST).
WINDOW_START_UTC = datetime(2026, 10, 18, 17, 0, tzinfo=UTC)


class FakeClock:
    """Callable clock that only moves when told to."""

    def __init__(self, now: datetime = WINDOW_START_UTC) -> None:
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now = self.now + timedelta(**kwargs)
        return self.now

    def set_local_hour(self, hour: int, minute: int = 0) -> datetime:
        """Move to *hour*:*minute* Jakarta time on the window's day."""
        self.now = WINDOW_START_UTC + timedelta(hours=hour, minutes=minute)
        return self.now


class FakeChannel:
    """In-memory NotificationChannel that records every call.

    Posts and edits yield to the event loop once, like a network call would,
    so concurrent triggers can interleave.
    """

    def __init__(self, enabled: bool = True) -> None:
        self._enabled = enabled
        self.posted: list[tuple[str, RenderedMessage]] = []
        self.edited: list[tuple[str, RenderedMessage]] = []
        self.alerts: list[RenderedMessage] = []
        self.fail_post = False
        self.fail_edit = False
        self.fail_alert = False

    @property
    def name(self) -> str:
        return "fake"

    @property
    def enabled(self) -> bool:
        return self._enabled

    async def post_message(self, message: RenderedMessage) -> str:
        await asyncio.sleep(0)
        if self.fail_post:
            raise DeliveryError("post failed")
        handle = f"ts-{len(self.posted) + 1}"
        self.posted.append((handle, message))
        return handle

    async def edit_message(self, handle: str, message: RenderedMessage) -> None:
        await asyncio.sleep(0)
        if self.fail_edit:
            raise DeliveryError("edit failed")
        self.edited.append((handle, message))

    async def post_alert(self, message: RenderedMessage) -> None:
        if self.fail_alert:
            raise DeliveryError("alert failed")
        self.alerts.append(message)


@pytest.fixture
def _no_turso(monkeypatch: pytest.MonkeyPatch) -> None:
    """Ensure tests use local file, not remote Turso."""
    monkeypatch.setattr("eodwatch.config.settings.turso_database_url", "")


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def channel() -> FakeChannel:
    return FakeChannel()


@pytest.fixture
def scheduler_store(tmp_path: Path, _no_turso) -> SchedulerStore:
    return SchedulerStore(db_path=tmp_path / "test.db")


@pytest.fixture
def history_store(tmp_path: Path, _no_turso) -> StatusHistoryStore:
    return StatusHistoryStore(db_path=tmp_path / "test.db")


@pytest.fixture
def disabled_channel() -> FakeChannel:
    return FakeChannel(enabled=False)
