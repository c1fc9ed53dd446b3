"""Scheduler and status history data models."""

from __future__ import annotations

import json
import uuid
from dataclasses import asdict, dataclass, field
from datetime import UTC, datetime, timedelta
from enum import StrEnum
from typing import Any


class SchedulerStatus(StrEnum):
    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"


class AlertType(StrEnum):
    FAILED_JOB = "failed_job"
    TIMEOUT = "timeout"
    ALL_CLEAR = "all_clear"


STATUS_EMOJI: dict[SchedulerStatus, str] = {
    SchedulerStatus.PENDING: "⬜",
    SchedulerStatus.RUNNING: "🟡",
    SchedulerStatus.COMPLETED: "✅",
    SchedulerStatus.FAILED: "❌",
}


def utcnow() -> datetime:
    return datetime.now(UTC)


def to_iso(value: datetime | None) -> str | None:
    """Serialize to a fixed-width UTC ISO string so stored values sort lexically."""
    if value is None:
        return None
    if value.tzinfo is None:
        value = value.replace(tzinfo=UTC)
    return value.astimezone(UTC).isoformat(timespec="microseconds")


def from_iso(value: str | None) -> datetime | None:
    if not value:
        return None
    parsed = datetime.fromisoformat(value)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=UTC)
    return parsed


@dataclass
class Scheduler:
    """A monitored recurring job.

    Attributes:
        scheduler_id: Stable identity chosen by the reporting service.
        service_name: Owning service, e.g. ``"Service A"``.
        job_name: Job within the service, e.g. ``"EOD Processing"``.
        status: One of the four ``SchedulerStatus`` values.
        timestamp: When the last status was reported (client clock).
        execution_time_ms: Duration of the last run, if reported.
        error_message: Failure detail; meaningful only when failed.
        metadata: Free-form key/value bag from the last report.
        last_heartbeat: Last liveness signal (heartbeat or status report).
        created_at: First registration time.
        updated_at: Last mutation time; never moves backwards.
        owner_email: Contact for the job owner.
        alert_user_id: Slack user to mention on alerts (None → ``@channel``).
    """

    scheduler_id: str
    service_name: str
    job_name: str
    status: SchedulerStatus = SchedulerStatus.PENDING
    timestamp: datetime = field(default_factory=utcnow)
    execution_time_ms: int | None = None
    error_message: str | None = None
    metadata: dict[str, Any] = field(default_factory=dict)
    last_heartbeat: datetime | None = None
    created_at: datetime = field(default_factory=utcnow)
    updated_at: datetime = field(default_factory=utcnow)
    owner_email: str | None = None
    alert_user_id: str | None = None

    def __post_init__(self) -> None:
        self.status = SchedulerStatus(self.status)

    # -- Status predicates -----------------------------------------------------

    def is_pending(self) -> bool:
        return self.status == SchedulerStatus.PENDING

    def is_running(self) -> bool:
        return self.status == SchedulerStatus.RUNNING

    def is_completed(self) -> bool:
        return self.status == SchedulerStatus.COMPLETED

    def is_failed(self) -> bool:
        return self.status == SchedulerStatus.FAILED

    def is_stale(self, timeout_minutes: int, now: datetime | None = None) -> bool:
        """True when running and the last heartbeat is older than the timeout.

        A scheduler that never sent a heartbeat is not stale.
        """
        if not self.is_running() or self.last_heartbeat is None:
            return False
        now = now or utcnow()
        return now - self.last_heartbeat > timedelta(minutes=timeout_minutes)

    # -- Serialization ---------------------------------------------------------

    def to_row(self) -> tuple:
        """Serialize to a tuple matching the ``schedulers`` column order."""
        return (
            self.scheduler_id,
            self.service_name,
            self.job_name,
            str(self.status),
            to_iso(self.timestamp),
            self.execution_time_ms,
            self.error_message,
            json.dumps(self.metadata or {}),
            to_iso(self.last_heartbeat),
            to_iso(self.created_at),
            to_iso(self.updated_at),
            self.owner_email,
            self.alert_user_id,
        )

    @classmethod
    def from_row(cls, row: tuple) -> Scheduler:
        return cls(
            scheduler_id=row[0],
            service_name=row[1],
            job_name=row[2],
            status=SchedulerStatus(row[3]),
            timestamp=from_iso(row[4]),
            execution_time_ms=row[5],
            error_message=row[6],
            metadata=json.loads(row[7]) if row[7] else {},
            last_heartbeat=from_iso(row[8]),
            created_at=from_iso(row[9]),
            updated_at=from_iso(row[10]),
            owner_email=row[11],
            alert_user_id=row[12],
        )

    def to_dict(self) -> dict[str, Any]:
        """JSON-friendly representation for API responses."""
        data = asdict(self)
        data["status"] = str(self.status)
        for key in ("timestamp", "last_heartbeat", "created_at", "updated_at"):
            data[key] = to_iso(data[key])
        return data


@dataclass
class StatusHistoryEntry:
    """Snapshot of a scheduler's reported fields at one status update."""

    scheduler_id: str
    status: SchedulerStatus
    timestamp: datetime
    execution_time_ms: int | None = None
    error_message: str | None = None
    metadata: dict[str, Any] = field(default_factory=dict)
    id: str = field(default_factory=lambda: make_entry_id())

    def __post_init__(self) -> None:
        self.status = SchedulerStatus(self.status)

    @classmethod
    def from_scheduler(cls, scheduler: Scheduler) -> StatusHistoryEntry:
        return cls(
            scheduler_id=scheduler.scheduler_id,
            status=scheduler.status,
            timestamp=scheduler.timestamp,
            execution_time_ms=scheduler.execution_time_ms,
            error_message=scheduler.error_message,
            metadata=dict(scheduler.metadata or {}),
        )

    def to_row(self) -> tuple:
        return (
            self.id,
            self.scheduler_id,
            str(self.status),
            to_iso(self.timestamp),
            self.execution_time_ms,
            self.error_message,
            json.dumps(self.metadata or {}),
        )

    @classmethod
    def from_row(cls, row: tuple) -> StatusHistoryEntry:
        return cls(
            id=row[0],
            scheduler_id=row[1],
            status=SchedulerStatus(row[2]),
            timestamp=from_iso(row[3]),
            execution_time_ms=row[4],
            error_message=row[5],
            metadata=json.loads(row[6]) if row[6] else {},
        )

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["status"] = str(self.status)
        data["timestamp"] = to_iso(self.timestamp)
        return data


def make_entry_id() -> str:
    """Generate a new history entry ID."""
    return uuid.uuid4().hex
