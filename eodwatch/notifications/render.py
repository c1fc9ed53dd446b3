"""Slack Block Kit builders for status tables and alerts.

Every function here is pure: it takes scheduler records (and the current
time where the message shows one) and returns a ``RenderedMessage``.  No I/O.
"""

from __future__ import annotations

import zoneinfo
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

from eodwatch.monitor.models import STATUS_EMOJI, AlertType, SchedulerStatus

if TYPE_CHECKING:
    from collections.abc import Sequence
    from datetime import datetime

    from eodwatch.monitor.models import Scheduler

BROADCAST_MENTION = "<!channel>"
STATUS_TABLE_TITLE = "EOD Process Status Update"

_SUMMARY_LABELS: dict[SchedulerStatus, str] = {
    SchedulerStatus.PENDING: "Pending",
    SchedulerStatus.RUNNING: "Running",
    SchedulerStatus.COMPLETED: "Completed",
    SchedulerStatus.FAILED: "Failed",
}

_LEGEND_LABELS: dict[SchedulerStatus, str] = {
    SchedulerStatus.PENDING: "Pending",
    SchedulerStatus.RUNNING: "Running",
    SchedulerStatus.COMPLETED: "Success",
    SchedulerStatus.FAILED: "Failed",
}


@dataclass
class RenderedMessage:
    """A chat message: plain-text fallback plus Block Kit blocks.

    ``alert_type`` is set on one-shot alerts and None on the status table.
    """

    text: str
    blocks: list[dict[str, Any]] = field(default_factory=list)
    alert_type: AlertType | None = None


# -- Formatting helpers --------------------------------------------------------


def format_timestamp(value: datetime | None, tz: str) -> str:
    """Format as ``19 Oct 2026 01:00:00`` in *tz*, or ``N/A`` when missing."""
    if value is None:
        return "N/A"
    return value.astimezone(zoneinfo.ZoneInfo(tz)).strftime("%d %b %Y %H:%M:%S")


def format_execution_time(ms: int) -> str:
    if ms < 1000:
        return f"{ms}ms"
    if ms < 60_000:
        return f"{ms / 1000:.2f}s"
    minutes, remainder = divmod(ms, 60_000)
    return f"{minutes}m {remainder / 1000:.0f}s"


def alert_mention(scheduler: Scheduler) -> str:
    """Slack mention for the scheduler's alert user, else a channel broadcast."""
    if scheduler.alert_user_id:
        return f"<@{scheduler.alert_user_id}>"
    return BROADCAST_MENTION


def status_label(status: SchedulerStatus) -> str:
    return f"{STATUS_EMOJI[status]} {status}"


def count_by_status(schedulers: Sequence[Scheduler]) -> dict[SchedulerStatus, int]:
    """Count schedulers per status; every status is present, even at zero."""
    counts = dict.fromkeys(SchedulerStatus, 0)
    for scheduler in schedulers:
        counts[scheduler.status] += 1
    return counts


def _mrkdwn(text: str) -> dict[str, str]:
    return {"type": "mrkdwn", "text": text}


def _header(text: str) -> dict[str, Any]:
    return {"type": "header", "text": {"type": "plain_text", "text": text, "emoji": True}}


def _context(text: str) -> dict[str, Any]:
    return {"type": "context", "elements": [_mrkdwn(text)]}


_DIVIDER: dict[str, str] = {"type": "divider"}


# -- Status table --------------------------------------------------------------


def build_status_table(
    schedulers: Sequence[Scheduler], now: datetime, tz: str
) -> RenderedMessage:
    """The in-place status message posted at window open and edited hourly."""
    blocks: list[dict[str, Any]] = [
        _header(f"📊 EOD Process Status - {format_timestamp(now, tz)}"),
        dict(_DIVIDER),
    ]

    counts = count_by_status(schedulers)
    blocks.append({
        "type": "section",
        "fields": [
            _mrkdwn(f"*{_SUMMARY_LABELS[status]}:* {count}")
            for status, count in counts.items()
        ],
    })
    blocks.append(dict(_DIVIDER))

    for scheduler in schedulers:
        blocks.append({
            "type": "section",
            "fields": [
                _mrkdwn(f"*Service:*\n{scheduler.service_name}"),
                _mrkdwn(f"*Job:*\n{scheduler.job_name}"),
                _mrkdwn(f"*Status:*\n{status_label(scheduler.status)}"),
                _mrkdwn(f"*Updated:*\n{format_timestamp(scheduler.updated_at, tz)}"),
            ],
        })
        if scheduler.execution_time_ms:
            blocks.append(
                _context(f"Execution time: {format_execution_time(scheduler.execution_time_ms)}")
            )

    legend = " | ".join(
        f"{STATUS_EMOJI[status]} {label}" for status, label in _LEGEND_LABELS.items()
    )
    blocks.extend([dict(_DIVIDER), _context(f"Legend: {legend}")])

    return RenderedMessage(text=STATUS_TABLE_TITLE, blocks=blocks)


# -- Alerts --------------------------------------------------------------------


def build_failed_alert(scheduler: Scheduler, tz: str) -> RenderedMessage:
    mention = alert_mention(scheduler)
    blocks: list[dict[str, Any]] = [
        _header("🚨 Job Failed Alert"),
        {
            "type": "section",
            "fields": [
                _mrkdwn(f"*Service:*\n{scheduler.service_name}"),
                _mrkdwn(f"*Job:*\n{scheduler.job_name}"),
                _mrkdwn(f"*Status:*\n{status_label(scheduler.status)}"),
                _mrkdwn(f"*Time:*\n{format_timestamp(scheduler.timestamp, tz)}"),
            ],
        },
    ]
    if scheduler.error_message:
        blocks.append({
            "type": "section",
            "text": _mrkdwn(f"*Error Message:*\n```{scheduler.error_message}```"),
        })
    blocks.append(_context(f"{mention} Please investigate this issue."))

    text = f"{mention} Job Failed: {scheduler.service_name} - {scheduler.job_name}"
    if scheduler.error_message:
        text += f" ({scheduler.error_message})"
    return RenderedMessage(text=text, blocks=blocks, alert_type=AlertType.FAILED_JOB)


def build_timeout_warning(scheduler: Scheduler, tz: str) -> RenderedMessage:
    mention = alert_mention(scheduler)
    blocks = [
        _header("⚠️ Job Timeout Warning"),
        {
            "type": "section",
            "fields": [
                _mrkdwn(f"*Service:*\n{scheduler.service_name}"),
                _mrkdwn(f"*Job:*\n{scheduler.job_name}"),
                _mrkdwn(f"*Status:*\n{status_label(scheduler.status)}"),
                _mrkdwn(f"*Last Heartbeat:*\n{format_timestamp(scheduler.last_heartbeat, tz)}"),
            ],
        },
        _context(f"{mention} No heartbeat received within threshold. Job may be stuck."),
    ]
    return RenderedMessage(
        text=f"{mention} Job Timeout: {scheduler.service_name} - {scheduler.job_name}",
        blocks=blocks,
        alert_type=AlertType.TIMEOUT,
    )


def build_all_clear(
    schedulers: Sequence[Scheduler], now: datetime, tz: str
) -> RenderedMessage:
    """Terminal summary sent at window close when every job completed."""
    completed = sum(1 for s in schedulers if s.is_completed())
    total_ms = sum(s.execution_time_ms or 0 for s in schedulers)

    blocks: list[dict[str, Any]] = [
        _header("✅ All EOD Jobs Completed"),
        {
            "type": "section",
            "fields": [
                _mrkdwn(f"*Total Jobs:*\n{len(schedulers)}"),
                _mrkdwn(f"*Completed:*\n{completed}"),
                _mrkdwn(f"*Total Execution Time:*\n{format_execution_time(total_ms)}"),
                _mrkdwn(f"*Completion Time:*\n{format_timestamp(now, tz)}"),
            ],
        },
        dict(_DIVIDER),
    ]
    for scheduler in schedulers:
        blocks.append({
            "type": "section",
            "text": _mrkdwn(
                f"{STATUS_EMOJI[scheduler.status]} *{scheduler.service_name}* - "
                f"{scheduler.job_name}\n_Execution time: "
                f"{format_execution_time(scheduler.execution_time_ms or 0)}_"
            ),
        })
    return RenderedMessage(
        text="All EOD Jobs Completed", blocks=blocks, alert_type=AlertType.ALL_CLEAR
    )
