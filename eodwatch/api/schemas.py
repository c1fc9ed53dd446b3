"""Request bodies accepted by the HTTP API."""

from __future__ import annotations

from datetime import datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, EmailStr, Field

from eodwatch.monitor.models import SchedulerStatus


class _Request(BaseModel):
    model_config = ConfigDict(extra="forbid", str_strip_whitespace=True)


class RegisterSchedulerRequest(_Request):
    scheduler_id: str = Field(min_length=1, max_length=255, examples=["service-a-eod-process"])
    service_name: str = Field(min_length=1, max_length=255, examples=["Service A"])
    job_name: str = Field(min_length=1, max_length=255, examples=["EOD Processing"])
    owner_email: EmailStr | None = None
    alert_user_id: str | None = Field(default=None, examples=["U1234567890"])


class UpdateStatusRequest(_Request):
    # The path parameter is authoritative; the body copy is optional.
    scheduler_id: str | None = None
    service_name: str = Field(min_length=1, max_length=255)
    job_name: str = Field(min_length=1, max_length=255)
    status: SchedulerStatus
    timestamp: datetime
    execution_time_ms: int | None = Field(default=None, ge=0)
    error_message: str | None = None
    metadata: dict[str, Any] | None = None


class HeartbeatRequest(_Request):
    scheduler_id: str | None = None
