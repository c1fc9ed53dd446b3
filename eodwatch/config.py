"""Application settings loaded from environment variables."""

import os
import socket
from pathlib import Path

from pydantic import Field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


def _env_file() -> str | None:
    if os.getenv("PYTEST_CURRENT_TEST"):
        return None
    return ".env"


class Settings(BaseSettings):
    """eodwatch configuration. All values come from environment variables."""

    # Database
    database_path: Path = Field(default=Path("data/eodwatch.db"))

    # Turso (hosted libSQL): when set, overrides local database_path
    turso_database_url: str = Field(default="")
    turso_auth_token: str = Field(default="")

    # Slack
    slack_bot_token: str = Field(default="")
    slack_channel_id: str = Field(default="")
    slack_enabled: bool = Field(default=True)

    # Notification window
    notification_timezone: str = Field(default="Asia/Jakarta")
    window_start_hour: int = Field(default=0, ge=0, le=23)
    window_end_hour: int = Field(default=6, ge=0, le=23)
    refresh_interval_hours: int = Field(default=1, ge=1)
    stale_check_interval_minutes: int = Field(default=5, ge=1)

    # Scheduler health
    heartbeat_timeout_minutes: int = Field(default=10, ge=1)
    history_retention_days: int = Field(default=30, ge=1)
    history_default_limit: int = Field(default=50, ge=1)
    cleanup_hour: int = Field(default=23, ge=0, le=23)

    # Trigger coordination across instances
    trigger_lease_enabled: bool = Field(default=False)
    trigger_lease_seconds: int = Field(default=5400, ge=1)
    instance_id: str = Field(default="")

    # HTTP API
    api_host: str = Field(default="0.0.0.0")
    api_port: int = Field(default=3000)
    api_prefix: str = Field(default="/api/v1")

    # Logging
    log_level: str = Field(default="INFO")

    model_config = SettingsConfigDict(env_file=_env_file(), env_file_encoding="utf-8")

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls: type[BaseSettings],
        init_settings,
        env_settings,
        dotenv_settings,
        file_secret_settings,
    ):
        if os.getenv("PYTEST_CURRENT_TEST"):
            return (init_settings,)
        return (init_settings, env_settings, dotenv_settings, file_secret_settings)

    @model_validator(mode="after")
    def _check_window(self) -> "Settings":
        if self.window_start_hour > self.window_end_hour:
            msg = (
                f"window_start_hour ({self.window_start_hour}) must not be after "
                f"window_end_hour ({self.window_end_hour})"
            )
            raise ValueError(msg)
        refresh_seconds = self.refresh_interval_hours * 3600
        if self.trigger_lease_enabled and self.trigger_lease_seconds <= refresh_seconds:
            msg = (
                f"trigger_lease_seconds ({self.trigger_lease_seconds}) must exceed the "
                f"refresh interval ({refresh_seconds}s) so the window holder keeps its lease"
            )
            raise ValueError(msg)
        return self

    def get_instance_id(self) -> str:
        """Return INSTANCE_ID, falling back to ``hostname:pid``."""
        if self.instance_id.strip():
            return self.instance_id.strip()
        return f"{socket.gethostname()}:{os.getpid()}"

    def get_api_prefix(self) -> str:
        """Normalise API_PREFIX to a leading slash and no trailing slash."""
        prefix = self.api_prefix.strip().strip("/")
        return f"/{prefix}" if prefix else ""


settings = Settings()
