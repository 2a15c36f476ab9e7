"""Application settings loaded from environment variables."""

import os
from pathlib import Path

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


def _env_file() -> str | None:
    if os.getenv("PYTEST_CURRENT_TEST"):
        return None
    return ".env"


class Settings(BaseSettings):
    """Taskpulse configuration. All values come from environment variables."""

    # Database
    database_path: Path = Field(default=Path("data/taskpulse.db"))

    # Scheduler
    scheduler_timezone: str = Field(default="UTC")
    generation_interval_minutes: int = Field(default=5, ge=1)
    dispatch_interval_minutes: int = Field(default=2, ge=1)
    overdue_interval_minutes: int = Field(default=60, ge=1)

    # Retention sweep (terminal notifications only)
    retention_days: int = Field(default=30, ge=1)
    retention_hour: int = Field(default=2, ge=0, le=23)

    # Delivery
    default_channels: str = Field(default="email,in_app")
    channel_timeout_seconds: float = Field(default=10.0, gt=0)

    # Transactional mail API
    email_api_url: str = Field(default="")
    email_api_token: str = Field(default="")
    email_from: str = Field(default="noreply@taskpulse.local")

    # Real-time gateway (fire-and-forget pushes to connected clients)
    realtime_gateway_url: str = Field(default="")
    realtime_gateway_token: str = Field(default="")

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

    def get_default_channels(self) -> list[str]:
        """Parse DEFAULT_CHANNELS into an ordered list of channel names."""
        if not self.default_channels.strip():
            return []
        return [name.strip() for name in self.default_channels.split(",") if name.strip()]


settings = Settings()
