"""Application configuration using Pydantic Settings v2.

Loads configuration from environment variables with .env file support.
All settings are validated at startup and available as typed attributes.
"""

from __future__ import annotations

import functools
import json
import logging
from typing import Any

from pydantic import BaseModel, SecretStr, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class RecipientConfig(BaseModel):
    """A notification recipient as configured in ``NOTIFICATION_RECIPIENTS``.

    Recipients with no ``house_ids`` (e.g. caregivers) receive alerts for
    every house; owners list the houses they are bound to.
    """

    user_id: str
    name: str = ""
    email: str | None = None
    phone: str | None = None
    device_token: str | None = None
    webhook_url: str | None = None
    house_ids: list[str] = []
    notification_preferences: list[str] | None = None


class Settings(BaseSettings):
    """CareAlert application settings.

    Configuration is loaded from environment variables.
    A .env file in the project root is also read if present.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # ── Application ──────────────────────────────────────────────
    app_name: str = "CareAlert"
    app_env: str = "development"
    debug: bool = True
    log_level: str = "INFO"

    # ── PostgreSQL ───────────────────────────────────────────────
    postgres_host: str = "localhost"
    postgres_port: int = 5432
    postgres_db: str = "carealert"
    postgres_user: str = "carealert"
    postgres_password: str = "carealert_dev_password"
    database_url: str | None = None

    # ── Backend ──────────────────────────────────────────────────
    backend_host: str = "0.0.0.0"  # noqa: S104 - intentional for container deployments  # nosec B104
    backend_port: int = 8000
    cors_origins: list[str] = ["http://localhost:5173"]

    # ── Rate Limiting ─────────────────────────────────────────────
    rate_limit_requests: int = 600
    rate_limit_window_seconds: int = 60

    # ── Alert Engine ─────────────────────────────────────────────
    dedup_window_seconds: int = 60
    quiet_hours_start: int = 22
    quiet_hours_end: int = 6
    default_timezone: str = "UTC"
    default_tenant_id: str = "t1"

    # ── Notifications ────────────────────────────────────────────
    notifications_simulate: bool | None = None  # None: simulate unless app_env == "production"
    smtp_host: str = "localhost"
    smtp_port: int = 587
    smtp_user: str = ""
    smtp_password: SecretStr = SecretStr("")
    smtp_from: str = "CareAlert <alerts@carealert.local>"
    smtp_use_tls: bool = True
    sms_gateway_url: str = ""
    push_gateway_url: str = ""
    notification_send_timeout_seconds: float = 10.0
    notification_queue_size: int = 1000
    notification_worker_count: int = 1
    notification_recipients: list[RecipientConfig] = []

    # ── Realtime (WebSocket) ─────────────────────────────────────
    ws_heartbeat_interval: int = 30
    ws_max_connections: int = 500
    broadcast_send_timeout: float = 2.0
    broadcast_tenant_scoped: bool = False

    @property
    def simulate_notifications(self) -> bool:
        """Whether channel senders only log instead of delivering."""
        if self.notifications_simulate is not None:
            return self.notifications_simulate
        return self.app_env != "production"

    @field_validator("cors_origins", mode="before")
    @classmethod
    def parse_cors_origins(cls, v: Any) -> list[str]:
        """Parse CORS origins from JSON string or list."""
        if isinstance(v, str):
            try:
                parsed = json.loads(v)
                if isinstance(parsed, list):
                    return [str(item) for item in parsed]
            except (json.JSONDecodeError, TypeError):
                return [origin.strip() for origin in v.split(",")]
        if isinstance(v, list):
            return [str(item) for item in v]
        return ["http://localhost:5173"]

    @field_validator("quiet_hours_start", "quiet_hours_end")
    @classmethod
    def check_hour(cls, v: int) -> int:
        """Quiet-hour bounds are wall-clock hours."""
        if not 0 <= v <= 23:
            raise ValueError("quiet hours must be between 0 and 23")
        return v

    @model_validator(mode="after")
    def build_derived_urls(self) -> Settings:
        """Build database_url from components if not set."""
        if not self.database_url:
            self.database_url = (
                f"postgresql+asyncpg://{self.postgres_user}:{self.postgres_password}"
                f"@{self.postgres_host}:{self.postgres_port}/{self.postgres_db}"
            )
        return self


@functools.lru_cache
def get_settings() -> Settings:
    """Return cached application settings instance."""
    return Settings()


def configure_logging(settings: Settings) -> None:
    """Apply the configured log level to the root logger."""
    logging.basicConfig(
        level=getattr(logging, settings.log_level.upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
