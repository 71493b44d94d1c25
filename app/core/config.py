from __future__ import annotations

from functools import lru_cache
from pathlib import Path
from typing import Literal

from pydantic import AnyHttpUrl, AliasChoices, Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Bridge configuration loaded from environment variables.

    One integration instance links a single Layer application to a single
    Zendesk account. Pluggable callables (the conversation filter and the
    identity lookup) are configured in code through
    :func:`app.services.integration.configure_hooks`.
    """

    integration_name: str = Field(
        default="Zendesk Integration",
        validation_alias=AliasChoices("INTEGRATION_NAME", "WEBHOOK_NAME"),
    )
    environment: str = "development"

    server_url: AnyHttpUrl | None = Field(
        default=None,
        validation_alias=AliasChoices("SERVER_URL", "HOST_URL"),
    )
    layer_path: str = Field(
        default="/zendesk-integration-event", validation_alias="LAYER_WEBHOOK_PATH"
    )
    zendesk_path: str = Field(
        default="/zendesk-server-event", validation_alias="ZENDESK_WEBHOOK_PATH"
    )
    zendesk_port: int | None = Field(default=None, validation_alias="ZENDESK_PORT")

    zendesk_subdomain: str | None = Field(default=None, validation_alias="ZENDESK_SUBDOMAIN")
    zendesk_user: str | None = Field(
        default=None,
        validation_alias=AliasChoices("ZENDESK_USER", "ZENDESK_USERNAME"),
    )
    zendesk_token: str | None = Field(default=None, validation_alias="ZENDESK_TOKEN")
    zendesk_ticket_tag: str = Field(
        default="layer-conversation", validation_alias="ZENDESK_TICKET_TAG"
    )
    zendesk_timeout: float = Field(default=15.0, validation_alias="ZENDESK_TIMEOUT")

    layer_app_id: str | None = Field(default=None, validation_alias="LAYER_APP_ID")
    layer_bearer_token: str | None = Field(
        default=None, validation_alias="LAYER_BEARER_TOKEN"
    )
    layer_webhook_secret: str | None = Field(
        default=None, validation_alias="LAYER_WEBHOOK_SECRET"
    )
    layer_api_url: str = Field(
        default="https://api.layer.com", validation_alias="LAYER_API_URL"
    )

    redis_url: str = Field(default="redis://localhost:6379/0", validation_alias="REDIS_URL")
    pending_key_prefix: str = Field(
        default="layer-webhooks-zendesk-", validation_alias="PENDING_KEY_PREFIX"
    )
    job_queue_prefix: str = Field(default="bridge:jobs", validation_alias="JOB_QUEUE_PREFIX")
    job_max_attempts: int = Field(default=10, validation_alias="JOB_MAX_ATTEMPTS")
    job_backoff_type: Literal["exponential", "fixed"] = Field(
        default="exponential", validation_alias="JOB_BACKOFF_TYPE"
    )
    job_backoff_seconds: int = Field(default=10, validation_alias="JOB_BACKOFF_SECONDS")
    job_poll_seconds: int = Field(default=2, validation_alias="JOB_POLL_SECONDS")
    job_batch_size: int = Field(default=10, validation_alias="JOB_BATCH_SIZE")
    job_stall_timeout_seconds: int = Field(
        default=600, validation_alias="JOB_STALL_TIMEOUT_SECONDS"
    )
    job_retention_hours: int = Field(default=24, validation_alias="JOB_RETENTION_HOURS")

    setup_hooks_on_startup: bool = Field(
        default=True, validation_alias="SETUP_HOOKS_ON_STARTUP"
    )
    run_worker_in_app: bool = Field(default=True, validation_alias="RUN_WORKER_IN_APP")
    admin_api_key: str | None = Field(default=None, validation_alias="ADMIN_API_KEY")
    default_timezone: str = Field(default="UTC", validation_alias="CRON_TIMEZONE")
    log_file_path: Path | None = Field(default=None, validation_alias="LOG_FILE_PATH")
    log_level: str = Field(default="INFO", validation_alias="LOG_LEVEL")

    @field_validator(
        "server_url",
        "zendesk_port",
        "zendesk_subdomain",
        "zendesk_user",
        "zendesk_token",
        "layer_app_id",
        "layer_bearer_token",
        "layer_webhook_secret",
        "admin_api_key",
        "log_file_path",
        mode="before",
    )
    @classmethod
    def _empty_string_to_none(cls, value):  # type: ignore[override]
        """Coerce blank environment variables to ``None`` so optional values stay optional."""

        if isinstance(value, str) and value.strip() == "":
            return None
        return value

    @field_validator("layer_path", "zendesk_path")
    @classmethod
    def _ensure_leading_slash(cls, value: str) -> str:
        value = value.strip()
        if not value.startswith("/"):
            value = f"/{value}"
        return value

    @property
    def comment_queue_name(self) -> str:
        return f"{self.integration_name} new zendesk comment"

    model_config = SettingsConfigDict(
        env_file=(Path(__file__).resolve().parent.parent.parent / ".env"),
        env_file_encoding="utf-8",
        extra="ignore",
    )


@lru_cache
def get_settings() -> Settings:
    return Settings()
