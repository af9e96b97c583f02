from __future__ import annotations

from pydantic import AliasChoices, Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_prefix="CONSUL_LEADER_", env_file=".env", extra="ignore", populate_by_name=True
    )

    # Coordination service
    consul_url: str = Field(
        default="http://localhost:8500",
        validation_alias=AliasChoices("CONSUL_LEADER_CONSUL_URL", "CONSUL_HTTP_ADDR"),
    )
    username: str | None = None
    password: str | None = None
    request_timeout: float = 10.0

    service_name: str = "default"

    # Session (TTL is raised to 10s and lock delay to 0s by the session manager)
    ttl_seconds: int = 15
    lock_delay_seconds: int = 10

    # Session creation retries
    create_session_tries: int = Field(default=5, ge=1)
    retry_period: float = Field(default=2.0, gt=0)
    backoff_multiplier: float = Field(default=1.5, gt=0)

    # Polling
    poll_interval: float = Field(default=5.0, gt=0)
    demote_after_indeterminate: int = Field(default=3, ge=1)

    # Observability
    enable_metrics: bool = True
    log_level: str = "INFO"
    log_json: bool = False

    @field_validator("consul_url")
    @classmethod
    def _strip_trailing_slash(cls, value: str) -> str:
        return value.rstrip("/")

    @field_validator("log_level")
    @classmethod
    def _known_level(cls, value: str) -> str:
        level = value.upper()
        if level not in {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}:
            raise ValueError(f"unknown log level {value!r}")
        return level
