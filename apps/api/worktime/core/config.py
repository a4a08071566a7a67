from __future__ import annotations

from pathlib import Path
from typing import Literal
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from pydantic import AnyUrl, BaseModel, Field
from pydantic import model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

ENV_FILE = Path(__file__).resolve().parents[2] / ".env"


class DefaultSlotConfig(BaseModel):
    start: str
    end: str


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=(str(ENV_FILE), ".env"),
        env_file_encoding="utf-8",
        extra="ignore",
        populate_by_name=True,
    )

    # App
    app_env: str = Field(default="development", alias="APP_ENV")
    frontend_url: str = Field(default="http://localhost:5173", alias="FRONTEND_URL")

    # Storage
    work_storage: Literal["supabase", "memory"] = Field(
        default="supabase", alias="WORK_STORAGE"
    )
    supabase_url: AnyUrl | None = Field(default=None, alias="SUPABASE_URL")
    supabase_service_role_key: str | None = Field(
        default=None, alias="SUPABASE_SERVICE_ROLE_KEY"
    )

    # Language model (chat-completions compatible endpoint)
    ai_url: str = Field(
        default="https://api.openai.com/v1/chat/completions", alias="AI_URL"
    )
    ai_key: str | None = Field(default=None, alias="AI_KEY")
    ai_model: str = Field(default="gpt-4o-mini", alias="AI_MODEL")
    ai_timeout_seconds: float = Field(default=60.0, alias="AI_TIMEOUT_SECONDS")
    ai_max_tokens: int = Field(default=8192, alias="AI_MAX_TOKENS")

    # Work rules
    work_timezone: str = Field(default="UTC", alias="WORK_TIMEZONE")
    work_default_slots: list[DefaultSlotConfig] = Field(
        default_factory=lambda: [
            DefaultSlotConfig(start="09:30", end="12:00"),
            DefaultSlotConfig(start="13:30", end="19:00"),
        ],
        alias="WORK_DEFAULT_SLOTS",
    )
    holiday_sync_attempts: int = Field(default=3, alias="HOLIDAY_SYNC_ATTEMPTS")
    holiday_sync_backoff_seconds: float = Field(
        default=0.2, alias="HOLIDAY_SYNC_BACKOFF_SECONDS"
    )
    normalize_per_minute_limit: int = Field(
        default=10, alias="NORMALIZE_PER_MINUTE_LIMIT"
    )

    # Observability
    sentry_dsn: str | None = Field(default=None, alias="SENTRY_DSN")
    sentry_traces_sample_rate: float = Field(
        default=0.0, alias="SENTRY_TRACES_SAMPLE_RATE"
    )

    @model_validator(mode="after")
    def validate_runtime_constraints(self) -> "Settings":
        if self.work_storage == "supabase" and not (
            self.supabase_url and self.supabase_service_role_key
        ):
            raise ValueError(
                "WORK_STORAGE=supabase requires SUPABASE_URL and SUPABASE_SERVICE_ROLE_KEY. "
                "Set WORK_STORAGE=memory for a throwaway local run."
            )
        if self.ai_timeout_seconds <= 0:
            raise ValueError("AI_TIMEOUT_SECONDS must be > 0")
        if self.ai_max_tokens <= 0:
            raise ValueError("AI_MAX_TOKENS must be > 0")
        if not (1 <= self.holiday_sync_attempts <= 10):
            raise ValueError("HOLIDAY_SYNC_ATTEMPTS must be 1..10")
        if self.holiday_sync_backoff_seconds < 0:
            raise ValueError("HOLIDAY_SYNC_BACKOFF_SECONDS must be >= 0")
        try:
            ZoneInfo(self.work_timezone)
        except (ZoneInfoNotFoundError, ValueError) as exc:
            raise ValueError(f"Unknown WORK_TIMEZONE: {self.work_timezone}") from exc
        return self

    def is_ai_configured(self) -> bool:
        return bool(self.ai_url.strip() and (self.ai_key or "").strip())


settings = Settings()  # type: ignore[call-arg]  # singleton import via env settings
