from datetime import time
from functools import lru_cache
from typing import List, Literal

from pydantic import AnyHttpUrl, Field, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from barberq.schemas.calendar import CalendarRules


class Settings(BaseSettings):
    """Application configuration loaded from environment variables."""

    app_name: str = Field(default="BarberQ Timeline Service")
    cors_origins: List[AnyHttpUrl] = Field(
        default_factory=lambda: [
            "http://localhost:3000",
            "http://127.0.0.1:3000",
        ]
    )
    timezone: str = Field(
        default="Asia/Manila"
    )
    opening_time: time = Field(
        default=time(8, 0)
    )
    closing_time: time = Field(
        default=time(17, 0)
    )
    blocked_start: time = Field(
        default=time(12, 0)
    )
    blocked_end: time = Field(
        default=time(13, 0)
    )
    buffer_minutes: int = Field(
        default=0, ge=0
    )
    queue_capacity: int = Field(
        default=15, ge=1
    )
    default_duration_minutes: int = Field(
        default=30, gt=0
    )
    max_duration_minutes: int = Field(
        default=240, gt=0
    )
    max_advance_days: int = Field(
        default=30, ge=0
    )
    packing_policy: Literal["queue_first", "fixed_first"] = Field(
        default="queue_first"
    )
    use_mock_data: bool = Field(
        default=True
    )
    notification_service_base_url: AnyHttpUrl | None = Field(
        default=None
    )
    notification_service_timeout: float = Field(
        default=10.0
    )
    notification_service_token: str | None = Field(
        default=None
    )
    notification_dedupe_window_seconds: int = Field(
        default=300, ge=0
    )
    notification_outbox_limit: int = Field(
        default=500, ge=1
    )

    model_config = SettingsConfigDict(env_prefix="BARBERQ_", case_sensitive=False)

    @field_validator("cors_origins", mode="before")
    def _split_origins(cls, value):
        if isinstance(value, str):
            return [origin.strip() for origin in value.split(",") if origin.strip()]
        return value

    @model_validator(mode="after")
    def _check_business_hours(self) -> "Settings":
        # CalendarRules performs the ordering checks.
        self.calendar_rules()
        return self

    def calendar_rules(self) -> CalendarRules:
        """Default calendar rules shared by every barber without overrides."""

        return CalendarRules(
            opening_time=self.opening_time,
            closing_time=self.closing_time,
            blocked_start=self.blocked_start,
            blocked_end=self.blocked_end,
            buffer_minutes=self.buffer_minutes,
            queue_capacity=self.queue_capacity,
            default_duration_minutes=self.default_duration_minutes,
            packing_policy=self.packing_policy,
        )


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Return cached application settings."""

    return Settings()
