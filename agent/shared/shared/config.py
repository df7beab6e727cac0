"""Configuration management using Pydantic Settings."""

from __future__ import annotations

from functools import lru_cache

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Redis (index + settings persistence, diagnostics pub/sub)
    redis_url: str = "redis://redis:6379"

    # IANA zone used to turn "HH:mm" slots into instants
    reminder_timezone: str = "UTC"

    # Scheduling policy
    grace_period_minutes: int = 30
    followup_offset_hours: int = 2
    snooze_minutes: int = 15
    # Device-imposed ceiling on outstanding local notifications per pet
    max_notifications_per_pet: int = 50
    # Fraction of the ceiling at which a warning is emitted (40 of 50)
    limit_warning_ratio: float = 0.8
    rolling_window_hours: int = 24
    weekly_summary_lookahead_weeks: int = 4

    # Diagnostics
    diagnostics_channel: str = "diagnostics:reminders"

    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    @property
    def limit_warning_threshold(self) -> int:
        """Entry count at which the limit warning fires."""
        return int(self.max_notifications_per_pet * self.limit_warning_ratio)


@lru_cache
def get_settings() -> Settings:
    """Return cached settings instance."""
    return Settings()
