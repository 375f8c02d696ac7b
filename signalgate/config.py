from __future__ import annotations

from functools import lru_cache
from typing import List, Literal, Optional

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    app_name: str = "SignalGate"
    database_url: str = Field(default="sqlite+aiosqlite:///./signalgate.db")
    log_level: str = "INFO"

    bot_token: Optional[str] = None
    telegram_api_base: str = "https://api.telegram.org"
    telegram_mode: Literal["webhook", "polling", "off"] = "webhook"
    webhook_secret: Optional[str] = None
    poll_timeout_seconds: int = 25
    request_timeout_seconds: float = 10.0
    request_max_retries: int = 2

    admin_ids: List[int] = Field(default_factory=list)
    contact_admin_url: str = "https://t.me/HANS_LANDA1"

    quota_limit: int = Field(default=100, ge=1)
    quota_window: Literal["calendar_day", "rolling"] = "calendar_day"
    quota_window_seconds: int = Field(default=3600, ge=1)

    key_token_bytes: int = Field(default=16, ge=16)
    key_create_attempts: int = Field(default=5, ge=1)

    default_locale: str = "it"
    supported_locales: List[str] = Field(default_factory=lambda: ["it", "de", "fr"])
    images_dir: str = "./images"
    signal_delay_seconds: float = 1.5

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    @field_validator("admin_ids", mode="before")
    @classmethod
    def _wrap_single_admin(cls, value):
        # ADMIN_IDS=123 decodes to a bare int
        if isinstance(value, int):
            return [value]
        return value


@lru_cache()
def get_settings() -> Settings:
    return Settings()
