"""
Configuration for the Account service.

Values come from environment variables prefixed with ACCOUNT_ (or a .env file),
e.g. ACCOUNT_RETRY_INTERVAL_SECONDS=30.
"""

from pathlib import Path
from typing import Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Service settings."""

    app_title: str = "Account Service"
    log_level: str = Field(default="INFO", description="Root logging level")
    host: str = "127.0.0.1"
    port: int = 5000

    event_store_path: Optional[Path] = Field(
        default=None,
        description="JSON file keeping undelivered integration events; memory-only when unset",
    )
    retry_interval_seconds: float = Field(
        default=60.0,
        gt=0,
        description="How often stored events are republished",
    )
    publisher_max_workers: int = Field(default=4, ge=1, description="Event publication thread pool size")
    bus_connected: bool = Field(default=True, description="Initial state of the in-process message bus")

    model_config = SettingsConfigDict(env_prefix="ACCOUNT_", env_file=".env", extra="ignore")


def get_settings() -> Settings:
    return Settings()
