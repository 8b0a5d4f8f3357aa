"""Configuration management for the tracker."""

from functools import lru_cache
from pathlib import Path
from typing import Literal

from pydantic import Field, PositiveFloat, PositiveInt
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Tracker settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=Path(__file__).resolve().parent.parent / ".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    database_url: str = "sqlite:///indexer.db"
    indexer_url: str = ""
    poll_interval_seconds: PositiveInt = 5
    fetch_timeout_seconds: PositiveFloat = 30.0
    minting_batch_size: PositiveInt = 50
    transfer_batch_size: PositiveInt = 59
    checkpoint_policy: Literal["batch_end", "contiguous"] = "batch_end"
    max_retry_attempts: int = Field(default=5, ge=0)
    log_level: str = "INFO"


@lru_cache()
def get_settings() -> Settings:
    """Return cached tracker settings."""

    return Settings()
