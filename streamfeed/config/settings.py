"""Client settings loaded from environment variables."""

from functools import lru_cache
from pathlib import Path
from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Stream client settings with validation."""

    model_config = SettingsConfigDict(
        env_prefix="STREAMFEED_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Endpoints
    ws_url: str = Field(
        default="wss://stream.binance.com:9443/stream",
        description="Persistent market-data WebSocket endpoint",
    )
    rest_base_url: str = Field(
        default="https://api.binance.com",
        description="REST endpoint used by the ticker polling fallback",
    )
    connect_timeout_seconds: float = Field(default=10.0, gt=0)

    # Reconnection
    reconnect_delay_seconds: float = Field(
        default=1.0,
        ge=0,
        description="Fixed delay before each reconnection attempt (no backoff)",
    )
    max_reconnect_attempts: int = Field(
        default=2,
        ge=0,
        description="Reconnection attempts before switching to polling",
    )

    # Idle hibernation
    idle_check_interval_seconds: float = Field(default=60.0, gt=0)
    idle_threshold_seconds: float = Field(
        default=600.0,
        ge=0,
        description="Inactivity after which an open connection is hibernated",
    )

    # Degraded mode
    poll_interval_seconds: float = Field(
        default=1.0,
        ge=0,
        description="Fixed wait between fallback polls for one subscription",
    )

    # Logging
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = Field(default="INFO")
    log_format: Literal["json", "text"] = Field(default="text")
    log_dir: Path | None = Field(default=None)


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
