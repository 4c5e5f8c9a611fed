"""Configuration module for NetPulse using Pydantic Settings."""

from functools import lru_cache
from pathlib import Path
from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class ServerSettings(BaseSettings):
    """HTTP server settings."""

    model_config = SettingsConfigDict(env_prefix="SERVER_")

    host: str = "0.0.0.0"
    port: int = 3000
    workers: int = 1  # Sequence state lives in-process


class DatabaseSettings(BaseSettings):
    """Database settings."""

    model_config = SettingsConfigDict(env_prefix="DB_")

    path: Path = Path("network_tests.db")
    wal_mode: bool = True
    history_limit: int = Field(
        default=50,
        ge=1,
        le=50,
        description="Maximum number of rows returned by the history endpoint",
    )


class GeolocationSettings(BaseSettings):
    """IP geolocation lookup settings."""

    model_config = SettingsConfigDict(env_prefix="GEO_")

    url: str = "https://ipapi.co/json/"
    timeout_seconds: float = 5.0


class ProbeSettings(BaseSettings):
    """Latency probe settings."""

    model_config = SettingsConfigDict(env_prefix="PROBE_")

    url: str = "https://www.google.com/favicon.ico"
    timeout_seconds: float = 5.0
    # Fallback latency is drawn from [fallback_min_ms, fallback_min_ms + fallback_span_ms]
    fallback_min_ms: int = 10
    fallback_span_ms: int = 50


class SequenceSettings(BaseSettings):
    """Simulated download sequence settings."""

    model_config = SettingsConfigDict(env_prefix="SEQUENCE_")

    sizes_mb: list[int] = Field(
        default=[1, 2, 4, 8, 16],
        min_length=1,
        description="Nominal payload sizes for each download step, in megabytes",
    )
    min_delay_seconds: float = 0.4
    delay_jitter_seconds: float = 0.4
    ping_progress: float = Field(
        default=30.0,
        description="Progress percentage reached once the latency sample is taken",
    )


class LoggingSettings(BaseSettings):
    """Logging configuration."""

    model_config = SettingsConfigDict(env_prefix="LOG_")

    level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = "INFO"
    format: Literal["json", "console"] = "json"
    # Include request correlation IDs
    correlation_id: bool = True
    # Requests still counted in metrics but not logged; the page polls run status
    quiet_paths: list[str] = Field(
        default=["/health", "/health/live", "/health/ready", "/metrics", "/api/run/status"],
    )


class Settings(BaseSettings):
    """Main application settings."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        env_nested_delimiter="__",
        extra="ignore",
    )

    # Sub-configurations
    server: ServerSettings = Field(default_factory=ServerSettings)
    database: DatabaseSettings = Field(default_factory=DatabaseSettings)
    geolocation: GeolocationSettings = Field(default_factory=GeolocationSettings)
    probe: ProbeSettings = Field(default_factory=ProbeSettings)
    sequence: SequenceSettings = Field(default_factory=SequenceSettings)
    logging: LoggingSettings = Field(default_factory=LoggingSettings)

    # Application settings
    debug: bool = False
    app_name: str = "NetPulse"
    version: str = "1.0.2"
    # Look up the client's IP information once at startup
    lookup_on_startup: bool = True


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance.

    Settings are loaded once and cached. To reload, call get_settings.cache_clear().
    """
    return Settings()
