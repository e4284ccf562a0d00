"""
Configuration Management for the Daily Bar Consolidator.

This module provides centralized configuration using Pydantic Settings,
loading values from environment variables and .env files.
"""

from datetime import time
from typing import Literal
import os

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """
    Application settings loaded from environment variables.

    Attributes:
        daily_close_time: Time of day the daily bar closes (close timezone)
        close_time_zone: Timezone the close time is expressed in
        exchange_time_zone: Timezone incoming data is stamped in
        emit_tolerance_seconds: Slack when matching a timestamp against the close
        trigger_time: Observation timestamp matched against the close
        bar_type: Kind of bars consolidated ('quote' or 'trade')
        history_size: Number of consolidated bars to retain
        scan_interval_seconds: Interval between time scans of the consolidator
        api_host: Host for REST API server
        api_port: Port for REST API server
        log_level: Root logging level
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore"
    )

    # Close Schedule Configuration
    daily_close_time: time = Field(
        default=time(17, 0),
        description="Time of day to close the daily bar"
    )
    close_time_zone: str = Field(default="UTC", description="Timezone of the close time")
    exchange_time_zone: str = Field(
        default="America/New_York",
        description="Timezone the exchange stamps data in"
    )

    # Emission Configuration
    emit_tolerance_seconds: float = Field(
        default=30.0,
        ge=0,
        description="Seconds within which a timestamp counts as being on the close"
    )
    trigger_time: Literal["start", "end"] = Field(
        default="end",
        description="Observation timestamp matched against the close"
    )
    bar_type: Literal["quote", "trade"] = Field(default="quote", description="Kind of bars consolidated")

    # Service Configuration
    history_size: int = Field(
        default=100,
        gt=0,
        description="Number of consolidated bars to retain"
    )
    scan_interval_seconds: float = Field(
        default=1.0,
        gt=0,
        description="Seconds between time scans of the consolidator"
    )

    # API Server Configuration
    api_host: str = Field(default="0.0.0.0", description="REST API host")
    # Use PORT env var (set by Render/Railway) or default to 8000
    api_port: int = Field(
        default_factory=lambda: int(os.environ.get("PORT", 8000)),
        description="REST API port"
    )

    log_level: str = Field(default="INFO", description="Logging level")


# Global settings instance
settings = Settings()


def get_settings() -> Settings:
    """Get the global settings instance."""
    return settings
