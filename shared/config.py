"""
Runtime configuration.

Settings are read from environment variables prefixed with NOTIFY_ (and an
optional .env file), e.g. NOTIFY_TOPIC_FANOUT_LIMIT=16.
"""

import logging
from pathlib import Path
from typing import Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

LOG_FORMAT = "%(asctime)s | %(name)-24s | %(levelname)-5s | %(message)s"


class Settings(BaseSettings):
    """Settings for the trigger core and its in-memory collaborators."""

    data_dir: Path = Field(
        default=Path(__file__).parent.parent / "data",
        description="Directory holding subscribers.json and topics.json",
    )
    topic_fanout_limit: int = Field(
        default=8,
        ge=1,
        description="Maximum number of topic lookups run concurrently for one trigger",
    )
    topic_lookup_timeout_seconds: Optional[float] = Field(
        default=5.0,
        gt=0,
        description="Per-topic lookup timeout; a timed out topic counts as a failed topic",
    )
    dispatch_timeout_seconds: Optional[float] = Field(
        default=10.0,
        gt=0,
        description="Timeout for workflow engine calls (None waits forever)",
    )
    log_level: str = Field(default="INFO", description="Root log level")

    model_config = SettingsConfigDict(env_prefix="NOTIFY_", env_file=".env", extra="ignore")


def configure_logging(level: str) -> None:
    """Configure root logging with the pipe-separated console format."""
    logging.basicConfig(level=level.upper(), format=LOG_FORMAT, datefmt="%H:%M:%S")


_settings: Optional[Settings] = None


def get_settings() -> Settings:
    """Get the process-wide settings, loading them on first use."""
    global _settings
    if _settings is None:
        _settings = Settings()
    return _settings


def reset_settings(settings: Optional[Settings] = None) -> Optional[Settings]:
    """Replace the cached settings (None forces a reload on next access)."""
    global _settings
    _settings = settings
    return _settings
