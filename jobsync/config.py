from functools import lru_cache
from typing import Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Runtime settings loaded from the environment or a local .env file."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    app_name: str = Field(default="jobsync", description="Application title")

    # Storage collaborator
    mongo_url: str = Field(default="mongodb://localhost:27017", description="MongoDB connection string")
    mongo_db: str = Field(default="jobsync", description="Database name")

    # Realtime
    redis_url: Optional[str] = Field(default=None, description="Redis URL for view fan-out; in-process when unset")
    change_streams_enabled: bool = Field(default=True, description="Requires a replica set")
    change_stream_retry_delay: float = Field(default=0.5, description="First reconnect delay in seconds")
    change_stream_max_retry_delay: float = Field(default=10.0, description="Reconnect delay cap in seconds")

    message_preview_length: int = Field(default=200, ge=1, description="Stored last_message length")

    # Logging
    log_level: str = Field(default="INFO", description="Log level")
    log_file: Optional[str] = Field(default=None, description="Optional log file path")


@lru_cache
def get_settings() -> Settings:
    return Settings()
