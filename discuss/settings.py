"""
Client settings using Pydantic BaseSettings.
All endpoints and tuning knobs via environment variables (DISCUSS_ prefix).
"""

from functools import lru_cache
from typing import Literal

from pydantic import Field, computed_field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Discuss client configuration loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_prefix="DISCUSS_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
        populate_by_name=True,
    )

    # REST API
    api_url: str = "http://localhost:3000/api"
    api_prefix: str = "/discuss"  # channel/message routes live under this prefix
    deals_endpoint: str = "/deals/company/all"  # mention targets, outside the prefix
    request_timeout: float = 30.0

    # Socket transport (Socket.IO)
    socket_url_override: str | None = Field(default=None, alias="DISCUSS_SOCKET_URL")
    socket_path: str = "socket.io"
    transports: list[str] = ["websocket", "polling"]  # prefer WS, fall back to polling
    ack_timeout: float = 10.0

    # Reconnection (bounded exponential backoff)
    reconnection_attempts: int = 10
    reconnection_delay: float = 1.0
    reconnection_delay_max: float = 10.0

    # Message log
    page_size: int = 50
    auto_scroll_threshold: int = 100  # px from bottom that still counts as "at the bottom"
    load_more_threshold: int = 60  # px from top that triggers loading older history

    # Composer
    mention_candidate_limit: int = 8
    typing_timeout_seconds: float = 3.0
    typing_throttle_seconds: float = 2.0

    # Caching
    deals_cache_ttl_seconds: float = 300.0

    # Logging
    log_level: str = "INFO"
    log_format: Literal["json", "text"] = "text"

    @field_validator("api_url", mode="before")
    @classmethod
    def strip_trailing_slash(cls, v: str) -> str:
        """Normalize the API base URL so endpoint paths can be appended."""
        if not v:
            return "http://localhost:3000/api"
        return v.strip().rstrip("/")

    @field_validator("reconnection_attempts", "page_size", "mention_candidate_limit")
    @classmethod
    def positive(cls, v: int) -> int:
        if v < 1:
            raise ValueError("must be at least 1")
        return v

    @computed_field
    @property
    def socket_url(self) -> str:
        """Socket server origin.

        Defaults to the API URL with its trailing ``/api`` segment removed,
        since the socket server is mounted at the application root.
        """
        if self.socket_url_override:
            return self.socket_url_override.rstrip("/")
        if self.api_url.endswith("/api"):
            return self.api_url[: -len("/api")]
        return self.api_url

    @property
    def discuss_url(self) -> str:
        """Base URL for channel and message routes."""
        return f"{self.api_url}{self.api_prefix}"


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
