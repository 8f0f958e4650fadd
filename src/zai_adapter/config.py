"""Configuration management using Pydantic Settings."""

from functools import lru_cache
from typing import Any

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from zai_adapter.models import ThinkMode


class Settings(BaseSettings):
    """Application settings."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Server settings
    host: str = Field(default="0.0.0.0", description="Server bind host")
    port: int = Field(default=8080, description="Server port")
    log_level: str = Field(default="info", description="Logging level")

    # Upstream settings
    api_base: str = Field(
        default="https://chat.z.ai",
        description="Upstream chat service base URL",
    )
    default_model: str = Field(default="GLM-4.5", description="Model used when a request names none")
    anon_token_enabled: bool = Field(
        default=True,
        description="Fetch an anonymous bearer token per request",
    )
    upstream_token: str = Field(
        default="",
        description="Fixed bearer token (used when anonymous tokens are off or unavailable)",
    )

    # Output shaping
    think_tags_mode: ThinkMode = Field(
        default=ThinkMode.REASONING,
        description="How thinking output is presented: reasoning, think, strip, details or default",
    )
    function_call_enabled: bool = Field(default=True, description="Enable prompt-based tool calling")
    max_json_scan: int = Field(
        default=200_000,
        description="Maximum characters scanned for tool-call JSON",
    )

    # Timeouts and retries
    http_connect_timeout: float = Field(default=10, description="Upstream connect timeout in seconds")
    http_read_timeout: float = Field(default=60, description="Upstream read timeout in seconds")
    token_timeout: float = Field(default=8, description="Anonymous token request timeout in seconds")
    retry_count: int = Field(default=2, description="Retries after the first failed upstream attempt")
    retry_backoff: float = Field(
        default=0.6,
        description="Backoff step in seconds; the n-th retry waits n * retry_backoff",
    )

    # Streaming
    sse_heartbeat_seconds: float = Field(
        default=15,
        description="Idle seconds before a keep-alive comment is sent (0 disables)",
    )

    @field_validator("think_tags_mode", mode="before")
    @classmethod
    def _coerce_think_mode(cls, value: Any) -> Any:
        """Map unrecognised mode names to the default presentation."""
        if isinstance(value, ThinkMode):
            return value
        try:
            return ThinkMode(str(value).strip().lower())
        except ValueError:
            return ThinkMode.DEFAULT


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
