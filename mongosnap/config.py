"""
Settings for the MongoSnap query service.

Every section is a pydantic-settings model with its own env prefix; values
come from the environment or a local ``.env`` file.
"""

from functools import lru_cache
from typing import Literal

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class SandboxConfig(BaseSettings):
    """Query execution sandbox configuration."""

    model_config = SettingsConfigDict(env_prefix="SANDBOX_")

    default_timeout_ms: int = Field(
        default=30000,
        gt=0,
        description="Execution timeout when the request does not give one"
    )
    max_timeout_ms: int = Field(
        default=120000,
        gt=0,
        description="Upper bound for any requested timeout"
    )
    max_query_length: int = Field(
        default=20000,
        gt=0,
        description="Maximum query length in characters"
    )
    forbidden_operations: list[str] = Field(
        default=["dropDatabase", "drop", "remove"],
        description="Operations refused by the HTTP layer before execution"
    )
    max_concurrent_per_user: int = Field(
        default=3,
        gt=0,
        description="Concurrent executions allowed per user"
    )
    max_range_length: int = Field(
        default=1_000_000,
        gt=0,
        description="Largest range() query code may build"
    )
    log_prefix: str = Field(
        default="[QUERY]",
        description="Prefix attached to console output from query code"
    )


class ConnectionConfig(BaseSettings):
    """MongoDB client and registry configuration."""

    model_config = SettingsConfigDict(env_prefix="CONNECTION_")

    # Driver settings
    server_selection_timeout_ms: int = Field(default=10000, description="Server selection timeout")
    connect_timeout_ms: int = Field(default=10000, description="Connect timeout")
    socket_timeout_ms: int = Field(default=10000, description="Socket timeout")
    max_pool_size: int = Field(default=10, description="Maximum pool size per client")
    min_pool_size: int = Field(default=1, description="Minimum pool size per client")

    # Registry housekeeping
    stale_after_seconds: int = Field(
        default=1800,
        description="Connections unused for this long are closed"
    )
    cleanup_interval_seconds: int = Field(
        default=300,
        description="Interval between stale connection sweeps"
    )
    default_database: str = Field(
        default="test",
        description="Database used when the URI names none"
    )


class OpenAIConfig(BaseSettings):
    """Chat completion endpoint used to turn natural language into queries."""

    model_config = SettingsConfigDict(env_prefix="OPENAI_")

    api_key: str = Field(default="", description="Leave empty to disable generation")
    base_url: str = Field(
        default="https://api.openai.com/v1",
        description="Any OpenAI-compatible endpoint"
    )
    model: str = Field(default="gpt-4o-mini", description="Model name sent with each request")
    max_tokens: int = Field(default=1024, gt=0, description="Completion cap for generated queries")
    temperature: float = Field(default=0.1, ge=0.0, le=2.0)
    timeout: float = Field(default=60.0, gt=0, description="Per-request timeout, seconds")
    max_retries: int = Field(default=3, ge=0, description="Client-side retries on transient errors")


class ServerConfig(BaseSettings):
    """uvicorn and CORS settings."""

    model_config = SettingsConfigDict(env_prefix="SERVER_")

    host: str = Field(default="0.0.0.0")
    port: int = Field(default=8000)
    workers: int = Field(default=1, ge=1)
    cors_origins: list[str] = Field(
        default=["http://localhost:5173"],
        description="Origins allowed to call the API from a browser"
    )


def _as_bool(value: object) -> bool:
    if isinstance(value, bool):
        return value
    if isinstance(value, str):
        return value.strip().lower() in {"1", "true", "yes", "on"}
    return False


class Settings(BaseSettings):
    """
    Root settings object.

    Nested sections read their own prefixed variables; ``SANDBOX__MAX_TIMEOUT_MS``
    style overrides work through the nested delimiter as well.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        env_nested_delimiter="__",
        extra="ignore"
    )

    app_name: str = "MongoSnap Query Service"
    environment: Literal["development", "staging", "production"] = "development"
    debug: bool = Field(default=False, description="Verbose logs and stack traces in error responses")

    sandbox: SandboxConfig = Field(default_factory=SandboxConfig)
    connection: ConnectionConfig = Field(default_factory=ConnectionConfig)
    openai: OpenAIConfig = Field(default_factory=OpenAIConfig)
    server: ServerConfig = Field(default_factory=ServerConfig)

    @field_validator("debug", mode="before")
    @classmethod
    def parse_debug(cls, v: object) -> bool:
        return _as_bool(v)


@lru_cache
def get_settings() -> Settings:
    """Settings are read once per process."""
    return Settings()
