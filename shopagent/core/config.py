"""Application configuration using Pydantic settings."""

from functools import lru_cache
from typing import Literal

from pydantic import Field, RedisDsn
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Environment
    environment: Literal["development", "staging", "production"] = "development"
    debug: bool = True

    # API
    api_v1_prefix: str = "/api/v1"
    project_name: str = "Shop Agent API"
    version: str = "0.1.0"

    # LLM
    openai_api_key: str = ""
    openai_model: str = "gpt-4o-mini"
    openai_timeout_seconds: float = 120.0
    openai_max_retries: int = 2

    # Commerce backend
    commerce_rpc_url: str = "http://localhost:8080/mcp"
    commerce_api_token: str = ""
    commerce_timeout_seconds: float = 10.0
    commerce_status_seed: str = ""  # comma-separated statuses passed to product.search
    allowed_application_ids: list[str] = Field(default_factory=list)

    # Sessions
    session_store: Literal["memory", "redis"] = "memory"
    session_ttl_seconds: int = 3600
    session_lock_timeout_seconds: float = 60.0
    redis_url: RedisDsn = RedisDsn("redis://localhost:6379/0")
    redis_prefix: str = "agent:sess:"

    # Agent loop
    agent_max_rounds: int = Field(6, ge=1)
    agent_max_tool_calls_per_round: int = Field(3, ge=1)

    # Limits
    max_message_chars: int = 4000
    chat_rate_limit: str = "30/minute"

    # Error reporting
    sentry_dsn: str = ""

    # CORS
    cors_origins: list[str] = [
        "http://localhost:5173",  # Vite widget dev
        "http://127.0.0.1:5173",
    ]


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()


settings = get_settings()
