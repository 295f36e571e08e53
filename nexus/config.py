"""
Nexus Community Watch Configuration Management

Centralized configuration using Pydantic Settings for type-safe environment
variable loading with validation.
"""

import logging
from functools import lru_cache
from typing import Literal

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger(__name__)


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # ═══════════════════════════════════════════════════════════════
    # APPLICATION
    # ═══════════════════════════════════════════════════════════════
    app_name: str = Field(default="nexus-watch", description="Application name")
    app_env: Literal["development", "staging", "production", "testing"] = Field(
        default="development", description="Environment"
    )
    debug: bool = Field(default=False, description="Debug mode")
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = Field(
        default="INFO", description="Logging level"
    )

    # API Server
    api_host: str = Field(default="0.0.0.0", description="API host")
    api_port: int = Field(default=8000, ge=1, le=65535, description="API port")

    # CORS
    cors_origins: str = Field(
        default="http://localhost:5173,http://localhost:5174,https://etc-nexus.netlify.app",
        description="Comma-separated CORS origins",
    )

    @property
    def cors_origins_list(self) -> list[str]:
        """Parse CORS origins string into list."""
        origins = [origin.strip() for origin in self.cors_origins.split(",") if origin.strip()]
        if self.app_env == "production" and "*" in origins:
            raise ValueError("Wildcard CORS origin not allowed in production")
        return origins

    # ═══════════════════════════════════════════════════════════════
    # INCIDENT STORE
    # ═══════════════════════════════════════════════════════════════
    incident_store_backend: Literal["neo4j", "memory"] = Field(
        default="neo4j", description="Incident store backend"
    )

    neo4j_uri: str = Field(default="bolt://localhost:7687", description="Neo4j connection URI")
    neo4j_user: str = Field(default="neo4j", description="Neo4j username")
    neo4j_password: str | None = Field(default=None, description="Neo4j password")
    neo4j_database: str = Field(default="neo4j", description="Neo4j database name")

    # Connection Pool
    neo4j_max_connection_lifetime: int = Field(
        default=3600, description="Max connection lifetime in seconds"
    )
    neo4j_max_connection_pool_size: int = Field(
        default=50, ge=1, description="Max connection pool size"
    )
    neo4j_connection_timeout: int = Field(
        default=30, ge=1, description="Connection timeout in seconds"
    )

    # ═══════════════════════════════════════════════════════════════
    # COMMUNITY WATCH
    # ═══════════════════════════════════════════════════════════════
    watch_quorum: int = Field(
        default=3, ge=1, le=100, description="Distinct verifiers needed to verify an incident"
    )
    watch_allow_self_verification: bool = Field(
        default=False, description="Let reporters count towards their own incident's quorum"
    )
    incident_list_limit: int = Field(
        default=200, ge=1, le=1000, description="Max incidents returned by a listing"
    )

    # ═══════════════════════════════════════════════════════════════
    # EVENT BUS
    # ═══════════════════════════════════════════════════════════════
    event_queue_size: int = Field(default=10000, ge=1, description="Max queued events")
    event_max_retries: int = Field(default=3, ge=1, description="Delivery attempts per handler")
    event_retry_delay_seconds: float = Field(
        default=1.0, ge=0.0, description="Base delay between delivery attempts"
    )
    event_handler_timeout_seconds: float = Field(
        default=30.0, gt=0.0, description="Timeout per handler invocation"
    )

    # ═══════════════════════════════════════════════════════════════
    # AI/ML CONFIGURATION
    # ═══════════════════════════════════════════════════════════════
    llm_provider: Literal["anthropic", "openai", "mock"] = Field(
        default="openai", description="LLM provider for incident alert text"
    )
    llm_api_key: str | None = Field(default=None, description="LLM API key")
    llm_model: str = Field(default="gpt-4", description="LLM model name")
    llm_max_tokens: int = Field(default=400, ge=1, description="Max LLM output tokens")
    llm_temperature: float = Field(default=0.7, ge=0.0, le=2.0, description="LLM temperature")

    @field_validator("llm_api_key")
    @classmethod
    def validate_llm_api_key(cls, v: str | None, info) -> str | None:
        """Validate LLM API key format if provided."""
        if v is None:
            return v

        provider = info.data.get("llm_provider", "openai") if info.data else "openai"

        if provider == "openai" and not v.startswith(("sk-", "org-")):
            logger.warning(
                "llm_api_key_format_warning: OpenAI API keys typically start with 'sk-'"
            )

        if provider == "anthropic" and not v.startswith("sk-ant-"):
            logger.warning(
                "llm_api_key_format_warning: Anthropic API keys typically start with 'sk-ant-'"
            )

        return v

    # ═══════════════════════════════════════════════════════════════
    # SOCIAL ANNOUNCEMENTS
    # ═══════════════════════════════════════════════════════════════
    announcements_enabled: bool = Field(
        default=True, description="Announce verified incidents on X"
    )
    x_access_token: str | None = Field(
        default=None, description="X (Twitter) OAuth2 user access token"
    )
    x_api_base_url: str = Field(
        default="https://api.twitter.com", description="X API base URL"
    )
    announcement_timeout_seconds: float = Field(
        default=120.0, gt=0.0, description="Time limit for writing and posting one alert"
    )

    # ═══════════════════════════════════════════════════════════════
    # MONITORING
    # ═══════════════════════════════════════════════════════════════
    sentry_dsn: str | None = Field(default=None, description="Sentry DSN")


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()


# Singleton settings instance
settings = get_settings()
