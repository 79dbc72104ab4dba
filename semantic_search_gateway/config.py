"""Configuration settings for semantic-search-gateway."""

from enum import Enum
from typing import Optional

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings

DEFAULT_CORS_ORIGIN = "https://semantic-search-frontend.eu-contentstackapps.com"

# 10 MB, shared by the JSON and URL-encoded parsers
DEFAULT_MAX_BODY_BYTES = 10 * 1024 * 1024


class Environment(str, Enum):
    """Runtime environment name."""

    DEVELOPMENT = "development"
    TEST = "test"
    PRODUCTION = "production"


class Settings(BaseSettings):  # type: ignore[misc]
    """Application settings loaded from environment variables or .env files."""

    environment: Environment = Field(
        default=Environment.PRODUCTION,
        description="Runtime environment: development, test or production",
    )

    # HTTP surface
    cors_origin: str = Field(
        default=DEFAULT_CORS_ORIGIN, description="The single origin allowed by CORS"
    )
    max_body_bytes: int = Field(
        default=DEFAULT_MAX_BODY_BYTES, gt=0, description="Request body size cap"
    )
    public_dir: str = Field(
        default="public", description="Directory served for static assets"
    )
    app_version: str = Field(default="1.0.0", description="Version reported by /")
    log_level: str = Field(default="INFO", description="Root log level")
    enable_metrics: bool = Field(
        default=True, description="Expose Prometheus metrics on /metrics"
    )

    # Embedding provider
    openai_api_key: Optional[str] = Field(
        default=None, description="OpenAI API key for embeddings"
    )
    embedding_model: str = Field(
        default="text-embedding-3-small", description="OpenAI embedding model"
    )
    embedding_dimensions: Optional[int] = Field(
        default=None, gt=0, description="Optional embedding dimension override"
    )

    # Vector store
    supabase_db_url: Optional[str] = Field(
        default=None, description="Supabase PostgreSQL database URL"
    )

    downstream_timeout_seconds: float = Field(
        default=30.0, gt=0, description="Upper bound for embedding/store calls"
    )
    webhook_secret: Optional[str] = Field(
        default=None, description="Shared secret expected in X-Webhook-Secret"
    )

    @property
    def is_development(self) -> bool:
        """Check if running in the development environment."""
        return self.environment == Environment.DEVELOPMENT

    @field_validator("log_level")
    @classmethod
    def normalize_log_level(cls, v: str) -> str:
        """Accept log levels in any case."""
        level = v.upper()
        if level not in {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}:
            raise ValueError(f"Unknown LOG_LEVEL '{v}'")
        return level

    model_config = {
        # ↳ Load from .env files and environment variables
        "env_file": ".env",
        "env_file_encoding": "utf-8",
        "case_sensitive": False,
        "env_prefix": "",
        # ↳ Ignore unrelated variables shared with the frontend deployment
        "extra": "ignore",
    }


def get_settings() -> Settings:
    """Read a fresh settings snapshot from the environment."""
    return Settings()
