"""Shared configuration management for the dashboard core.

Based on Pydantic Settings v2 best practices:
https://docs.pydantic.dev/latest/concepts/pydantic_settings/
"""

from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings with environment variable support.

    All settings can be overridden via environment variables with the prefix 'APP_'.
    Example: APP_LOG_LEVEL=debug
    """

    model_config = SettingsConfigDict(
        env_prefix="APP_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Application
    environment: Literal["development", "staging", "production"] = Field(
        default="development",
        description="Deployment environment",
    )
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = Field(
        default="INFO",
        description="Logging level",
    )

    # Service configuration
    service_name: str = Field(
        default="pyme-dashboard",
        description="Service identifier for metrics and logs",
    )
    service_version: str = Field(
        default="0.1.0",
        description="Service version",
    )

    # Reporting
    reporting_timezone: str = Field(
        default="America/Santiago",
        description="IANA timezone used to bucket documents into calendar days/months",
    )

    # Persistence configuration
    repository_backend: Literal["memory", "sql"] = Field(
        default="memory",
        description="Persistence backend: memory (process-local), sql (SQLAlchemy database)",
    )
    database_url: str = Field(
        default="sqlite:///./dashboard.db",
        description="SQLAlchemy database URL (for repository_backend='sql')",
    )

    # Order entry
    order_number_prefix: str = Field(
        default="COT-",
        description="Prefix for generated sales quotation numbers",
    )
    session_file: str = Field(
        default=".session.json",
        description="File where the session context is persisted between runs",
    )

    # Projection provider configuration
    projection_provider: Literal["openai", "ollama", "local"] = Field(
        default="openai",
        description=(
            "Projection provider: openai (cloud API), ollama (self-hosted LLM), "
            "local (deterministic growth model)"
        ),
    )
    openai_model: str = Field(
        default="gpt-4o-mini",
        description="OpenAI model used for projections and narratives",
    )
    ollama_base_url: str = Field(
        default="http://localhost:11434",
        description="Ollama server base URL",
    )
    ollama_model: str = Field(
        default="qwen2.5:7b",
        description="Ollama model to use for projections (e.g., qwen2.5:7b, llama3.1:8b)",
    )
    projection_growth_rate: float = Field(
        default=0.10,
        ge=-1.0,
        le=10.0,
        description="Per-period growth used by the deterministic projection fallback",
    )


def get_settings() -> Settings:
    """Factory function to get settings instance.

    Returns:
        Configured Settings instance
    """
    return Settings()
