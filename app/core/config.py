"""
Configuration Management

Centralized configuration using Pydantic Settings.

Every field can be overridden with a QUERYGATE_ prefixed environment
variable (or a .env file), e.g. QUERYGATE_MAX_SQL_LENGTH=8000.
"""

from typing import List

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings."""

    model_config = SettingsConfigDict(
        env_prefix="QUERYGATE_",
        env_file=".env",
        case_sensitive=False,
        extra="ignore",
    )

    # Application
    app_name: str = "QueryGate"
    app_version: str = "1.0.0"
    log_level: str = "INFO"

    # Query safety
    max_sql_length: int = Field(default=5000, description="Longest SQL text accepted by the validator")
    validator_parse_check: bool = Field(default=False, description="Also require the SQL to parse as a single query")

    # Placeholder ladder
    default_limit: int = Field(default=1000, description="LIMIT used when a LIMIT placeholder is unresolved")
    default_offset: int = Field(default=0, description="OFFSET used when an OFFSET placeholder is unresolved")

    # Orchestration
    lookup_key_prefixes: List[str] = Field(
        default_factory=lambda: ["distinct-"],
        description="Query keys with these prefixes populate filter dropdowns and run unfiltered",
    )

    # Batch execution
    batch_max_queries: int = Field(default=50, description="Max queries per batch")
    batch_max_parallel: int = Field(default=8, description="Max queries executing at once")

    # Results
    result_warn_rows: int = Field(default=100_000, description="Log a warning above this many rows")


# Global settings instance
settings = Settings()
