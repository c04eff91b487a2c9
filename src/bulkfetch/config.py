"""
bulkfetch Configuration Module

Centralized configuration management using Pydantic Settings.
Supports environment variables and .env files.
"""

from functools import lru_cache
from typing import Literal

from pydantic import Field, SecretStr
from pydantic_settings import BaseSettings, SettingsConfigDict


class AppSettings(BaseSettings):
    """Main application settings."""

    model_config = SettingsConfigDict(
        env_prefix="BULKFETCH_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    env: Literal["development", "staging", "production"] = "development"
    log_level: str = "INFO"
    log_json: bool = True
    redact_identifiers: bool = True


class SourceClientSettings(BaseSettings):
    """Claims source (Blue Button / BFD) client settings."""

    model_config = SettingsConfigDict(
        env_prefix="BFD_",
        env_file=".env",
        extra="ignore",
    )

    server_base_url: str = "http://localhost:8083/v1/fhir"
    timeout_seconds: float = 30.0
    verify_ssl: bool = True

    # Page size requested for Coverage and ExplanationOfBenefit searches
    resources_count: int = Field(default=100, ge=1)
    exclude_samhsa: bool = True

    # Identifier hashing (PBKDF2-HMAC-SHA256); pepper is hex encoded
    hash_pepper: SecretStr | None = None
    hash_iterations: int = Field(default=1000, ge=1)


class OperationsSettings(BaseSettings):
    """Aggregation operations settings."""

    model_config = SettingsConfigDict(
        env_prefix="AGGREGATION_",
        env_file=".env",
        extra="ignore",
    )

    retry_count: int = Field(default=3, ge=1)
    retry_initial_wait_seconds: float = Field(default=1.0, ge=0)
    retry_max_wait_seconds: float = Field(default=10.0, ge=0)
    max_concurrent_fetches: int = Field(default=10, ge=1)


class Settings:
    """
    Aggregated settings container.

    Usage:
        from bulkfetch.config import get_settings
        settings = get_settings()
        print(settings.operations.retry_count)
        print(settings.source.server_base_url)
    """

    def __init__(self):
        self.app = AppSettings()
        self.source = SourceClientSettings()
        self.operations = OperationsSettings()


@lru_cache()
def get_settings() -> Settings:
    """
    Get cached settings instance.

    Returns:
        Settings: The application settings
    """
    return Settings()
