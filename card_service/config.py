"""
Configuration and settings for the card content service.
"""

from __future__ import annotations

from functools import lru_cache
from typing import Optional

from pydantic import AliasChoices, Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Environment-backed settings for the FastAPI service."""

    model_config = SettingsConfigDict(
        env_file=".env", env_file_encoding="utf-8", extra="ignore"
    )

    api_prefix: str = Field(default="")

    # Database (Postgres expected, any SQLAlchemy URL works)
    database_url: Optional[str] = Field(default=None)

    # Elevated credential callers must present as a bearer token
    service_role_key: Optional[str] = Field(
        default=None,
        validation_alias=AliasChoices(
            "service_role_key", "SERVICE_ROLE_KEY", "SUPABASE_SERVICE_ROLE_KEY"
        ),
    )

    # Tag written to every audit row
    update_source: str = Field(default="service")

    log_level: str = Field(default="INFO")
    cors_allow_origins: list[str] = Field(default_factory=lambda: ["*"])

    # Development toggles
    use_in_memory_backends: bool = Field(default=False)


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Return cached settings instance."""
    return Settings()
