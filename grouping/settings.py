"""
Process settings using pydantic-settings.

Connection details and operator defaults come from environment variables or
a .env file. Grouping constraints are not settings; they live in the config
collection (see grouping.config) and on each camp record.
"""

from __future__ import annotations

import logging
from functools import lru_cache

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger(__name__)


class Settings(BaseSettings):
    """Settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        case_sensitive=False,
    )

    # === PocketBase Configuration ===
    pocketbase_url: str = Field(
        default="http://127.0.0.1:8090",
        description="PocketBase server URL",
    )
    pocketbase_admin_email: str = Field(
        default="admin@camp.local",
        description="PocketBase superuser email used by the grouping store",
    )
    pocketbase_admin_password: str = Field(
        default="",
        description="PocketBase superuser password",
    )

    # === Operator defaults ===
    default_camp_id: str = Field(
        default="",
        description="Camp id used by the CLI when --camp is omitted",
    )
    default_actor: str = Field(
        default="cli",
        description="Recorded as triggered_by / moved_by for CLI actions",
    )
    log_level: str = Field(
        default="INFO",
        description="INFO, DEBUG or TRACE",
    )

    @field_validator("log_level", mode="after")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        v = v.upper()
        if v not in ("INFO", "DEBUG", "TRACE"):
            raise ValueError(f"Invalid LOG_LEVEL: {v}. Must be INFO, DEBUG or TRACE")
        return v

    @field_validator("pocketbase_admin_password", mode="after")
    @classmethod
    def warn_on_empty_password(cls, v: str) -> str:
        if not v:
            logger.warning("POCKETBASE_ADMIN_PASSWORD is not set; PocketBase authentication will fail")
        return v


@lru_cache
def get_settings() -> Settings:
    """Cached settings instance for the lifetime of the process."""
    return Settings()
