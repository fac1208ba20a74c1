"""
Bike Benefit Engine - Configuration

SINGLE SOURCE OF TRUTH for service configuration.

ENVIRONMENT VARIABLES:
----------------------
Required:
  SUPABASE_URL                    - Supabase project URL (https://xxx.supabase.co)
  SUPABASE_SERVICE_ROLE_KEY       - Service role key used for PostgREST/GoTrue calls

Environment control:
  ENVIRONMENT                     - dev | staging | prod (default: dev)
  LOG_LEVEL                       - DEBUG | INFO | WARNING | ERROR (default: INFO)

Bulk ingestion:
  BULK_CREATE_ALLOWED_ROLES       - Comma-separated roles allowed to upload (default: hr,admin)
  INVITE_EMAIL_UNIQUE_CONSTRAINT  - true if profile_invites.email has a unique index (default: true)

HTTP:
  HTTP_TIMEOUT_SECONDS            - Timeout for outbound Supabase calls (default: 10)
  CORS_ORIGINS                    - Comma-separated allowed origins (default: *)

Usage:
------
    from benefit_engine.config import get_settings

    settings = get_settings()
    print(settings.supabase_url)
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from functools import lru_cache
from typing import Literal

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger(__name__)

DEFAULT_ALLOWED_ROLES = ("hr", "admin")


class Settings(BaseSettings):
    """
    Application settings loaded from the environment.

    Set ENV_FILE to point at a dotenv file; os.environ always wins over it.
    """

    model_config = SettingsConfigDict(
        env_file=os.environ.get("ENV_FILE"),
        env_file_encoding="utf-8",
        case_sensitive=False,
        populate_by_name=True,
        extra="ignore",
    )

    # =========================================================================
    # SUPABASE
    # =========================================================================

    SUPABASE_URL: str = Field(
        default="",
        description="Supabase project URL (PostgREST lives under /rest/v1)",
    )
    SUPABASE_SERVICE_ROLE_KEY: str = Field(
        default="",
        description="Supabase service role key (server-side only)",
    )

    # =========================================================================
    # ENVIRONMENT CONTROL
    # =========================================================================

    ENVIRONMENT: Literal["dev", "staging", "prod"] = Field(
        default="dev",
        description="Deployment environment",
    )
    LOG_LEVEL: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = Field(
        default="INFO",
        description="Logging level",
    )

    # =========================================================================
    # BULK INGESTION
    # =========================================================================

    BULK_CREATE_ALLOWED_ROLES: str = Field(
        default=",".join(DEFAULT_ALLOWED_ROLES),
        description="Comma-separated roles allowed to run bulk invites",
    )
    INVITE_EMAIL_UNIQUE_CONSTRAINT: bool = Field(
        default=True,
        description="Whether the invite store enforces unique emails",
    )

    # =========================================================================
    # HTTP
    # =========================================================================

    HTTP_TIMEOUT_SECONDS: float = Field(default=10.0, gt=0)
    CORS_ORIGINS: str = Field(default="*")

    @field_validator("LOG_LEVEL", mode="before")
    @classmethod
    def _upper_log_level(cls, value: object) -> object:
        if isinstance(value, str):
            return value.strip().upper()
        return value

    @field_validator("SUPABASE_URL", mode="after")
    @classmethod
    def _strip_trailing_slash(cls, value: str) -> str:
        return value.strip().rstrip("/")

    # =========================================================================
    # CONVENIENCE PROPERTIES
    # =========================================================================

    @property
    def supabase_url(self) -> str:
        return self.SUPABASE_URL

    @property
    def supabase_service_role_key(self) -> str:
        return self.SUPABASE_SERVICE_ROLE_KEY

    @property
    def is_production(self) -> bool:
        return self.ENVIRONMENT == "prod"

    @property
    def allowed_roles(self) -> tuple[str, ...]:
        roles = tuple(
            role.strip().lower() for role in self.BULK_CREATE_ALLOWED_ROLES.split(",") if role.strip()
        )
        return roles or DEFAULT_ALLOWED_ROLES

    @property
    def cors_allowed_origins(self) -> list[str]:
        origins = [o.strip() for o in self.CORS_ORIGINS.split(",") if o.strip()]
        return origins or ["*"]

    def pipeline_config(self) -> "PipelineConfig":
        """Build the explicit config handed to the ingestion pipeline."""
        return PipelineConfig(
            supabase_url=self.supabase_url,
            service_key=self.supabase_service_role_key,
            allowed_roles=self.allowed_roles,
            email_unique_constraint=self.INVITE_EMAIL_UNIQUE_CONSTRAINT,
            timeout_seconds=self.HTTP_TIMEOUT_SECONDS,
        )


@dataclass(frozen=True, slots=True)
class PipelineConfig:
    """Everything the store clients and the bulk pipeline need to run."""

    supabase_url: str
    service_key: str
    allowed_roles: tuple[str, ...] = DEFAULT_ALLOWED_ROLES
    email_unique_constraint: bool = True
    timeout_seconds: float = 10.0


# =========================================================================
# SINGLETON & FACTORY
# =========================================================================


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """
    Get cached settings instance.

    Uses lru_cache to ensure settings are only loaded once.
    """
    return Settings()


def reset_settings() -> None:
    """Clear the cached settings (for testing)."""
    get_settings.cache_clear()


# =========================================================================
# LOGGING CONFIGURATION
# =========================================================================


def configure_logging(settings: Settings | None = None) -> None:
    """
    Configure application logging based on settings.

    In production, uses structured JSON logging for observability.
    In development, uses console output.
    """
    if settings is None:
        settings = get_settings()

    from .core.logging import configure_structured_logging

    configure_structured_logging(
        level=settings.LOG_LEVEL,
        json_output=settings.is_production,
        service_name="benefit-engine",
    )

    # Quiet noisy loggers
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)


def validate_required_env(settings: Settings | None = None) -> list[str]:
    """
    Return the names of required settings that are missing.

    Logs a warning per missing key; the app still boots so /health answers.
    """
    if settings is None:
        settings = get_settings()

    missing = [
        name
        for name, value in {
            "SUPABASE_URL": settings.SUPABASE_URL,
            "SUPABASE_SERVICE_ROLE_KEY": settings.SUPABASE_SERVICE_ROLE_KEY,
        }.items()
        if not value
    ]
    for name in missing:
        logger.warning("Missing required environment variable: %s", name)
    return missing
