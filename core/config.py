"""
core/config.py -- Centralized application configuration via pydantic-settings.

All environment variable reads for Marquee happen here. No module should
call os.getenv() or os.environ.get() directly -- import get_settings() instead.

Design patterns used:
  Singleton via lru_cache: get_settings() instantiates Settings once at first
      call and returns the cached instance on every subsequent call.

  BaseSettings (pydantic-settings): Reads values from environment variables
      and an optional .env file automatically. Field names map to env var names
      (e.g. database_url -> DATABASE_URL). Type coercion and validation are built in.

  @model_validator(mode="after"): Runs cross-field validation after all fields
      are resolved from environment. Dev mode (DEBUG=true) falls back to a local
      SQLite database with a warning; production mode refuses to start without
      an explicit DATABASE_URL.

Layer rule: core/ is the kernel. This module may not import from api/,
auth/, or catalog/.
"""

import logging
from functools import lru_cache
from pathlib import Path

from pydantic import model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger("marquee.config")

_DEV_DB_URL = f"sqlite:///{Path(__file__).resolve().parent.parent / 'marquee_dev.db'}"


class Settings(BaseSettings):
    """Application settings loaded from environment variables and .env file.

    All fields have defaults so Settings() can be instantiated in test
    environments without a real .env file. The model_validator enforces
    production-safety rules at startup.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # ------------------------------------------------------------------
    # Core
    # ------------------------------------------------------------------

    debug: bool = False
    env: str = "development"  # "development" | "staging" | "production"
    version: str = "1.0.0"

    # ------------------------------------------------------------------
    # Database
    # ------------------------------------------------------------------

    # Empty string is the sentinel for "not configured". The model_validator
    # below either falls back to the dev database or raises.
    database_url: str = ""
    # Per-statement driver timeout. Bounds every store call issued by a request.
    db_timeout_seconds: float = 3.0
    # Whole-request deadline enforced by the deadline middleware.
    request_timeout_seconds: float = 10.0

    # ------------------------------------------------------------------
    # Tokens
    # ------------------------------------------------------------------

    activation_token_ttl_seconds: int = 3 * 24 * 3600
    authentication_token_ttl_seconds: int = 24 * 3600

    # ------------------------------------------------------------------
    # SMTP (empty host disables delivery)
    # ------------------------------------------------------------------

    smtp_host: str = ""
    smtp_port: int = 587
    smtp_username: str = ""
    smtp_password: str = ""
    smtp_sender: str = "Marquee <no-reply@marquee.local>"

    # ------------------------------------------------------------------
    # HTTP
    # ------------------------------------------------------------------

    cors_trusted_origins: list[str] = []
    allowed_hosts: list[str] = ["*"]

    # ------------------------------------------------------------------
    # Rate limiting
    # ------------------------------------------------------------------

    rate_limit_enabled: bool = True
    register_rate_limit: str = "10/minute"
    activate_rate_limit: str = "10/minute"

    # ------------------------------------------------------------------
    # Background work
    # ------------------------------------------------------------------

    background_workers: int = 4

    # ------------------------------------------------------------------
    # Validators
    # ------------------------------------------------------------------

    @model_validator(mode="after")
    def validate_runtime_policy(self) -> "Settings":
        """Enforce database and timeout policy.

        Dev mode (DEBUG=true): missing DATABASE_URL falls back to a SQLite file
            next to the project root, with a warning.

        Production mode (DEBUG=false or not set): refuse to start without
            DATABASE_URL.

        Both modes: timeouts and pool sizes must be positive.
        """
        if not self.database_url:
            if self.debug:
                self.database_url = _DEV_DB_URL
                logger.warning("WARNING: DATABASE_URL not set, using local SQLite database %s", _DEV_DB_URL)
            else:
                raise ValueError(
                    "DATABASE_URL is required in production mode. "
                    "Set DATABASE_URL in your environment or .env file. "
                    "To run in development mode, set DEBUG=true."
                )
        if self.db_timeout_seconds <= 0 or self.request_timeout_seconds <= 0:
            raise ValueError("DB_TIMEOUT_SECONDS and REQUEST_TIMEOUT_SECONDS must be positive.")
        if self.background_workers < 1:
            raise ValueError("BACKGROUND_WORKERS must be at least 1.")
        if not self.smtp_host:
            logger.warning("SMTP_HOST not set -- outgoing mail is disabled")
        return self


@lru_cache
def get_settings() -> Settings:
    """Return the application Settings singleton.

    In tests: call get_settings.cache_clear() between test cases if you need
    to inject different environment variables.
    """
    return Settings()
