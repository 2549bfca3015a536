"""
core/config.py -- Centralized application configuration via pydantic-settings.

All environment variable reads for the metaverse server happen here. No module
should call os.getenv() or os.environ.get() directly -- import get_settings()
instead.

Design patterns used:
  Singleton via lru_cache: get_settings() instantiates Settings once at first
      call and returns the cached instance on every subsequent call. This is
      the official FastAPI dependency injection pattern for config.

  BaseSettings (pydantic-settings): Reads values from environment variables
      and an optional .env file automatically. Field names map to env var names
      (e.g. owner_token_expire_hours -> OWNER_TOKEN_EXPIRE_HOURS).

  @model_validator(mode="after"): Runs cross-field validation after all fields
      are resolved from environment. Numeric policy values (heartbeat timeout,
      token lifetimes, sweep period) must be positive or startup fails.

Layer rule: core/ is the kernel. This module may not import from api/, auth/,
or entities/.
"""

import logging
from functools import lru_cache
from pathlib import Path

from pydantic import model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger("metaverse.config")

_DEFAULT_DB_URL = f"sqlite+aiosqlite:///{Path(__file__).parent.parent / 'metaverse.db'}"


class Settings(BaseSettings):
    """Application settings loaded from environment variables and .env file.

    All fields have defaults so Settings() can be instantiated in test
    environments without a real .env file.
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
    database_url: str = _DEFAULT_DB_URL
    server_version: str = "0.1.0"

    # ------------------------------------------------------------------
    # Accounts
    # ------------------------------------------------------------------

    # An account whose last heartbeat is older than this is reported offline.
    heartbeat_seconds_until_offline: int = 5 * 60

    # ------------------------------------------------------------------
    # Tokens
    # ------------------------------------------------------------------

    # Default lifetimes used when a token is created with expire_hours=0.
    # Domain-scope tokens live much longer: domain servers run unattended.
    owner_token_expire_hours: int = 24 * 7
    domain_token_expire_hours: int = 24 * 365
    token_sweep_interval_seconds: int = 5 * 60

    # ------------------------------------------------------------------
    # HTTP
    # ------------------------------------------------------------------

    login_rate_limit: str = "10/minute"
    allowed_hosts: list[str] = ["*"]
    cors_origins: list[str] = []

    # ------------------------------------------------------------------
    # Validators
    # ------------------------------------------------------------------

    @model_validator(mode="after")
    def validate_policy_values(self) -> "Settings":
        """Refuse to start with non-positive timing policy values.

        A zero heartbeat threshold would report every account offline, and a
        zero default lifetime would issue tokens that are already expired.
        """
        for name in (
            "heartbeat_seconds_until_offline",
            "owner_token_expire_hours",
            "domain_token_expire_hours",
            "token_sweep_interval_seconds",
        ):
            if getattr(self, name) <= 0:
                raise ValueError(f"{name.upper()} must be a positive integer.")
        if self.debug:
            logger.warning("DEBUG is enabled. Do not run this configuration in production.")
        return self


@lru_cache
def get_settings() -> Settings:
    """Return the application Settings singleton.

    Uses lru_cache so Settings() is instantiated exactly once -- at first call.
    All modules should call get_settings() rather than constructing Settings()
    directly.

    In tests: call get_settings.cache_clear() between test cases if you need
    to inject different environment variables.
    """
    return Settings()
