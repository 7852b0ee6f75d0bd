# bakersdozen/config/settings.py
"""
Application configuration using pydantic-settings (pydantic v2 style).

This centralizes environment-driven configuration. Prefer reading values
from environment variables; do not rely on os.getenv inline defaults which
can silently hide missing configuration.
"""
from __future__ import annotations

import logging
from typing import Optional

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger(__name__)


class Settings(BaseSettings):
    """
    Application configuration loaded from environment.

    Relevant environment variables:
      - SUPABASE_URL
      - SUPABASE_ANON_KEY
      - CACHE_DIR
      - CACHE_PREFIX
      - CACHE_VERSION
      - CONNECTION_CHECK_INTERVAL
      - REQUEST_TIMEOUT
      - SITE_URL
      - LOG_LEVEL
    """

    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    # Supabase
    supabase_url: Optional[str] = Field(default=None)
    supabase_anon_key: Optional[str] = Field(default=None)

    # Offline cache. No directory -> in-memory storage only.
    cache_dir: Optional[str] = Field(default=None)
    cache_prefix: str = Field(default="bakersDozen_")
    cache_version: str = Field(default="1.0.0")

    # Connection monitoring / request bounds (seconds)
    connection_check_interval: float = Field(default=30.0, gt=0)
    request_timeout: float = Field(default=10.0, gt=0)

    # Used to build password reset redirects
    site_url: str = Field(default="http://localhost:5173")

    log_level: str = Field(default="INFO")

    # --- validators / post-init checks ---
    @field_validator("supabase_url", "supabase_anon_key")
    @classmethod
    def maybe_strip(cls, v: Optional[str]) -> Optional[str]:
        if v is None:
            return None
        return v.strip()

    @field_validator("site_url")
    @classmethod
    def strip_trailing_slash(cls, v: str) -> str:
        return v.rstrip("/")

    def model_post_init(self, __context) -> None:  # pydantic v2 hooks
        """
        Surface missing backend configuration early. Startup is not halted:
        the client wrapper stays unconfigured and calls fail on first use.
        """
        if not self.supabase_url or not self.supabase_anon_key:
            logger.error(
                "Missing Supabase environment variables. "
                "Set SUPABASE_URL and SUPABASE_ANON_KEY to enable the backend."
            )
        if not self.cache_dir:
            logger.info("CACHE_DIR not set. Offline cache will be kept in memory.")


# single exporter
settings = Settings()
