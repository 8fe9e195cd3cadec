"""
core/config.py -- Centralized configuration via pydantic-settings.

Every environment variable read for pkgdrift happens here. Field names map to
PKGDRIFT_-prefixed variables (e.g. http_timeout -> PKGDRIFT_HTTP_TIMEOUT) and
may also come from a local .env file.
"""

import logging
from functools import lru_cache

from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from .select import DEFAULT_LEGACY_CHANNEL_MARKER, LegacyChannelPolicy

logger = logging.getLogger("pkgdrift.config")


class Settings(BaseSettings):
    """Application settings loaded from environment variables and .env file.

    All fields have defaults so Settings() works in tests without any
    environment.
    """

    model_config = SettingsConfigDict(
        env_prefix="PKGDRIFT_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # ------------------------------------------------------------------
    # Registries
    # ------------------------------------------------------------------

    npm_registry_url: str = "https://registry.npmjs.org/"
    nuget_registry_url: str = "https://api.nuget.org/v3/registration5-gz-semver2/"
    user_agent: str = "pkgdrift/0.1"

    # Per HTTP call, not per refresh run.
    http_timeout: float = 30.0
    max_concurrency: int = 8

    # ------------------------------------------------------------------
    # Selection
    # ------------------------------------------------------------------

    # Empty string disables the legacy compatibility channel handling.
    legacy_channel_marker: str = DEFAULT_LEGACY_CHANNEL_MARKER

    debug: bool = False

    @field_validator("max_concurrency")
    @classmethod
    def validate_max_concurrency(cls, value: int) -> int:
        if value < 1:
            logger.warning("max_concurrency=%s is not usable, falling back to 1", value)
            return 1
        return value

    @property
    def legacy_channel_policy(self) -> LegacyChannelPolicy:
        return LegacyChannelPolicy(marker=self.legacy_channel_marker or None)


@lru_cache
def get_settings() -> Settings:
    """Return the process-wide Settings instance, built on first call."""
    return Settings()
