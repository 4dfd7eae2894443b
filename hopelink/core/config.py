from __future__ import annotations

from functools import lru_cache
from typing import Literal, Optional

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Service settings loaded from environment variables and .env file.

    Matching weights and thresholds are NOT read from here: they live in the
    ``matching_parameters`` table and are edited by admins at runtime. This
    class only carries process-level knobs.
    """

    # App basics
    ENV: Literal["development", "staging", "production"] = "development"
    """Environment mode: affects logging and destructive DB commands."""

    DEBUG: bool = True
    """Enable debug mode: per-candidate score logging."""

    # DB
    DATABASE_URL: Optional[str] = None
    """Database connection URL. If None, uses a local SQLite file."""

    TEST_DATABASE_URL: Optional[str] = None
    """Test database URL. Separate from main DB for testing."""

    # Matching
    MATCHING_CONTEXT: str = "DONOR_RECIPIENT_VOLUNTEER"
    """Parameter group used when a caller does not name one."""

    PARAMETERS_CACHE_TTL_SECONDS: float = 300.0
    """How long a loaded parameter record is served before re-reading it."""

    RECOMMENDATION_LIMIT: int = 5
    """Default number of counterparts returned per recommendation subject."""

    MAX_RECOMMENDATION_SUBJECTS: int = 3
    """How many of a user's own requests/donations get recommendations."""

    # Model config
    model_config = SettingsConfigDict(
        env_file=".env", env_file_encoding="utf-8", extra="ignore"
    )


DEFAULT_DATABASE_URL = "sqlite+aiosqlite:///./hopelink.db"


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Return a cached Settings instance to avoid re-parsing .env repeatedly."""
    return Settings()
