"""
Configuration via environment variables (JOBCURATOR_*) or a .env file.
"""

from functools import lru_cache

from pydantic import Field
from pydantic_settings import BaseSettings

from jobcurator.fetchers.http import LivenessProber


class Settings(BaseSettings):
    """Curation settings loaded from environment variables."""

    # Storage
    db_path: str = "jobcurator.db"

    # Duplicate resolver
    similarity_threshold: float = Field(default=0.8, ge=0.0, le=1.0)
    date_window_days: int = Field(default=7, ge=0)

    # Featured refresh
    featured_limit: int = Field(default=6, ge=0)

    # Lifecycle sweeps
    max_age_days: int = Field(default=60, ge=1)
    probe_limit: int = Field(default=100, ge=0)
    restore_limit: int = Field(default=200, ge=0)
    revalidate_after_days: int = Field(default=7, ge=0)
    probe_delay_s: float = Field(default=0.5, ge=0.0)
    head_timeout_s: float = Field(default=10, gt=0)
    get_timeout_s: float = Field(default=15, gt=0)
    user_agent: str = LivenessProber.USER_AGENT

    # Logging
    log_level: str = "INFO"

    class Config:
        env_prefix = "JOBCURATOR_"
        env_file = ".env"
        extra = "ignore"


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
