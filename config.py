"""
Configuration settings for the helix session scheduler.

Uses Pydantic Settings for environment variable management with .env file support.
Scheduler tuning (pacing, spike sensitivity, Fibonacci cap, ...) lives in
helix.core.learning_config; this module only carries the service-level knobs
and where to find learning-config overrides.
"""
from __future__ import annotations

from functools import lru_cache
from pathlib import Path
from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # ========================================
    # Database
    # ========================================
    database_url: str = Field(
        default="sqlite:///data/helix.db",
        description="SQLAlchemy connection string for learner progress",
    )
    persistence_retry_attempts: int = Field(
        default=3,
        ge=1,
        description="Attempts for a cycle write before giving up on conflicts",
    )
    persistence_retry_backoff_ms: int = Field(
        default=50,
        ge=0,
        description="Initial backoff between conflicting writes (doubles per attempt)",
    )

    # ========================================
    # Content Graph
    # ========================================
    content_dir: Path = Field(
        default=Path("data/courses"),
        description="Directory holding <course_code>.json course graphs",
    )

    # ========================================
    # Learning Configuration
    # ========================================
    pacing_mode: Literal["normal_mode", "turbo_boost"] = Field(
        default="normal_mode",
        description="Pacing preset applied on top of the global defaults",
    )
    learning_config_path: Path | None = Field(
        default=None,
        description="Optional JSON file with global learning-config overrides",
    )
    course_overrides_path: Path | None = Field(
        default=None,
        description="Optional JSON file mapping course_code -> learning-config overrides",
    )

    # ========================================
    # Logging
    # ========================================
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = Field(
        default="INFO",
        description="Logging verbosity level",
    )
    log_file: str | None = Field(
        default="logs/helix.log",
        description="Log file path (None for stderr only)",
    )

    # ========================================
    # Helper Methods
    # ========================================

    def is_sqlite(self) -> bool:
        """Check if the progress store is backed by SQLite."""
        return self.database_url.startswith("sqlite")


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
