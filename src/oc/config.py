"""
Configuration management using pydantic-settings.

Loads configuration from environment variables and .env files.
Validates ranges and provides typed access to settings.
"""

from __future__ import annotations

from functools import lru_cache
from pathlib import Path
from typing import Literal

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

ONE_WEEK_MS = 7 * 24 * 60 * 60 * 1000


class Settings(BaseSettings):
    """Application settings loaded from environment variables.

    Reclamation:
        MAX_IDLE_MS: Idle time after which an object expires (<=0 never expires)
        MAX_SIZE_BYTES: Total size budget for stored blobs (<=0 no size eviction)
        DELETE_CONCURRENCY: Maximum deletions in flight within one cycle
        DELETE_BATCH_SIZE: Expired keys gathered before a deletion batch runs
        CYCLE_TIMEOUT_SECONDS: Deadline for one cycle (<=0 no deadline)
        SWEEP_INTERVAL_SECONDS: In-process scheduler period (<=0 disabled)

    Storage:
        CACHE_DIR: Directory holding blob files and the index database
        LIST_PAGE_SIZE: Page size used when listing stores

    Gateway:
        HOST, PORT: Bind address for `oc serve`
        LOG_LEVEL: Logging level
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Reclamation policy
    MAX_IDLE_MS: int = Field(
        default=ONE_WEEK_MS,
        description="Milliseconds without access before an object expires",
    )
    MAX_SIZE_BYTES: int = Field(
        default=0, description="Total blob size budget in bytes"
    )

    # Cycle execution
    DELETE_CONCURRENCY: int = Field(
        default=8, ge=1, le=64, description="Maximum concurrent deletions per cycle"
    )
    DELETE_BATCH_SIZE: int = Field(
        default=100, ge=1, description="Expired keys per deletion batch"
    )
    CYCLE_TIMEOUT_SECONDS: float = Field(
        default=0.0, description="Deadline for one reclamation cycle"
    )
    SWEEP_INTERVAL_SECONDS: float = Field(
        default=3600.0, description="Seconds between scheduled cycles"
    )

    # Storage
    CACHE_DIR: Path = Field(default=Path(".cache"), description="Cache directory")
    LIST_PAGE_SIZE: int = Field(
        default=1000, ge=1, le=10000, description="Store listing page size"
    )

    # Gateway
    HOST: str = Field(default="127.0.0.1", description="Gateway bind host")
    PORT: int = Field(default=8787, ge=1, le=65535, description="Gateway bind port")

    # Logging
    LOG_LEVEL: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = Field(
        default="INFO", description="Logging level"
    )
    LOG_FILE: Path | None = Field(default=None, description="JSON lines log file")

    @field_validator("LOG_LEVEL", mode="before")
    @classmethod
    def normalize_log_level(cls, v: object) -> object:
        """Accept lowercase level names."""
        if isinstance(v, str):
            return v.strip().upper()
        return v

    @property
    def expiration_enabled(self) -> bool:
        return self.MAX_IDLE_MS > 0

    @property
    def size_eviction_enabled(self) -> bool:
        return self.MAX_SIZE_BYTES > 0

    @property
    def cycle_timeout(self) -> float | None:
        """Cycle deadline in seconds, or None when unbounded."""
        return self.CYCLE_TIMEOUT_SECONDS if self.CYCLE_TIMEOUT_SECONDS > 0 else None

    @property
    def blobs_dir(self) -> Path:
        return self.CACHE_DIR / "blobs"

    @property
    def index_db_path(self) -> Path:
        return self.CACHE_DIR / "index.db"

    def ensure_directories(self) -> None:
        """Create cache directories if they don't exist."""
        self.CACHE_DIR.mkdir(parents=True, exist_ok=True)
        self.blobs_dir.mkdir(parents=True, exist_ok=True)

    def redacted_display(self) -> dict[str, str | int | float | None]:
        """Return settings for display."""
        return {
            "CACHE_DIR": str(self.CACHE_DIR),
            "MAX_IDLE_MS": self.MAX_IDLE_MS,
            "MAX_SIZE_BYTES": self.MAX_SIZE_BYTES,
            "DELETE_CONCURRENCY": self.DELETE_CONCURRENCY,
            "DELETE_BATCH_SIZE": self.DELETE_BATCH_SIZE,
            "CYCLE_TIMEOUT_SECONDS": self.CYCLE_TIMEOUT_SECONDS,
            "SWEEP_INTERVAL_SECONDS": self.SWEEP_INTERVAL_SECONDS,
            "LIST_PAGE_SIZE": self.LIST_PAGE_SIZE,
            "HOST": self.HOST,
            "PORT": self.PORT,
            "LOG_LEVEL": self.LOG_LEVEL,
            "LOG_FILE": str(self.LOG_FILE) if self.LOG_FILE else None,
        }


@lru_cache
def get_settings() -> Settings:
    """Get cached settings singleton.

    Returns:
        Settings instance loaded from environment.

    Raises:
        ValidationError: If settings are invalid.
    """
    return Settings()


def clear_settings_cache() -> None:
    """Clear the settings cache (useful for testing)."""
    get_settings.cache_clear()
