"""Configuration settings for releasebot.

Uses pydantic-settings for config parsing from environment variables
and defaults. Configuration precedence: CLI flags > env vars > defaults.
"""

from pathlib import Path
from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


def _default_cache_dir() -> Path:
    """Return the default layer cache directory."""
    return Path.home() / ".cache" / "releasebot" / "layers"


def _default_artifacts_dir() -> Path:
    """Return the default directory for published artifacts."""
    return Path.home() / ".local" / "share" / "releasebot" / "artifacts"


def _default_work_dir() -> Path:
    """Return the default directory for per-job build workspaces."""
    return Path.home() / ".cache" / "releasebot" / "work"


def _default_db_url() -> str:
    """Return the default database URL (SQLite)."""
    db_path = Path.home() / ".local" / "share" / "releasebot" / "cache.sqlite"
    return f"sqlite:///{db_path}"


class Settings(BaseSettings):
    """Application settings.

    Settings are loaded from environment variables with the RELEASEBOT_ prefix.
    CLI flags can override these at runtime.
    """

    model_config = SettingsConfigDict(
        env_prefix="RELEASEBOT_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Inputs
    matrix_file: Path = Field(
        default=Path("releasebot.yaml"),
        description="Platform matrix declaration (YAML or JSON)",
    )
    source_root: Path = Field(
        default=Path("."),
        description="Root of the checked-out source tree",
    )
    revision: str | None = Field(
        default=None,
        description="Source revision override (resolved from git if not set)",
    )

    # Paths
    cache_dir: Path = Field(
        default_factory=_default_cache_dir,
        description="Root directory for cached image layers",
    )
    artifacts_dir: Path = Field(
        default_factory=_default_artifacts_dir,
        description="Root directory for published artifacts and run reports",
    )
    work_dir: Path = Field(
        default_factory=_default_work_dir,
        description="Root directory for per-job build workspaces and logs",
    )
    db_url: str = Field(
        default_factory=_default_db_url,
        description="Database connection URL for the cache index",
    )

    # Container runtime
    container_binary: str = Field(
        default="docker",
        description="Container runtime CLI executable",
    )

    # Operational
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = Field(
        default="INFO",
        description="Logging level",
    )
    log_tail_lines: int = Field(
        default=40,
        ge=1,
        le=1000,
        description="Number of log lines attached to a failed job's diagnostic",
    )

    # Concurrency
    max_concurrent_builds: int = Field(
        default=2,
        ge=1,
        le=32,
        description="Maximum platform builds running at once",
    )

    # Timeouts (in seconds)
    build_timeout: int = Field(
        default=3600,
        ge=1,
        description="Wall-clock limit for one platform build",
    )
    publish_timeout: int = Field(
        default=600,
        ge=1,
        description="Timeout for one artifact upload",
    )

    # Publishing
    publish_url: str | None = Field(
        default=None,
        description="Base URL for HTTP artifact uploads (local directory if unset)",
    )
    publish_token: str | None = Field(
        default=None,
        description="Bearer token for HTTP artifact uploads",
    )


def get_settings() -> Settings:
    """Get the application settings.

    Returns:
        Settings instance loaded from environment.
    """
    return Settings()


def print_settings_json(settings: Settings | None = None) -> str:
    """Render effective settings as JSON.

    The publish token is omitted.

    Args:
        settings: Optional settings instance; uses default if not provided.

    Returns:
        JSON string of effective settings.
    """
    if settings is None:
        settings = get_settings()
    return settings.model_dump_json(
        indent=2,
        exclude={"publish_token"},
    )


__all__ = ["Settings", "get_settings", "print_settings_json"]
