"""Configuration settings for bootimage.

Uses pydantic-settings for config parsing from environment variables
and defaults. Configuration precedence: CLI flags > env vars > defaults.
"""

from pathlib import Path
from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


def _default_build_dir() -> Path:
    """Return the default build directory."""
    return Path.cwd() / "target" / "qemu-image"


class Settings(BaseSettings):
    """Application settings.

    Settings are loaded from environment variables with the BOOTIMG_ prefix.
    CLI flags can override these at runtime.
    """

    model_config = SettingsConfigDict(
        env_prefix="BOOTIMG_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Paths
    build_dir: Path = Field(
        default_factory=_default_build_dir,
        description="Scratch directory for a build (tree, archive, manifest)",
    )
    cache_dir: Path | None = Field(
        default=None,
        description="Artifact cache directory (defaults to <build_dir>/cache)",
    )

    # Operational modes
    offline: bool = Field(
        default=False,
        description="Offline mode - never fetch remote artifacts",
    )
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = Field(
        default="INFO",
        description="Logging level",
    )

    # Concurrency
    max_concurrent_downloads: int = Field(
        default=2,
        ge=1,
        le=10,
        description="Maximum concurrent artifact downloads",
    )

    # Timeouts (in seconds)
    download_timeout: int = Field(
        default=600,
        ge=10,
        description="Timeout for a single artifact download",
    )
    compile_timeout: int = Field(
        default=3600,
        ge=60,
        description="Timeout for the init compile step",
    )

    @property
    def effective_cache_dir(self) -> Path:
        """Artifact cache directory after applying the build_dir default."""
        return self.cache_dir if self.cache_dir is not None else self.build_dir / "cache"


def get_settings() -> Settings:
    """Get the application settings singleton.

    Returns:
        Settings instance loaded from environment.
    """
    return Settings()


def print_settings_json(settings: Settings | None = None) -> str:
    """Render effective settings as JSON.

    Args:
        settings: Optional settings instance; uses default if not provided.

    Returns:
        JSON string of effective settings.
    """
    if settings is None:
        settings = get_settings()
    return settings.model_dump_json(indent=2)


__all__ = ["Settings", "get_settings", "print_settings_json"]
