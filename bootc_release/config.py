"""Configuration settings for bootc_release.

Uses pydantic-settings for config parsing from environment variables
and defaults. Configuration precedence: CLI flags > env vars > defaults.
"""

from pathlib import Path
from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


def _default_db_url() -> str:
    """Return the default database URL (SQLite)."""
    db_path = Path.home() / ".local" / "share" / "bootc-release" / "releases.sqlite"
    return f"sqlite:///{db_path}"


class Settings(BaseSettings):
    """Application settings.

    Settings are loaded from environment variables with the BOOTC_RELEASE_
    prefix. CLI flags can override these at runtime.
    """

    model_config = SettingsConfigDict(
        env_prefix="BOOTC_RELEASE_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # External tools
    container_engine: str = Field(
        default="podman",
        description="Container engine used to build, inspect and push images",
    )
    signer: str = Field(
        default="cosign",
        description="Image signing tool",
    )
    sbom_scanner: Literal["trivy", "syft"] = Field(
        default="trivy",
        description="Scanner used to generate SBOM documents",
    )
    disk_builder_image: str = Field(
        default="quay.io/centos-bootc/bootc-image-builder:latest",
        description="Container image of the disk conversion tool",
    )
    container_storage: Path = Field(
        default=Path("/var/lib/containers/storage"),
        description="Local container storage mounted into the disk conversion tool",
    )

    # Persistence
    db_url: str = Field(
        default_factory=_default_db_url,
        description="Database connection URL for release history",
    )
    manifest_name: str = Field(
        default="manifest.json",
        description="File name of the release manifest inside the output directory",
    )

    # Operational
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = Field(
        default="INFO",
        description="Logging level",
    )

    # Timeouts (in seconds)
    build_timeout: int = Field(
        default=3600,
        ge=60,
        description="Timeout for container builds",
    )
    disk_timeout: int = Field(
        default=3600,
        ge=60,
        description="Timeout for disk image conversion",
    )
    command_timeout: int = Field(
        default=1800,
        ge=10,
        description="Timeout for push, sign, scan and other tool invocations",
    )


def get_settings() -> Settings:
    """Load application settings from the environment.

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
