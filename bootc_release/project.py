"""Project configuration loading and validation.

A project is described by a `bootc-release.yaml` file at the project root.
This module defines the Pydantic models for that file, YAML load/save
helpers, and the derived values (image references, version strings,
dependency references) the orchestrators rely on.
"""

from __future__ import annotations

import logging
from datetime import datetime
from pathlib import Path
from typing import Any

import yaml
from pydantic import BaseModel, ConfigDict, Field, ValidationError

from bootc_release.errors import ConfigurationError, ProjectConfigError
from bootc_release.release.version import DEFAULT_SCHEME, VersionInfo, new_info

logger = logging.getLogger(__name__)

CONFIG_FILENAME = "bootc-release.yaml"
BUILD_FILES = ("Containerfile", "Dockerfile")


class BuildSection(BaseModel):
    """Build-related settings.

    Attributes:
        base_image: Base image the build description starts from.
        os_version: Major OS version passed to the build.
        build_args: Build arguments applied to every build.
        containerfile: Build description file name, relative to the root.
        timeout: Build timeout in seconds (None = settings default).
    """

    model_config = ConfigDict(extra="forbid")

    base_image: str = "ghcr.io/ublue-os/silverblue-main"
    os_version: str = "42"
    build_args: dict[str, str] = Field(default_factory=dict)
    containerfile: str = "Containerfile"
    timeout: int | None = Field(default=None, ge=1)


class VersionSection(BaseModel):
    """Versioning scheme settings."""

    model_config = ConfigDict(extra="forbid")

    scheme: str = DEFAULT_SCHEME
    current: str | None = None


class Variant(BaseModel):
    """A named build flavor (e.g. main, nvidia)."""

    model_config = ConfigDict(extra="forbid")

    name: str = Field(min_length=1)
    description: str = ""
    flavor: str = ""
    scripts: list[str] = Field(default_factory=list)
    packages: list[str] = Field(default_factory=list)


class Dependency(BaseModel):
    """A pinned external image dependency."""

    model_config = ConfigDict(extra="forbid")

    image: str
    digest: str = ""
    tag: str = ""


def _default_variants() -> list[Variant]:
    return [
        Variant(
            name="main",
            description="Standard desktop variant",
            flavor="main",
            scripts=["10-build.sh"],
        )
    ]


class ProjectConfig(BaseModel):
    """Complete project configuration.

    Attributes:
        name: Project (and base image) name.
        description: Human-readable description.
        registry: Registry host, e.g. ghcr.io.
        repository: Repository namespace inside the registry.
        build: Build settings.
        version: Versioning settings.
        variants: Image variants.
        dependencies: Digest-pinned external images.
    """

    model_config = ConfigDict(extra="forbid")

    name: str = "bootc-image"
    description: str = "OCI-native OS appliance"
    registry: str = "ghcr.io"
    repository: str = ""
    build: BuildSection = Field(default_factory=BuildSection)
    version: VersionSection = Field(default_factory=VersionSection)
    variants: list[Variant] = Field(default_factory=_default_variants)
    dependencies: dict[str, Dependency] = Field(default_factory=dict)

    def validate_required(self) -> None:
        """Check that the fields every build needs are present.

        Raises:
            ConfigurationError: Naming the first missing field.
        """
        if not self.name:
            raise ConfigurationError("name is required")
        if not self.build.base_image:
            raise ConfigurationError("build.base_image is required")
        if not self.build.os_version:
            raise ConfigurationError("build.os_version is required")

    def image_name(self, variant: str) -> str:
        """Return the image name for a variant ("main" adds no suffix)."""
        if variant and variant != "main":
            return f"{self.name}-{variant}"
        return self.name

    def image_ref(self, variant: str, tag: str) -> str:
        """Return the full image reference for a variant and tag.

        Local-only projects (no registry or repository) build into
        localhost/ so the container engine never tries to resolve them.
        """
        name = self.image_name(variant)
        if self.registry and self.repository:
            return f"{self.registry}/{self.repository}/{name}:{tag}"
        return f"localhost/{name}:{tag}"

    def compute_version(
        self, build_number: int, now: datetime | None = None
    ) -> VersionInfo:
        """Compute version information using the configured scheme."""
        return new_info(
            self.build.os_version,
            build_number,
            scheme=self.version.scheme,
            current=self.version.current,
            now=now,
        )

    def get_variant(self, name: str) -> Variant:
        """Return a variant by name.

        Raises:
            ConfigurationError: If the variant is not defined.
        """
        for variant in self.variants:
            if variant.name == name:
                return variant
        raise ConfigurationError(f"variant {name!r} not found")

    def variant_names(self) -> list[str]:
        """Return the names of all variants."""
        return [v.name for v in self.variants]

    def dependency_ref(self, name: str) -> str:
        """Return the pinned reference of a dependency (digest preferred).

        Raises:
            ConfigurationError: If the dependency is not defined.
        """
        dep = self.dependencies.get(name)
        if dep is None:
            raise ConfigurationError(f"dependency {name!r} not found")
        if dep.digest:
            return f"{dep.image}@{dep.digest}"
        if dep.tag:
            return f"{dep.image}:{dep.tag}"
        return dep.image

    def save(self, path: Path) -> Path:
        """Write the configuration as YAML."""
        path.parent.mkdir(parents=True, exist_ok=True)
        with path.open("w", encoding="utf-8") as f:
            yaml.safe_dump(self.model_dump(), f, sort_keys=False)
        return path


def load_yaml(path: Path) -> dict[str, Any]:
    """Load a YAML file and return its contents as a dict.

    Raises:
        ProjectConfigError: If the file is not valid YAML or not a mapping.
    """
    try:
        with open(path, encoding="utf-8") as f:
            data = yaml.safe_load(f)
    except yaml.YAMLError as e:
        raise ProjectConfigError(f"parsing {path}: {e}") from e
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ProjectConfigError(
            f"Expected a YAML mapping in {path}, got {type(data).__name__}"
        )
    return data


def load_project(path: Path) -> ProjectConfig:
    """Load a project configuration file.

    A missing file yields the default configuration.

    Args:
        path: Path to bootc-release.yaml.

    Returns:
        Validated ProjectConfig.

    Raises:
        ProjectConfigError: If the file is unreadable or invalid.
    """
    if not path.exists():
        logger.debug("No project configuration at %s, using defaults", path)
        return ProjectConfig()
    try:
        return ProjectConfig.model_validate(load_yaml(path))
    except ValidationError as e:
        raise ProjectConfigError(f"invalid project configuration {path}:\n{e}") from e
    except OSError as e:
        raise ProjectConfigError(f"reading {path}: {e}") from e


def find_project_root(start: Path | None = None) -> Path:
    """Find the project root by looking for a build description file.

    Falls back to the starting directory when none is found.
    """
    origin = (start or Path.cwd()).resolve()
    for directory in (origin, *origin.parents):
        if any((directory / name).is_file() for name in BUILD_FILES):
            return directory
    return origin


def load_from_project(start: Path | None = None) -> tuple[ProjectConfig, Path]:
    """Load the configuration of the enclosing project.

    Returns:
        Tuple of (ProjectConfig, project root).
    """
    root = find_project_root(start)
    return load_project(root / CONFIG_FILENAME), root


__all__ = [
    "BUILD_FILES",
    "CONFIG_FILENAME",
    "BuildSection",
    "Dependency",
    "ProjectConfig",
    "Variant",
    "VersionSection",
    "find_project_root",
    "load_from_project",
    "load_project",
    "load_yaml",
]
