"""Release manifest recording what a pipeline run produced.

The manifest grows monotonically during one run through its mutators
(add_image, add_artifact, add_signature, set_sbom) and is persisted as
JSON at the end. There is no migration logic: SCHEMA_VERSION changes
are breaking for downstream consumers.
"""

from __future__ import annotations

import json
import logging
from datetime import datetime, timezone
from pathlib import Path

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from bootc_release.errors import ManifestError
from bootc_release.release.version import VersionInfo

logger = logging.getLogger(__name__)

SCHEMA_VERSION = "1.0.0"


class ImageRecord(BaseModel):
    """A built image.

    The digest is empty when the post-build lookup failed.
    """

    model_config = ConfigDict(frozen=True)

    name: str
    tag: str
    digest: str = ""
    size: int = 0
    variant: str


class SBOMDescriptor(BaseModel):
    """Location and format of the generated SBOM."""

    format: str
    location: str
    algorithm: str | None = None
    hash: str | None = None


class ReleaseManifest(BaseModel):
    """Durable record of one pipeline run.

    Attributes:
        schema_version: Manifest format version.
        generated_at: Creation timestamp.
        project: Project name.
        version: Version information of the build.
        images: Built images, in build order.
        artifacts: Paths of additional produced artifacts.
        sbom: SBOM descriptor, if one was generated.
        signatures: Signature references.
    """

    schema_version: str = SCHEMA_VERSION
    generated_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    project: str
    version: VersionInfo
    images: list[ImageRecord] = Field(default_factory=list)
    artifacts: list[str] = Field(default_factory=list)
    sbom: SBOMDescriptor | None = None
    signatures: list[str] = Field(default_factory=list)

    @classmethod
    def create(cls, project: str, version: VersionInfo) -> ReleaseManifest:
        """Create an empty manifest for a project and version."""
        return cls(project=project, version=version)

    def add_image(
        self,
        name: str,
        tag: str,
        digest: str,
        variant: str,
        size: int = 0,
    ) -> ImageRecord:
        """Append a built image."""
        image = ImageRecord(name=name, tag=tag, digest=digest, size=size, variant=variant)
        self.images.append(image)
        return image

    def add_artifact(self, path: str) -> None:
        """Append a produced artifact path."""
        self.artifacts.append(path)

    def add_signature(self, ref: str) -> None:
        """Append a signature reference."""
        self.signatures.append(ref)

    def set_sbom(self, format: str, location: str) -> None:
        """Record the generated SBOM."""
        self.sbom = SBOMDescriptor(format=format, location=location)

    def to_json(self) -> str:
        """Serialize to JSON, omitting empty optional sections."""
        data = self.model_dump(mode="json", exclude_none=True)
        for key in ("artifacts", "signatures"):
            if not data[key]:
                del data[key]
        return json.dumps(data, indent=2)

    def save(self, path: Path) -> Path:
        """Write the manifest to a JSON file, creating parent directories.

        Raises:
            ManifestError: If the file cannot be written.
        """
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            path.write_text(self.to_json() + "\n", encoding="utf-8")
        except OSError as e:
            raise ManifestError(f"writing manifest {path}: {e}") from e
        logger.info("Wrote manifest to %s", path)
        return path

    @classmethod
    def load(cls, path: Path) -> ReleaseManifest:
        """Load a manifest from a JSON file.

        Raises:
            ManifestError: If the file cannot be read or parsed.
        """
        try:
            raw = path.read_text(encoding="utf-8")
        except OSError as e:
            raise ManifestError(f"reading manifest {path}: {e}") from e
        try:
            return cls.model_validate_json(raw)
        except ValidationError as e:
            raise ManifestError(f"parsing manifest {path}: {e}") from e


__all__ = ["SCHEMA_VERSION", "ImageRecord", "ReleaseManifest", "SBOMDescriptor"]
