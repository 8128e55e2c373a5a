"""Version computation for image builds.

Versions follow `<majorVersion>.<YYYYMMDD>.<buildNumber>` by default.
VersionInfo values are immutable: the builder-style helpers return
updated copies, and the derived OCI labels are a pure function of the
fields.
"""

from __future__ import annotations

from datetime import datetime, timezone

from pydantic import BaseModel, ConfigDict

DEFAULT_SCHEME = "major.date.build"
SCHEMES = (DEFAULT_SCHEME, "date.build", "semver")
DEFAULT_SEMVER = "0.1.0"

LABEL_VERSION = "org.opencontainers.image.version"
LABEL_CREATED = "org.opencontainers.image.created"
LABEL_REVISION = "org.opencontainers.image.revision"
LABEL_VARIANT = "io.bootc-release.variant"
LABEL_TAG = "io.bootc-release.tag"


def _now() -> datetime:
    return datetime.now(timezone.utc)


def date_stamp(when: datetime) -> str:
    """Format a date as YYYYMMDD."""
    return when.strftime("%Y%m%d")


def compute_with_date(major_version: str, date: datetime, build_number: int) -> str:
    """Compute a version string for a specific date."""
    return f"{major_version}.{date_stamp(date)}.{build_number}"


def compute(major_version: str, build_number: int = 0) -> str:
    """Compute a version string for today.

    Args:
        major_version: Major OS version, e.g. "42".
        build_number: Build number; 0 when not supplied.

    Returns:
        Version string such as "42.20240101.3".
    """
    return compute_with_date(major_version, _now(), build_number)


def compute_for_scheme(
    scheme: str,
    major_version: str,
    build_number: int = 0,
    current: str | None = None,
    now: datetime | None = None,
) -> str:
    """Compute a version string for a configured scheme.

    Unknown schemes fall back to the default major.date.build scheme.
    """
    when = now or _now()
    if scheme == "date.build":
        return f"{date_stamp(when)}.{build_number}"
    if scheme == "semver":
        return current or DEFAULT_SEMVER
    return compute_with_date(major_version, when, build_number)


class VersionInfo(BaseModel):
    """Version information for one build.

    Attributes:
        version: Computed version string.
        major_version: Major OS version the version is derived from.
        scheme: Versioning scheme used.
        build_date: Build timestamp (UTC).
        build_number: Build number.
        git_commit: Short commit hash, empty if unknown.
        git_branch: Branch name, empty if unknown.
        git_dirty: Whether the working tree had uncommitted changes.
        image_ref: Resolved image reference.
        variant: Variant name.
        tag: Image tag.
    """

    model_config = ConfigDict(frozen=True)

    version: str
    major_version: str
    scheme: str = DEFAULT_SCHEME
    build_date: datetime
    build_number: int = 0
    git_commit: str = ""
    git_branch: str = ""
    git_dirty: bool = False
    image_ref: str = ""
    variant: str = ""
    tag: str = ""

    def with_git(self, commit: str, branch: str, dirty: bool) -> VersionInfo:
        """Return a copy with source-control metadata."""
        return self.model_copy(
            update={"git_commit": commit, "git_branch": branch, "git_dirty": dirty}
        )

    def with_image(self, image_ref: str, variant: str, tag: str) -> VersionInfo:
        """Return a copy with the resolved image reference."""
        return self.model_copy(
            update={"image_ref": image_ref, "variant": variant, "tag": tag}
        )

    def labels(self) -> dict[str, str]:
        """Return the OCI labels describing this version."""
        labels = {
            LABEL_VERSION: self.version,
            LABEL_CREATED: self.build_date.strftime("%Y-%m-%dT%H:%M:%SZ"),
            LABEL_REVISION: self.git_commit,
        }
        if self.variant:
            labels[LABEL_VARIANT] = self.variant
        if self.tag:
            labels[LABEL_TAG] = self.tag
        return labels

    def os_release_vars(self) -> dict[str, str]:
        """Return os-release compatible variables."""
        return {
            "IMAGE_VERSION": self.version,
            "IMAGE_DATE": self.build_date.strftime("%Y-%m-%d"),
            "IMAGE_BUILD_DATE": self.build_date.isoformat(),
            "IMAGE_VARIANT": self.variant,
            "IMAGE_TAG": self.tag,
            "OS_MAJOR_VERSION": self.major_version,
            "BUILD_NUMBER": str(self.build_number),
            "GIT_COMMIT": self.git_commit,
            "GIT_BRANCH": self.git_branch,
        }


def new_info(
    major_version: str,
    build_number: int = 0,
    scheme: str = DEFAULT_SCHEME,
    current: str | None = None,
    now: datetime | None = None,
) -> VersionInfo:
    """Create version information for a build happening now."""
    when = now or _now()
    return VersionInfo(
        version=compute_for_scheme(scheme, major_version, build_number, current, when),
        major_version=major_version,
        scheme=scheme,
        build_date=when,
        build_number=build_number,
    )


__all__ = [
    "DEFAULT_SCHEME",
    "LABEL_CREATED",
    "LABEL_REVISION",
    "LABEL_TAG",
    "LABEL_VARIANT",
    "LABEL_VERSION",
    "SCHEMES",
    "VersionInfo",
    "compute",
    "compute_for_scheme",
    "compute_with_date",
    "date_stamp",
    "new_info",
]
