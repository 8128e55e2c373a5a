"""CI environment detection and tag/label generation.

The environment is inspected once; every derived value (tags, labels,
push policy, image naming) is a pure function of the resulting
Environment, so callers can build synthetic environments in tests.
"""

from __future__ import annotations

import os
import re
from collections.abc import Mapping
from dataclasses import dataclass
from datetime import datetime, timezone

from bootc_release.release.version import LABEL_REVISION, date_stamp

TAG_OVERRIDE_VAR = "BOOTC_RELEASE_CI_TAGS"
MAX_TAG_LENGTH = 128
DEFAULT_IMAGE_NAME = "bootc-image"

_PR_REF = re.compile(r"^refs/pull/([^/]+)")
_TAG_SEPARATORS = re.compile(r"[,\s]+")


@dataclass(frozen=True)
class LabelConfig:
    """Caller-supplied label values; empty values fall back to defaults."""

    description: str = ""
    keywords: str = ""
    logo_url: str = ""
    license: str = ""


DEFAULT_LABEL_CONFIG = LabelConfig(
    description="Custom bootable container image",
    keywords="bootc,ostree,oci",
    logo_url="https://avatars.githubusercontent.com/u/120078124?s=200&v=4",
    license="Apache-2.0",
)


def sanitize_tag(value: str) -> str:
    """Make a string usable as an image tag."""
    tag = value.lower().replace("/", "-").replace(" ", "-")
    return tag[:MAX_TAG_LENGTH]


@dataclass(frozen=True)
class Environment:
    """Classification of the execution context.

    Attributes:
        is_ci: Running under any CI system.
        is_github_actions: Running under GitHub Actions.
        repository: owner/name of the repository.
        repository_owner: Repository owner.
        repository_name: Repository name.
        ref: Full git ref, e.g. refs/pull/42/merge.
        ref_name: Short ref name (branch or tag).
        sha: Commit SHA.
        run_number: Workflow run number.
        run_id: Workflow run id.
        event_name: Triggering event, e.g. pull_request.
        default_branch: Name of the default branch.
        actor: User that triggered the run.
        workflow: Workflow name.
        tag_override: Explicit tag list (comma/whitespace separated).
        registry_override: Explicit registry.
        image_name_override: Explicit image name.
        is_default_branch: Whether ref_name is the default branch.
        is_pull_request: Whether the event is a pull request.
    """

    is_ci: bool = False
    is_github_actions: bool = False
    repository: str = ""
    repository_owner: str = ""
    repository_name: str = ""
    ref: str = ""
    ref_name: str = ""
    sha: str = ""
    run_number: int = 0
    run_id: str = ""
    event_name: str = ""
    default_branch: str = ""
    actor: str = ""
    workflow: str = ""
    tag_override: str = ""
    registry_override: str = ""
    image_name_override: str = ""
    is_default_branch: bool = False
    is_pull_request: bool = False

    def pull_request_number(self) -> str:
        """Return the PR number parsed from refs/pull/<N>[/...], or ""."""
        match = _PR_REF.match(self.ref)
        return match.group(1) if match else ""

    def generate_tags(self, default_tag: str, now: datetime | None = None) -> list[str]:
        """Generate image tags for this environment.

        An explicit override list always wins. Otherwise pull requests get
        pr-<N> and sha-<short>, the default branch gets a floating, a
        dated-floating and a date tag, and any other branch gets its
        sanitized name. The result may be empty; callers fall back to the
        default tag rather than pushing an untagged image.

        Args:
            default_tag: Floating tag for default-branch builds.
            now: Date used for dated tags (defaults to today, UTC).

        Returns:
            Ordered list of tags.
        """
        if self.tag_override:
            override = [
                sanitize_tag(part)
                for part in _TAG_SEPARATORS.split(self.tag_override)
                if part.strip()
            ]
            if override:
                return override

        tags: list[str] = []
        stamp = date_stamp(now or datetime.now(timezone.utc))

        if self.is_pull_request:
            pr_number = self.pull_request_number()
            if pr_number:
                tags.append(f"pr-{pr_number}")
            if len(self.sha) >= 7:
                tags.append(f"sha-{self.sha[:7]}")
        elif self.is_default_branch:
            tags.extend([default_tag, f"{default_tag}.{stamp}", stamp])
        elif self.ref_name:
            tags.append(sanitize_tag(self.ref_name))

        return tags

    def generate_labels(
        self,
        image_name: str,
        config: LabelConfig | None = None,
        version: str | None = None,
        now: datetime | None = None,
    ) -> dict[str, str]:
        """Generate OCI, bootc and package-index labels.

        Caller values win only when non-empty. Source links are emitted
        only when the repository identity is known.

        Args:
            image_name: Image title.
            config: Caller-supplied label values.
            version: Version label value (defaults to stable.<date>).
            now: Creation timestamp (defaults to now, UTC).

        Returns:
            Label mapping.
        """
        config = config or LabelConfig()
        when = now or datetime.now(timezone.utc)
        defaults = DEFAULT_LABEL_CONFIG

        labels = {
            "org.opencontainers.image.created": when.strftime("%Y-%m-%dT%H:%M:%SZ"),
            "org.opencontainers.image.title": image_name,
            "org.opencontainers.image.description": config.description
            or defaults.description,
            "org.opencontainers.image.vendor": self.repository_owner,
            "org.opencontainers.image.version": version
            or f"stable.{date_stamp(when)}",
            "containers.bootc": "1",
            "io.artifacthub.package.deprecated": "false",
            "io.artifacthub.package.keywords": config.keywords or defaults.keywords,
            "io.artifacthub.package.license": config.license or defaults.license,
            "io.artifacthub.package.logo-url": config.logo_url or defaults.logo_url,
            "io.artifacthub.package.prerelease": "false",
        }

        if self.repository:
            base = f"https://github.com/{self.repository}"
            raw = f"https://raw.githubusercontent.com/{self.repository}/{self.sha}"
            labels["org.opencontainers.image.source"] = (
                f"{base}/blob/{self.sha}/Containerfile"
            )
            labels["org.opencontainers.image.url"] = f"{base}/tree/{self.sha}"
            labels["org.opencontainers.image.documentation"] = f"{raw}/README.md"
            labels["io.artifacthub.package.readme-url"] = f"{raw}/README.md"

        if self.sha:
            labels[LABEL_REVISION] = self.sha

        return labels

    def should_push(self) -> bool:
        """Return whether the image should be pushed automatically.

        Pull requests never push; the default branch does.
        """
        if self.is_pull_request:
            return False
        return self.is_default_branch

    def image_registry(self) -> str:
        """Return the target registry."""
        if self.registry_override:
            return self.registry_override.lower()
        if self.repository_owner:
            return f"ghcr.io/{self.repository_owner.lower()}"
        return "ghcr.io"

    def image_name(self) -> str:
        """Return the target image name."""
        if self.image_name_override:
            return self.image_name_override.lower()
        if self.repository_name:
            return self.repository_name.lower()
        return DEFAULT_IMAGE_NAME

    def full_image_ref(self, tag: str) -> str:
        """Return registry/name:tag."""
        return f"{self.image_registry()}/{self.image_name()}:{tag}"


def _parse_int(value: str) -> int:
    try:
        return int(value)
    except ValueError:
        return 0


def detect(environ: Mapping[str, str] | None = None) -> Environment:
    """Detect the current CI environment.

    Absence of CI variables yields a non-CI environment; this never fails.

    Args:
        environ: Environment mapping (defaults to os.environ).

    Returns:
        Environment snapshot.
    """
    if environ is None:
        environ = os.environ

    overrides = {
        "tag_override": environ.get(TAG_OVERRIDE_VAR, ""),
        "registry_override": environ.get("IMAGE_REGISTRY", ""),
        "image_name_override": environ.get("IMAGE_NAME", ""),
    }
    is_ci = environ.get("CI") == "true"
    if environ.get("GITHUB_ACTIONS") != "true":
        return Environment(is_ci=is_ci, **overrides)

    repository = environ.get("GITHUB_REPOSITORY", "")
    parts = repository.split("/")
    ref_name = environ.get("GITHUB_REF_NAME", "")
    default_branch = environ.get("GITHUB_DEFAULT_BRANCH", "")
    event_name = environ.get("GITHUB_EVENT_NAME", "")

    return Environment(
        is_ci=is_ci,
        is_github_actions=True,
        repository=repository,
        repository_owner=environ.get("GITHUB_REPOSITORY_OWNER", ""),
        repository_name=parts[1] if len(parts) == 2 else "",
        ref=environ.get("GITHUB_REF", ""),
        ref_name=ref_name,
        sha=environ.get("GITHUB_SHA", ""),
        run_number=_parse_int(environ.get("GITHUB_RUN_NUMBER", "0")),
        run_id=environ.get("GITHUB_RUN_ID", ""),
        event_name=event_name,
        default_branch=default_branch,
        actor=environ.get("GITHUB_ACTOR", ""),
        workflow=environ.get("GITHUB_WORKFLOW", ""),
        is_default_branch=bool(ref_name) and ref_name == default_branch,
        is_pull_request=event_name == "pull_request",
        **overrides,
    )


__all__ = [
    "DEFAULT_LABEL_CONFIG",
    "MAX_TAG_LENGTH",
    "TAG_OVERRIDE_VAR",
    "Environment",
    "LabelConfig",
    "detect",
    "sanitize_tag",
]
