"""Container engine argument composition.

This module handles:
- Merging configuration-level build arguments with per-call overrides
- Composing --label and --build-arg flags in a deterministic order
- Composing the full `build` argument vector

Everything here is pure; the Builder feeds the result to the executor.
"""

from __future__ import annotations

from collections.abc import Mapping, Sequence
from pathlib import Path

from bootc_release.release.version import VersionInfo

OS_VERSION_ARG = "OS_MAJOR_VERSION"
IMAGE_VERSION_ARG = "IMAGE_VERSION"


def merge_build_args(
    base: Mapping[str, str] | None,
    overrides: Mapping[str, str] | None,
) -> dict[str, str]:
    """Merge build arguments; overrides win key by key.

    Args:
        base: Build arguments from the project configuration.
        overrides: Build arguments supplied for this invocation.

    Returns:
        New merged mapping.
    """
    merged = dict(base or {})
    merged.update(overrides or {})
    return merged


def compose_label_args(labels: Mapping[str, str]) -> list[str]:
    """Compose --label flags in sorted key order."""
    args: list[str] = []
    for key in sorted(labels):
        args.extend(["--label", f"{key}={labels[key]}"])
    return args


def compose_build_args(
    build_args: Mapping[str, str],
    version: VersionInfo,
) -> list[str]:
    """Compose --build-arg flags.

    The OS major version and image version are always passed and take
    precedence over any same-named user argument.
    """
    combined = dict(build_args)
    combined[OS_VERSION_ARG] = version.major_version
    combined[IMAGE_VERSION_ARG] = version.version
    args: list[str] = []
    for key in sorted(combined):
        args.extend(["--build-arg", f"{key}={combined[key]}"])
    return args


def compose_build_command(
    image_ref: str,
    containerfile: Path,
    context_dir: Path,
    version: VersionInfo,
    labels: Mapping[str, str] | None = None,
    build_args: Mapping[str, str] | None = None,
    no_cache: bool = False,
    extra_refs: Sequence[str] = (),
) -> list[str]:
    """Compose the container engine `build` argument vector.

    Caller labels are applied first; the version labels override them.

    Args:
        image_ref: Primary image reference (-t).
        containerfile: Build description file (-f).
        context_dir: Build context directory.
        version: Version information supplying labels and build-args.
        labels: Additional labels.
        build_args: Merged build arguments.
        no_cache: Disable the layer cache.
        extra_refs: Additional references to tag the image with.

    Returns:
        Argument list, without the engine executable itself.
    """
    all_labels = dict(labels or {})
    all_labels.update(version.labels())

    cmd = ["build"]
    cmd.extend(compose_label_args(all_labels))
    cmd.extend(compose_build_args(build_args or {}, version))
    if no_cache:
        cmd.append("--no-cache")
    cmd.extend(["-t", image_ref])
    for ref in extra_refs:
        if ref != image_ref:
            cmd.extend(["-t", ref])
    cmd.extend(["-f", str(containerfile), str(context_dir)])
    return cmd


def retag_ref(image_ref: str, tag: str) -> str:
    """Return image_ref with its tag replaced."""
    name = image_ref
    # A colon after the last slash separates the tag
    last_slash = image_ref.rfind("/")
    colon = image_ref.rfind(":")
    if colon > last_slash:
        name = image_ref[:colon]
    return f"{name}:{tag}"


__all__ = [
    "IMAGE_VERSION_ARG",
    "OS_VERSION_ARG",
    "compose_build_args",
    "compose_build_command",
    "compose_label_args",
    "merge_build_args",
    "retag_ref",
]
