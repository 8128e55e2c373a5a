"""Disk image conversion argument composition and output discovery.

This module handles:
- Validating disk options before anything is invoked
- Locating a conversion config file by output type
- Composing the container engine arguments running the conversion tool
- Finding the produced artifact by extension
"""

from __future__ import annotations

import logging
from pathlib import Path

from bootc_release.errors import InvalidDiskOptionsError
from bootc_release.types import OutputType

logger = logging.getLogger(__name__)

OUTPUT_TYPES: tuple[str, ...] = tuple(t.value for t in OutputType)

OUTPUT_EXTENSIONS: dict[str, tuple[str, ...]] = {
    OutputType.QCOW2.value: (".qcow2",),
    OutputType.RAW.value: (".raw", ".img"),
    OutputType.ISO.value: (".iso",),
    OutputType.VMDK.value: (".vmdk",),
    OutputType.AMI.value: (".raw",),
    OutputType.ANACONDA_ISO.value: (".iso",),
    OutputType.BOOTC_INSTALLER.value: (".iso",),
}

_INSTALLER_TYPES = (OutputType.ANACONDA_ISO.value, OutputType.BOOTC_INSTALLER.value)

CONTAINER_CONFIG_PATH = "/config.toml"
CONTAINER_OUTPUT_PATH = "/output"


def validate_disk_options(image_ref: str, output_type: str) -> None:
    """Reject an empty reference or an unknown output type.

    Raises:
        InvalidDiskOptionsError: If the options are invalid.
    """
    if not image_ref:
        raise InvalidDiskOptionsError("image reference is required")
    if output_type not in OUTPUT_TYPES:
        raise InvalidDiskOptionsError(
            f"invalid output type {output_type!r}, valid types: {', '.join(OUTPUT_TYPES)}"
        )


def is_local_image(image_ref: str) -> bool:
    """Check whether a reference names an image in local storage."""
    return image_ref.startswith("localhost/") or "/" not in image_ref


def candidate_config_paths(root_dir: Path, output_type: str) -> list[Path]:
    """Return the conventional config locations, in search order.

    Installer types prefer the installer config over the generic disk
    config; all other types prefer the disk config.
    """
    if output_type in _INSTALLER_TYPES:
        return [root_dir / "iso" / "iso.toml", root_dir / "iso" / "disk.toml"]
    return [root_dir / "iso" / "disk.toml", root_dir / "disk_config" / "image.toml"]


def resolve_config_file(
    root_dir: Path,
    output_type: str,
    config_file: Path | None = None,
) -> Path | None:
    """Resolve the conversion config file.

    An explicit file is returned as is. Otherwise the first existing
    conventional path wins; None means no config is used.
    """
    if config_file is not None:
        return config_file
    for candidate in candidate_config_paths(root_dir, output_type):
        if candidate.is_file():
            logger.debug("Using disk config %s", candidate)
            return candidate
    return None


def compose_disk_builder_args(
    image_ref: str,
    output_type: str,
    output_dir: Path,
    builder_image: str,
    container_storage: Path,
    config_file: Path | None = None,
    rootfs: str = "",
    privileged: bool = True,
    pull_newer: bool = True,
) -> list[str]:
    """Compose the container engine arguments for a conversion run.

    Args:
        image_ref: Source image reference.
        output_type: Requested output type.
        output_dir: Host directory mounted as the output directory.
        builder_image: Image of the conversion tool.
        container_storage: Host container storage mounted read-write.
        config_file: Config file mounted read-only, if any.
        rootfs: Preferred root filesystem type.
        privileged: Run the tool privileged.
        pull_newer: Pull a newer tool image if available.

    Returns:
        Argument list, without the engine executable itself.
    """
    args = ["run", "--rm"]
    if privileged:
        args.append("--privileged")
    if pull_newer:
        args.append("--pull=newer")
    args.extend(["--security-opt", "label=type:unconfined_t"])
    args.append("--net=host")
    if config_file is not None:
        args.extend(["-v", f"{config_file}:{CONTAINER_CONFIG_PATH}:ro"])
    args.extend(["-v", f"{container_storage}:{container_storage}"])
    args.extend(["-v", f"{output_dir}:{CONTAINER_OUTPUT_PATH}"])
    args.append(builder_image)
    args.extend(["--type", output_type])
    args.append("--use-librepo=True")
    args.append("--rootfs=btrfs")
    if rootfs:
        args.extend(["--rootfs", rootfs])
    if config_file is not None:
        args.extend(["--config", CONTAINER_CONFIG_PATH])
    args.append(image_ref)
    return args


def find_output_file(output_dir: Path, output_type: str) -> Path | None:
    """Find the first artifact matching the output type's extensions.

    The directory is scanned recursively in sorted order.
    """
    extensions = OUTPUT_EXTENSIONS.get(output_type)
    if not extensions or not output_dir.is_dir():
        return None
    for path in sorted(output_dir.rglob("*")):
        if path.is_file() and path.suffix in extensions:
            return path
    return None


__all__ = [
    "OUTPUT_EXTENSIONS",
    "OUTPUT_TYPES",
    "candidate_config_paths",
    "compose_disk_builder_args",
    "find_output_file",
    "is_local_image",
    "resolve_config_file",
    "validate_disk_options",
]
