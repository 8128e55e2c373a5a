"""Boot disk images in QEMU for manual testing."""

from __future__ import annotations

import logging
from collections.abc import Sequence
from dataclasses import dataclass
from pathlib import Path

from bootc_release.errors import CommandFailedError, ReleaseError
from bootc_release.executor import (
    CommandExecutor,
    CommandResult,
    RunOptions,
    SubprocessExecutor,
    require_commands,
)

logger = logging.getLogger(__name__)

QEMU_BINARY = "qemu-system-x86_64"

OVMF_PATHS = (
    Path("/usr/share/edk2/ovmf/OVMF_CODE.fd"),
    Path("/usr/share/OVMF/OVMF_CODE.fd"),
    Path("/usr/share/qemu/OVMF.fd"),
)

DISK_EXTENSIONS = (".qcow2", ".raw", ".img")


@dataclass(frozen=True)
class VMOptions:
    """Options for booting a disk image.

    Attributes:
        image_path: Disk image to boot.
        memory: Guest memory, e.g. "4G".
        cpus: Number of virtual CPUs.
        display: gtk, sdl, vnc or none.
        ssh: Forward a host port to the guest's SSH port.
        ssh_port: Host port forwarded to guest port 22.
        kvm: Enable KVM acceleration.
        uefi: Boot with UEFI firmware when one is installed.
    """

    image_path: Path
    memory: str = "4G"
    cpus: int = 2
    display: str = "gtk"
    ssh: bool = True
    ssh_port: int = 2222
    kvm: bool = True
    uefi: bool = True


def find_firmware(candidates: Sequence[Path] = OVMF_PATHS) -> Path | None:
    """Return the first installed UEFI firmware image."""
    for path in candidates:
        if path.is_file():
            return path
    return None


def compose_qemu_args(options: VMOptions, firmware: Path | None = None) -> list[str]:
    """Compose QEMU arguments for booting a disk image."""
    args = ["-m", options.memory, "-smp", str(options.cpus)]

    if options.kvm:
        args.extend(["-enable-kvm", "-cpu", "host"])

    if options.uefi and firmware is not None:
        args.extend(["-bios", str(firmware)])

    if options.display == "none":
        args.append("-nographic")
    elif options.display == "vnc":
        args.extend(["-vnc", ":0"])
    else:
        args.extend(["-display", options.display])

    disk_format = "qcow2" if options.image_path.suffix == ".qcow2" else "raw"
    args.extend(["-drive", f"file={options.image_path},format={disk_format},if=virtio"])

    if options.ssh:
        args.extend(
            [
                "-netdev",
                f"user,id=net0,hostfwd=tcp::{options.ssh_port}-:22",
                "-device",
                "virtio-net-pci,netdev=net0",
            ]
        )
    else:
        args.extend(["-net", "none"])

    return args


def find_disk_image(output_dir: Path) -> Path:
    """Return the most recently modified disk image under output_dir.

    Raises:
        ReleaseError: If no disk image is found.
    """
    newest: Path | None = None
    newest_mtime = -1.0
    if output_dir.is_dir():
        for path in output_dir.rglob("*"):
            if not path.is_file() or path.suffix not in DISK_EXTENSIONS:
                continue
            mtime = path.stat().st_mtime
            if mtime > newest_mtime:
                newest, newest_mtime = path, mtime
    if newest is None:
        raise ReleaseError(f"no disk image found in {output_dir}", code="disk_image_not_found")
    return newest


class VMRunner:
    """Runs disk images under QEMU."""

    def __init__(
        self,
        executor: CommandExecutor | None = None,
        logger: logging.Logger | None = None,
    ) -> None:
        self.executor = executor or SubprocessExecutor()
        self.logger = logger or logging.getLogger(__name__)

    def run(self, options: VMOptions) -> CommandResult:
        """Boot a disk image and wait for the VM to exit.

        Raises:
            ReleaseError: If the image does not exist.
            ToolNotFoundError: If QEMU is not installed.
            CommandFailedError: If QEMU exits with an error.
        """
        if not options.image_path.is_file():
            raise ReleaseError(
                f"image not found: {options.image_path}", code="disk_image_not_found"
            )
        require_commands(self.executor, QEMU_BINARY)

        firmware = find_firmware() if options.uefi else None
        if options.uefi and firmware is None:
            self.logger.warning("No UEFI firmware found, booting with default BIOS")

        self.logger.info(
            "Starting VM from %s (memory=%s, cpus=%d)",
            options.image_path,
            options.memory,
            options.cpus,
        )
        if options.ssh:
            self.logger.info("SSH forwarded to localhost:%d", options.ssh_port)

        result = self.executor.run(
            QEMU_BINARY,
            compose_qemu_args(options, firmware),
            RunOptions(stream=True),
        )
        if not result.ok:
            raise CommandFailedError("running VM", result)
        return result


__all__ = [
    "OVMF_PATHS",
    "QEMU_BINARY",
    "VMOptions",
    "VMRunner",
    "compose_qemu_args",
    "find_disk_image",
    "find_firmware",
]
