"""Disk image service module.

Converts a container image into a bootable disk artifact by running the
conversion tool as an ephemeral container.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path

from bootc_release.config import Settings, get_settings
from bootc_release.disk.runner import (
    compose_disk_builder_args,
    find_output_file,
    is_local_image,
    resolve_config_file,
    validate_disk_options,
)
from bootc_release.errors import AmbiguousOutputError, CommandFailedError
from bootc_release.executor import (
    CommandExecutor,
    Deadline,
    RunOptions,
    SubprocessExecutor,
    format_command,
    require_commands,
)
from bootc_release.project import ProjectConfig
from bootc_release.types import OutputType

PULL_STDERR_TAIL = 10


@dataclass(frozen=True)
class DiskOptions:
    """Options for a disk image conversion.

    Attributes:
        image_ref: Source image reference.
        output_type: Requested output type.
        output_dir: Output directory (defaults to <root>/output).
        config_file: Conversion config file (searched for when None).
        rootfs: Preferred root filesystem type.
        privileged: Run the conversion tool privileged.
        pull_newer: Pull a newer conversion tool image if available.
        timeout: Timeout in seconds (None = settings default).
        strict_output: Raise instead of returning the output directory when
            no matching artifact is found.
    """

    image_ref: str = ""
    output_type: str = OutputType.QCOW2.value
    output_dir: Path | None = None
    config_file: Path | None = None
    rootfs: str = "ext4"
    privileged: bool = True
    pull_newer: bool = True
    timeout: float | None = None
    strict_output: bool = False


class DiskBuilder:
    """Disk image orchestrator."""

    def __init__(
        self,
        project: ProjectConfig,
        root_dir: Path,
        executor: CommandExecutor | None = None,
        settings: Settings | None = None,
        logger: logging.Logger | None = None,
    ) -> None:
        self.project = project
        self.root_dir = root_dir
        self.executor = executor or SubprocessExecutor()
        self.settings = settings or get_settings()
        self.logger = logger or logging.getLogger(__name__)

    def build(self, options: DiskOptions, deadline: Deadline | None = None) -> Path:
        """Build a disk image.

        Args:
            options: Disk options.
            deadline: Pipeline-wide time budget.

        Returns:
            Path of the produced artifact, or the output directory when no
            artifact with a matching extension is found.

        Raises:
            InvalidDiskOptionsError: If the options are invalid.
            ToolNotFoundError: If the container engine is missing.
            CommandFailedError: If pulling or converting fails.
            AmbiguousOutputError: If strict_output is set and no artifact
                is found.
        """
        validate_disk_options(options.image_ref, options.output_type)
        engine = self.settings.container_engine
        require_commands(self.executor, engine)
        deadline = deadline or Deadline()

        output_dir = options.output_dir or self.root_dir / "output"
        output_dir.mkdir(parents=True, exist_ok=True)
        self.logger.info(
            "Building %s disk image from %s into %s",
            options.output_type,
            options.image_ref,
            output_dir,
        )

        if is_local_image(options.image_ref):
            self.logger.info("Using local container image %s", options.image_ref)
        else:
            self.logger.info("Pulling %s", options.image_ref)
            pulled = self.executor.run(
                engine,
                ["pull", options.image_ref],
                RunOptions(timeout=deadline.clamp(self.settings.command_timeout)),
            )
            if not pulled.ok:
                self.logger.error(
                    "Failed to pull %s (exit_code=%d):\n%s",
                    options.image_ref,
                    pulled.exit_code,
                    pulled.stderr_tail(PULL_STDERR_TAIL),
                )
                raise CommandFailedError(
                    f"pulling {options.image_ref}", pulled, tail_lines=PULL_STDERR_TAIL
                )

        config_file = resolve_config_file(
            self.root_dir, options.output_type, options.config_file
        )
        args = compose_disk_builder_args(
            options.image_ref,
            options.output_type,
            output_dir.resolve(),
            self.settings.disk_builder_image,
            self.settings.container_storage,
            config_file=config_file,
            rootfs=options.rootfs,
            privileged=options.privileged,
            pull_newer=options.pull_newer,
        )
        self.logger.debug("Running disk conversion: %s", format_command(engine, args))

        timeout = options.timeout or self.settings.disk_timeout
        result = self.executor.run(
            engine,
            args,
            RunOptions(timeout=deadline.clamp(timeout), stream=True),
        )
        if not result.ok:
            self.logger.error(
                "Disk conversion failed (exit_code=%d):\n%s",
                result.exit_code,
                result.stderr_tail(),
            )
            raise CommandFailedError("converting disk image", result)

        artifact = find_output_file(output_dir, options.output_type)
        if artifact is None:
            if options.strict_output:
                raise AmbiguousOutputError(str(output_dir), options.output_type)
            self.logger.warning(
                "Could not locate a %s artifact in %s", options.output_type, output_dir
            )
            return output_dir

        self.logger.info("Disk image created: %s", artifact)
        return artifact


__all__ = ["DiskBuilder", "DiskOptions"]
