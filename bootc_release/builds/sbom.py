"""SBOM generation with trivy or syft.

A scan targets either a registry/local reference or, in archive mode, a
docker-archive tarball saved from local storage. The archive is a
temporary file removed after the scan.
"""

from __future__ import annotations

import logging
import tempfile
from pathlib import Path

from bootc_release.config import Settings, get_settings
from bootc_release.errors import CommandFailedError, ReleaseError
from bootc_release.executor import (
    CommandExecutor,
    RunOptions,
    SubprocessExecutor,
    require_commands,
)
from bootc_release.types import SBOMFormat

logger = logging.getLogger(__name__)

_OUTPUT_NAMES = {
    SBOMFormat.SPDX_JSON: "sbom.spdx.json",
    SBOMFormat.CYCLONEDX: "sbom.cdx.json",
    SBOMFormat.JSON: "sbom.json",
}

_SYFT_FORMATS = {
    SBOMFormat.SPDX_JSON: "spdx-json",
    SBOMFormat.CYCLONEDX: "cyclonedx-json",
    SBOMFormat.JSON: "syft-json",
}


def parse_format(value: str | SBOMFormat) -> SBOMFormat:
    """Parse an SBOM format name.

    Raises:
        ReleaseError: If the format is not supported.
    """
    try:
        return SBOMFormat(value)
    except ValueError:
        supported = ", ".join(f.value for f in SBOMFormat)
        raise ReleaseError(
            f"unsupported SBOM format {value!r} (supported: {supported})",
            code="invalid_sbom_format",
        ) from None


def default_output_path(root: Path, fmt: str | SBOMFormat = SBOMFormat.SPDX_JSON) -> Path:
    """Return the conventional SBOM location for a format."""
    return root / _OUTPUT_NAMES[parse_format(fmt)]


def compose_trivy_args(
    target: str,
    output: Path,
    fmt: SBOMFormat,
    from_archive: bool = False,
) -> list[str]:
    """Compose trivy arguments for an image or archive scan."""
    args = ["image"]
    if from_archive:
        args.extend(["--input", target])
    else:
        args.append(target)
    args.extend(["--format", fmt.value, "--output", str(output)])
    return args


def compose_syft_args(
    target: str,
    output: Path,
    fmt: SBOMFormat,
    from_archive: bool = False,
) -> list[str]:
    """Compose syft arguments for an image or archive scan."""
    source = f"docker-archive:{target}" if from_archive else target
    return ["scan", source, "-o", f"{_SYFT_FORMATS[fmt]}={output}"]


class SBOMGenerator:
    """Generates SBOM documents for images."""

    def __init__(
        self,
        executor: CommandExecutor | None = None,
        settings: Settings | None = None,
        logger: logging.Logger | None = None,
    ) -> None:
        self.executor = executor or SubprocessExecutor()
        self.settings = settings or get_settings()
        self.log = logger or logging.getLogger(__name__)

    @property
    def scanner(self) -> str:
        return self.settings.sbom_scanner

    def compose_args(
        self,
        target: str,
        output: Path,
        fmt: SBOMFormat,
        from_archive: bool = False,
    ) -> list[str]:
        if self.scanner == "syft":
            return compose_syft_args(target, output, fmt, from_archive)
        return compose_trivy_args(target, output, fmt, from_archive)

    def ensure_local_image(self, image_ref: str) -> bool:
        """Check whether an image is present in local storage."""
        result = self.executor.run(
            self.settings.container_engine,
            ["image", "exists", image_ref],
            RunOptions(timeout=self.settings.command_timeout),
        )
        return result.ok

    def _save_archive(self, image_ref: str, archive: Path, timeout: float) -> None:
        engine = self.settings.container_engine
        require_commands(self.executor, engine)
        if not self.ensure_local_image(image_ref):
            self.log.info("Pulling %s for archive scan", image_ref)
            pulled = self.executor.run(engine, ["pull", image_ref], RunOptions(timeout=timeout))
            if not pulled.ok:
                raise CommandFailedError(f"pulling {image_ref}", pulled, tail_lines=10)
        saved = self.executor.run(
            engine,
            ["image", "save", "--format", "docker-archive", "-o", str(archive), image_ref],
            RunOptions(timeout=timeout),
        )
        if not saved.ok:
            raise CommandFailedError(f"saving {image_ref}", saved)

    def generate(
        self,
        image_ref: str,
        output: Path,
        fmt: str | SBOMFormat = SBOMFormat.SPDX_JSON,
        from_archive: bool = False,
        timeout: float | None = None,
    ) -> Path:
        """Generate an SBOM for an image.

        Args:
            image_ref: Image to scan.
            output: Destination file.
            fmt: Document format.
            from_archive: Scan a saved archive instead of the reference.
            timeout: Timeout per invocation in seconds.

        Returns:
            Path of the written SBOM.

        Raises:
            ToolNotFoundError: If the scanner (or engine) is missing.
            CommandFailedError: If saving or scanning fails.
        """
        sbom_format = parse_format(fmt)
        require_commands(self.executor, self.scanner)
        if timeout is None:
            timeout = self.settings.command_timeout
        output.parent.mkdir(parents=True, exist_ok=True)

        if not from_archive:
            self.log.info("Generating %s SBOM for %s", sbom_format.value, image_ref)
            self._scan(image_ref, output, sbom_format, False, timeout)
            return output

        with tempfile.TemporaryDirectory(prefix="bootc-sbom-") as tmp:
            archive = Path(tmp) / "image.tar"
            self._save_archive(image_ref, archive, timeout)
            self.log.info(
                "Generating %s SBOM for %s from archive", sbom_format.value, image_ref
            )
            self._scan(str(archive), output, sbom_format, True, timeout)
        return output

    def _scan(
        self,
        target: str,
        output: Path,
        fmt: SBOMFormat,
        from_archive: bool,
        timeout: float,
    ) -> None:
        args = self.compose_args(target, output, fmt, from_archive)
        result = self.executor.run(self.scanner, args, RunOptions(timeout=timeout))
        if not result.ok:
            raise CommandFailedError(f"generating SBOM for {target}", result)


__all__ = [
    "SBOMGenerator",
    "compose_syft_args",
    "compose_trivy_args",
    "default_output_path",
    "parse_format",
]
