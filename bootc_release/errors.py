"""Error definitions for bootc_release.

Every error raised by the orchestrators derives from ReleaseError and
carries a stable code that frontends can surface for programmatic
handling.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from bootc_release.executor import CommandResult

# Number of stderr lines carried by command failures
DEFAULT_STDERR_TAIL = 20


class ReleaseError(Exception):
    """Base error for release pipeline operations."""

    def __init__(self, message: str, code: str = "release_error") -> None:
        super().__init__(message)
        self.message = message
        self.code = code


class ConfigurationError(ReleaseError):
    """Raised when the project configuration is missing required fields."""

    def __init__(self, message: str) -> None:
        super().__init__(f"invalid configuration: {message}", code="configuration_error")


class ProjectConfigError(ReleaseError):
    """Raised when a project configuration file cannot be read or parsed."""

    def __init__(self, message: str) -> None:
        super().__init__(message, code="project_config_error")


class ToolNotFoundError(ReleaseError):
    """Raised when required binaries are not on the search path."""

    def __init__(self, missing: list[str]) -> None:
        super().__init__(
            f"missing required commands: {', '.join(missing)}",
            code="tool_not_found",
        )
        self.missing = missing


class CommandFailedError(ReleaseError):
    """Raised when an external command fails.

    Attributes:
        result: The CommandResult of the failed invocation.
        stderr_tail: Bounded tail of the command's stderr.
    """

    def __init__(
        self,
        message: str,
        result: CommandResult,
        tail_lines: int = DEFAULT_STDERR_TAIL,
    ) -> None:
        self.result = result
        self.stderr_tail = result.stderr_tail(tail_lines)
        detail = f"{message}: {result.error}"
        if self.stderr_tail:
            detail = f"{detail}\n{self.stderr_tail}"
        super().__init__(detail, code="command_failed")


class StageFailedError(ReleaseError):
    """Raised when a fatal pipeline stage fails."""

    def __init__(self, stage: str, message: str) -> None:
        super().__init__(f"{stage} failed: {message}", code="stage_failed")
        self.stage = stage


class InvalidDiskOptionsError(ReleaseError):
    """Raised when disk image options are rejected before any invocation."""

    def __init__(self, message: str) -> None:
        super().__init__(message, code="invalid_disk_options")


class AmbiguousOutputError(ReleaseError):
    """Raised when no artifact matching the requested disk type is found."""

    def __init__(self, output_dir: str, output_type: str) -> None:
        super().__init__(
            f"no {output_type} artifact found under {output_dir}",
            code="ambiguous_output",
        )
        self.output_dir = output_dir
        self.output_type = output_type


class ManifestError(ReleaseError):
    """Raised when a release manifest cannot be read or written."""

    def __init__(self, message: str) -> None:
        super().__init__(message, code="manifest_error")


class ReleaseNotFoundError(ReleaseError):
    """Raised when a release history record is not found."""

    def __init__(self, release_id: int) -> None:
        super().__init__(f"Release not found: {release_id}", code="release_not_found")
        self.release_id = release_id


__all__ = [
    "DEFAULT_STDERR_TAIL",
    "AmbiguousOutputError",
    "CommandFailedError",
    "ConfigurationError",
    "InvalidDiskOptionsError",
    "ManifestError",
    "ProjectConfigError",
    "ReleaseError",
    "ReleaseNotFoundError",
    "StageFailedError",
    "ToolNotFoundError",
]
