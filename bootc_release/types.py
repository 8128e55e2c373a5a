"""Shared type definitions for bootc_release.

This module contains enums shared across subpackages to avoid circular
imports.
"""

from enum import Enum


class ReleaseStatus(str, Enum):
    """Status of a recorded release pipeline run."""

    PENDING = "pending"
    RUNNING = "running"
    SUCCEEDED = "succeeded"
    FAILED = "failed"


class StageOutcome(str, Enum):
    """Outcome of a single pipeline stage."""

    OK = "ok"
    SOFT_FAIL = "soft_fail"
    SKIPPED = "skipped"
    FATAL = "fatal"


class OutputType(str, Enum):
    """Disk image types produced by the disk conversion tool."""

    QCOW2 = "qcow2"
    RAW = "raw"
    ISO = "iso"
    VMDK = "vmdk"
    AMI = "ami"
    ANACONDA_ISO = "anaconda-iso"
    BOOTC_INSTALLER = "bootc-installer"


class SBOMFormat(str, Enum):
    """Document formats supported by the SBOM scanners."""

    SPDX_JSON = "spdx-json"
    CYCLONEDX = "cyclonedx"
    JSON = "json"


__all__ = ["OutputType", "ReleaseStatus", "SBOMFormat", "StageOutcome"]
