"""Release metadata module.

This module handles:
- Version computation and OCI version labels
- The release manifest and its JSON persistence
"""

from bootc_release.release.manifest import ImageRecord, ReleaseManifest, SBOMDescriptor
from bootc_release.release.version import VersionInfo, compute, new_info

__all__ = [
    "ImageRecord",
    "ReleaseManifest",
    "SBOMDescriptor",
    "VersionInfo",
    "compute",
    "new_info",
]
